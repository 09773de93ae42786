"""Seeding endpoints — create the admin account and sample cards on demand."""

import logging

from fastapi import APIRouter, HTTPException

from api.deps import DEFAULT_USER
from seed_data import seed_admin_user, seed_sample_cards

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/admin")
def seed_admin():
    """Create the admin user unless it already exists. Safe to call repeatedly."""
    logger.info("Received request to seed admin user")
    return seed_admin_user()


@router.post("/cards")
def seed_cards(user: str = DEFAULT_USER):
    """Insert sample cards into an empty collection.

    Raises:
        HTTPException: 404 if the user does not exist yet.
    """
    logger.info("Received request to seed sample cards")
    try:
        return seed_sample_cards(user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
