"""Seed the admin account and a starter set of sample cards."""

import logging

from collection_utils import (
    load_users, save_users, hash_password, load_cards, create_cards,
    validate_card, get_user_paths,
)
from config import ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "/api/placeholder/250/350"

SAMPLE_CARDS = [
    {
        "player_name": "Mike Trout", "sport": "Baseball", "year": 2009,
        "manufacturer": "Topps", "set_name": "Bowman Chrome", "card_number": "BC1",
        "condition": {"centering": 9, "corners": 9, "edges": 8, "surface": 9, "overall": "Near Mint"},
        "is_rookie_card": True, "is_autograph": False, "is_memorabilia": False,
        "estimated_value": 2500, "market_value": 2650,
        "tags": ["rookie", "chrome", "angels"], "notes": "Excellent condition rookie card",
    },
    {
        "player_name": "LeBron James", "sport": "Basketball", "year": 2003,
        "manufacturer": "Upper Deck", "set_name": "Exquisite Collection", "card_number": "RC23",
        "condition": {"centering": 10, "corners": 9, "edges": 9, "surface": 10, "overall": "Mint"},
        "is_rookie_card": True, "is_autograph": True, "is_memorabilia": True,
        "estimated_value": 15000, "market_value": 16500,
        "tags": ["rookie", "autograph", "patch", "lakers"], "notes": "Rare rookie patch autograph",
    },
    {
        "player_name": "Tom Brady", "sport": "Football", "year": 2000,
        "manufacturer": "Playoff Contenders", "set_name": "Championship Ticket", "card_number": "144",
        "condition": {"centering": 8, "corners": 8, "edges": 9, "surface": 8, "overall": "Near Mint"},
        "is_rookie_card": True, "is_autograph": True, "is_memorabilia": False,
        "estimated_value": 8500, "market_value": 9200,
        "tags": ["rookie", "autograph", "patriots", "goat"], "notes": "Iconic rookie autograph",
    },
    {
        "player_name": "Wayne Gretzky", "sport": "Hockey", "year": 1979,
        "manufacturer": "O-Pee-Chee", "set_name": "O-Pee-Chee", "card_number": "18",
        "condition": {"centering": 7, "corners": 7, "edges": 8, "surface": 8, "overall": "Very Good"},
        "is_rookie_card": True, "is_autograph": False, "is_memorabilia": False,
        "estimated_value": 12000, "market_value": 13500,
        "tags": ["rookie", "hockey", "gretzky", "oilers"], "notes": "The Great One rookie card",
    },
    {
        "player_name": "Michael Jordan", "sport": "Basketball", "year": 1986,
        "manufacturer": "Fleer", "set_name": "Fleer Basketball", "card_number": "57",
        "condition": {"centering": 8, "corners": 7, "edges": 8, "surface": 9, "overall": "Very Good"},
        "is_rookie_card": True, "is_autograph": False, "is_memorabilia": False,
        "estimated_value": 25000, "market_value": 28000,
        "tags": ["rookie", "jordan", "bulls", "goat"], "notes": "Holy grail of basketball cards",
    },
]


def _public_user(username, data):
    return {
        "username":     username,
        "email":        data.get("email", ""),
        "display_name": data.get("display_name", username),
        "role":         data.get("role", "user"),
    }


def seed_admin_user():
    """Create the admin account in users.yaml unless it already exists."""
    users = load_users()
    if ADMIN_USERNAME in users:
        logger.info("Admin user already exists, skipping seeding")
        return {
            "created": False,
            "message": "Admin user already exists",
            "user":    _public_user(ADMIN_USERNAME, users[ADMIN_USERNAME]),
        }

    users[ADMIN_USERNAME] = {
        "email":         ADMIN_EMAIL,
        "display_name":  "Admin User",
        "role":          "admin",
        "password_hash": hash_password(ADMIN_PASSWORD),
    }
    save_users(users)
    logger.info(f"Admin user created successfully: {ADMIN_EMAIL}")
    return {
        "created": True,
        "message": "Admin user created successfully",
        "user":    _public_user(ADMIN_USERNAME, users[ADMIN_USERNAME]),
    }


def seed_sample_cards(user=ADMIN_USERNAME):
    """Insert SAMPLE_CARDS into an empty collection owned by an existing user.

    Raises:
        LookupError: if the user has not been created yet.
    """
    if user not in load_users():
        raise LookupError(f"User '{user}' not found. Please seed admin user first.")

    paths = get_user_paths(user)
    existing = len(load_cards(paths["cards"]))
    if existing > 0:
        logger.info(f"{existing} cards already exist for {user}, skipping seeding")
        return {"created": False, "message": f"{existing} cards already exist", "cards_count": existing}

    cards = [
        validate_card({**c, "front_image": PLACEHOLDER_IMAGE, "back_image": PLACEHOLDER_IMAGE, "is_for_trade": False})
        for c in SAMPLE_CARDS
    ]
    created = create_cards(cards, user, paths["cards"])
    logger.info(f"Successfully created {len(created)} sample cards")
    return {
        "created":     True,
        "message":     f"Successfully created {len(created)} sample cards",
        "cards_count": len(created),
        "cards": [
            {"id": c["id"], "player_name": c["player_name"], "sport": c["sport"], "year": c["year"]}
            for c in created
        ],
    }
