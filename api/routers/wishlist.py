"""Wishlist endpoints — cards the collector is looking for."""

import logging

from fastapi import APIRouter, Body, Depends, HTTPException

from api.deps import get_paths, unwrap
from collection_utils import (
    load_wishlist, add_wishlist_item, update_wishlist_item, remove_wishlist_item,
    CardValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@router.get("")
def list_wishlist(paths: dict = Depends(get_paths)):
    """Return wishlist items, highest priority first, then newest first."""
    items = load_wishlist(paths["wishlist"])
    items = sorted(items, key=lambda i: i.get("date_added") or "", reverse=True)
    items = sorted(items, key=lambda i: _PRIORITY_ORDER.get(i.get("priority"), 1))
    return {"items": items}


@router.post("", status_code=201)
def add_item(body: dict = Body(...), paths: dict = Depends(get_paths)):
    """Add an item. The body may be wrapped as {"item": {...}}.

    Raises:
        HTTPException: 400 if the item fails validation.
    """
    try:
        item = add_wishlist_item(unwrap(body, "item"), paths["wishlist"])
    except CardValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors)
    logger.info(f"Added wishlist item: {item['player_name']}")
    return {"status": "created", "item": item}


@router.put("/{item_id}")
def edit_item(item_id: str, body: dict = Body(...), paths: dict = Depends(get_paths)):
    try:
        item = update_wishlist_item(item_id, unwrap(body, "item"), paths["wishlist"])
    except CardValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors)
    if item is None:
        raise HTTPException(status_code=404, detail="Wishlist item not found")
    return {"status": "updated", "item": item}


@router.delete("/{item_id}")
def remove_item(item_id: str, paths: dict = Depends(get_paths)):
    item = remove_wishlist_item(item_id, paths["wishlist"])
    if item is None:
        raise HTTPException(status_code=404, detail="Wishlist item not found")
    logger.info(f"Removed wishlist item: {item['player_name']}")
    return {"status": "deleted", "id": item_id}
