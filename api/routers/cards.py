"""Card collection endpoints — CRUD, filtering and collection stats."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from api.deps import DEFAULT_USER, get_paths, unwrap
from collection_utils import (
    load_cards, create_card, get_card, update_card, delete_card,
    query_cards, collection_stats, CardValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Read endpoints ────────────────────────────────────────────────────────────

# Declared before /{card_id} so "stats" is not taken as an id
@router.get("/stats")
def card_stats(paths: dict = Depends(get_paths)):
    """Return collection statistics for the dashboard.

    Returns:
        Dict with key 'stats' holding 'total_cards', 'total_value' (sum of
        estimated values), 'total_market_value', 'for_trade_count',
        'recent_cards' (five newest cards) and 'sport_breakdown' (list of
        {'sport', 'count'} sorted by count, descending).
    """
    cards = load_cards(paths["cards"])
    stats = collection_stats(cards)
    logger.info(f"Collection stats: {stats['total_cards']} cards, ${stats['total_value']:,.2f} total value")
    return {"stats": stats}


@router.get("")
def list_cards(
    search:    Optional[str]  = None,
    sport:     Optional[str]  = None,
    year:      Optional[int]  = None,
    for_trade: Optional[bool] = None,
    page:      int            = Query(default=1, ge=1),
    limit:     Optional[int]  = Query(default=None, ge=1, le=500),
    paths:     dict           = Depends(get_paths),
):
    """Return the collection, newest first, optionally filtered and paginated.

    Args:
        search: Substring matched against player, set, manufacturer and tags.
        sport: Exact sport (case-insensitive).
        year: Exact card year.
        for_trade: Only cards on (true) or off (false) the trade list.
        page: 1-based page number, used with limit.
        limit: Page size. Omit to return every matching card.
        paths: Injected per-user data paths (from the 'user' query param).

    Returns:
        Dict with keys 'cards', 'total', 'page' and 'total_pages'.
    """
    cards = load_cards(paths["cards"])
    page_cards, total, page, total_pages = query_cards(
        cards, search=search, sport=sport, year=year,
        for_trade=for_trade, page=page, limit=limit,
    )
    logger.info(f"Found {total} cards")
    return {"cards": page_cards, "total": total, "page": page, "total_pages": total_pages}


@router.get("/{card_id}")
def card_detail(card_id: str, paths: dict = Depends(get_paths)):
    """Return a single card.

    Raises:
        HTTPException: 404 if no card has that id.
    """
    card = get_card(card_id, paths["cards"])
    if card is None:
        raise HTTPException(status_code=404, detail="Card not found")
    return {"card": card}


# ── Write endpoints ───────────────────────────────────────────────────────────

@router.post("", status_code=201)
def add_card(body: dict = Body(...), user: str = DEFAULT_USER, paths: dict = Depends(get_paths)):
    """Create a card owned by ``user``.

    The body may be the card object itself or wrapped as {"card": {...}}.

    Raises:
        HTTPException: 400 if the card fails validation.
    """
    try:
        card = create_card(unwrap(body, "card"), user, paths["cards"])
    except CardValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors)
    logger.info(f"Created new card: {card['player_name']}")
    return {"status": "created", "card": card}


@router.put("/{card_id}")
def edit_card(card_id: str, body: dict = Body(...), paths: dict = Depends(get_paths)):
    """Apply a partial update to a card and return the updated document.

    Raises:
        HTTPException: 400 if the result fails validation.
        HTTPException: 404 if no card has that id.
    """
    try:
        card = update_card(card_id, unwrap(body, "card"), paths["cards"])
    except CardValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors)
    if card is None:
        raise HTTPException(status_code=404, detail="Card not found")
    logger.info(f"Updated card: {card['player_name']}")
    return {"status": "updated", "card": card}


@router.delete("/{card_id}")
def remove_card(card_id: str, paths: dict = Depends(get_paths)):
    card = delete_card(card_id, paths["cards"])
    if card is None:
        raise HTTPException(status_code=404, detail="Card not found")
    logger.info(f"Deleted card: {card['player_name']}")
    return {"status": "deleted", "id": card_id}
