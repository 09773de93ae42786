"""Settings endpoints — integrations, preferences and data management."""

import logging
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field

from api.deps import DEFAULT_USER, get_paths
from collection_utils import (
    load_settings, save_settings_section, redact, load_cards, export_cards,
    import_cards, backup_data, run_maintenance, clear_cards,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request bodies ────────────────────────────────────────────────────────────

class EbayConfig(BaseModel):
    app_id:      str = ""
    dev_id:      str = ""
    cert_id:     str = ""
    user_token:  str = ""
    environment: Literal["sandbox", "production"] = "sandbox"


class TcgPlayerConfig(BaseModel):
    api_key:     str = ""
    partner_id:  str = ""
    environment: Literal["sandbox", "production"] = "sandbox"


class NotificationPreferences(BaseModel):
    email:          bool = True
    push:           bool = True
    price_alerts:   bool = True
    trade_requests: bool = True
    market_updates: bool = False


class ScanningPreferences(BaseModel):
    auto_process:         bool  = True
    confidence_threshold: float = Field(default=0.8, ge=0, le=1)
    image_quality:        Literal["low", "medium", "high"] = "high"
    batch_size:           int   = Field(default=10, ge=1, le=500)


# ── Integrations & preferences ────────────────────────────────────────────────

@router.get("/ebay")
def get_ebay_config():
    config = load_settings()["ebay"]
    logger.info(f"Returning eBay config: {redact(config)}")
    return config


@router.post("/ebay")
def save_ebay_config(body: EbayConfig):
    """Save eBay API credentials.

    Raises:
        HTTPException: 400 if app_id, dev_id or cert_id is empty.
    """
    values = body.model_dump()
    logger.info(f"Saving eBay configuration: {redact(values)}")
    if not (body.app_id.strip() and body.dev_id.strip() and body.cert_id.strip()):
        raise HTTPException(status_code=400, detail="App ID, Dev ID, and Cert ID are required")
    save_settings_section("ebay", values)
    return {"status": "saved", "message": "eBay configuration saved successfully"}


@router.post("/ebay/rotate-cert")
def rotate_ebay_cert():
    """Flag the stored eBay Cert ID for rotation.

    Rotation itself happens in the eBay developer portal; the new Cert ID is
    then saved with POST /ebay.

    Raises:
        HTTPException: 400 if no eBay credentials are configured.
    """
    config = load_settings()["ebay"]
    if not config.get("cert_id"):
        raise HTTPException(status_code=400, detail="No eBay Cert ID configured")
    logger.info(f"eBay Cert ID rotation requested for app {config.get('app_id')}")
    return {
        "status":  "pending",
        "message": "eBay Cert ID rotation initiated. Save the new Cert ID once it is issued.",
    }


@router.get("/tcgplayer")
def get_tcgplayer_config():
    return load_settings()["tcgplayer"]


@router.post("/tcgplayer")
def save_tcgplayer_config(body: TcgPlayerConfig):
    values = body.model_dump()
    logger.info(f"Saving TCGPlayer configuration: {redact(values)}")
    save_settings_section("tcgplayer", values)
    return {"status": "saved", "message": "TCGPlayer configuration saved successfully"}


@router.get("/notifications")
def get_notification_preferences():
    return load_settings()["notifications"]


@router.post("/notifications")
def save_notification_preferences(body: NotificationPreferences):
    save_settings_section("notifications", body.model_dump())
    return {"status": "saved", "message": "Notification preferences saved successfully"}


@router.get("/scanning")
def get_scanning_preferences():
    return load_settings()["scanning"]


@router.post("/scanning")
def save_scanning_preferences(body: ScanningPreferences):
    save_settings_section("scanning", body.model_dump())
    return {"status": "saved", "message": "Scanning preferences saved successfully"}


# ── Data management ───────────────────────────────────────────────────────────

@router.get("/export")
def export_collection(format: str = "csv", user: str = DEFAULT_USER, paths: dict = Depends(get_paths)):
    """Download the collection as CSV (spreadsheet-safe) or JSON.

    Raises:
        HTTPException: 400 for any format other than 'csv' or 'json'.
    """
    cards = load_cards(paths["cards"])
    try:
        payload, media_type, ext = export_cards(cards, format)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    filename = f"cardwise_{user}_{date.today().isoformat()}.{ext}"
    logger.info(f"Exported {len(cards)} cards for {user} as {ext}")
    return Response(
        content=payload,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import")
async def import_collection(file: UploadFile = File(...), user: str = DEFAULT_USER, paths: dict = Depends(get_paths)):
    """Import cards from an uploaded CSV (export layout) or JSON file.

    Returns:
        Dict with 'added', 'skipped' (duplicates) and 'errors' (rows that
        failed validation, each {'row', 'error'}).

    Raises:
        HTTPException: 400 if the file cannot be parsed.
    """
    content = await file.read()
    try:
        return import_cards(content, file.filename, user, paths["cards"])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid import file: {e}")


@router.post("/backup")
def create_backup(paths: dict = Depends(get_paths)):
    backup = backup_data(paths, label="manual")
    if not backup["files"]:
        raise HTTPException(status_code=404, detail="Nothing to back up")
    logger.info(f"Backup created: {backup['files']}")
    return {"status": "ok", "backup": backup}


@router.post("/maintenance")
def maintenance(paths: dict = Depends(get_paths)):
    """Re-validate the stored collection, removing duplicates and unreadable cards."""
    report = run_maintenance(paths)
    logger.info(f"Maintenance: {report}")
    return {"status": "ok", "report": report}


@router.delete("/clear-all")
def clear_all(paths: dict = Depends(get_paths)):
    """Remove every card from the collection after taking a backup."""
    result = clear_cards(paths)
    logger.warning(f"Cleared {result['removed']} cards")
    return {"status": "cleared", **result}
