"""Root banner, health check and placeholder card images."""

import re
import html

from fastapi import APIRouter, Path
from fastapi.responses import Response

router = APIRouter()

_HEX_COLOR = re.compile(r'^[0-9A-Fa-f]{3,8}$')

SVG_TEMPLATE = """<svg width="{width}" height="{height}" xmlns="http://www.w3.org/2000/svg">
  <rect width="100%" height="100%" fill="#{color}"/>
  <text x="50%" y="50%" font-family="Arial, sans-serif" font-size="14" fill="#{text_color}" text-anchor="middle" dominant-baseline="middle">{text}</text>
</svg>
"""


@router.get("/")
def root():
    return {"message": "CardWise API Server is running!"}


@router.get("/api/health")
def health():
    return {"status": "ok"}


@router.get("/api/placeholder/{width}/{height}")
def placeholder(
    width: int = Path(ge=1, le=2000),
    height: int = Path(ge=1, le=2000),
    color: str = "4A90E2",
    textColor: str = "FFFFFF",
    text: str = "Card Image",
):
    """Render a solid-colour SVG placeholder for cards without photos.

    Colours are hex without '#'; invalid values fall back to the defaults.
    """
    svg = SVG_TEMPLATE.format(
        width=width,
        height=height,
        color=color if _HEX_COLOR.match(color) else "4A90E2",
        text_color=textColor if _HEX_COLOR.match(textColor) else "FFFFFF",
        text=html.escape(text[:100]),
    )
    return Response(
        content=svg,
        media_type="image/svg+xml",
        headers={"Cache-Control": "public, max-age=3600"},
    )
