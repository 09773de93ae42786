"""Shared FastAPI dependencies for the routers."""

from fastapi import HTTPException

from collection_utils import get_user_paths
from config import ADMIN_USERNAME
from ollama_service import OllamaService

DEFAULT_USER = ADMIN_USERNAME


def get_paths(user: str = DEFAULT_USER) -> dict:
    """Resolve a user's data file paths, rejecting unsafe usernames with 400."""
    try:
        return get_user_paths(user)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def get_ollama_service() -> OllamaService:
    return OllamaService()


def unwrap(body: dict, key: str) -> dict:
    """Accept both a bare object and one wrapped as {key: {...}}."""
    if isinstance(body, dict) and set(body) == {key} and isinstance(body[key], dict):
        return body[key]
    return body
