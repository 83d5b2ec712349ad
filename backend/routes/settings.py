"""Health check and settings endpoints."""

from fastapi import APIRouter

from backend import storage

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
def get_settings():
    """Service settings (LLM endpoint and model, extra sensitive words, strictness).

    Read-only; edit config.json or the environment to change them.
    """
    return storage.get_config()
