"""Liveness endpoint."""

from fastapi import APIRouter

router = APIRouter()


@router.get("/health")
async def health_check():
    """Process liveness; scheduler health lives under /knowledge/health."""
    return {"status": "ok"}
