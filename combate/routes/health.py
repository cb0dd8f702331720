"""
Module routes/health.py
Role:
- Liveness endpoint: service name plus session / waiting player counts.
"""
from fastapi import APIRouter, Request

from combate.config.settings import settings

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(request: Request):
    """Minimal OK with the configured service name."""
    stats = request.app.state.game_server.store.stats()
    return {
        "ok": True,
        "service": settings.APP_NAME,
        "sessions": stats["sessions_total"],
        "waiting": stats["pending_player"] is not None,
    }
