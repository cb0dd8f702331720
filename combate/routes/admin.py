"""
Admin routes.

Bearer-protected (`admin_required`) view on the running server:
- GET  /admin/stats : sessions per phase, pending player, disconnects and
  timers, rate-limit windows, latest placement log entries;
- POST /admin/reset : drop every match and waiting player (timers cancelled,
  rate limits cleared). Open sockets stay connected.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from combate.deps.auth import admin_required

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(admin_required)],
)


@router.get("/stats")
async def admin_stats(request: Request):
    return request.app.state.game_server.stats()


@router.post("/reset")
async def admin_reset(request: Request):
    return request.app.state.game_server.reset()
