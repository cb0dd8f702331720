"""
FastAPI application: entry point
================================

Role
----
- Builds the FastAPI app and its `GameServer` (kept in `app.state.game_server`),
- configures CORS for the front-end,
- mounts the routers (REST + WebSocket),
- configures logging and lists the routes at startup.

Notes
-----
- Router imports are explicit.
- ⚠️ The CORS middleware must be added BEFORE include_router.
- Run with `uvicorn combate.main:app` or `python -m combate.main`.
"""
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from combate.config.settings import settings
from combate.routes.admin import router as admin_router
from combate.routes.health import router as health_router
from combate.routes.websocket import router as ws_router
from combate.services.server import GameServer

logger = logging.getLogger(__name__)

# --- Main FastAPI app ---
app = FastAPI(title=settings.APP_NAME)
app.state.game_server = GameServer()

# ===========================
# CORS
# ===========================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ===========================
# Routers
# ===========================
# Admin protection stays on the admin router, not on the app (OPTIONS preflights).
app.include_router(ws_router)                  # WebSocket endpoint (/ws)
app.include_router(health_router)
app.include_router(admin_router)


# --- Root, simple "ping" ---
@app.get("/")
async def root():
    return {"ok": True, "service": "combate-backend"}


# --- Lifecycle hooks ---
@app.on_event("startup")
async def on_startup():
    """Configure logging, then list the registered routes (diagnostic)."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Registered routes")
    for r in app.routes:
        logger.info("%s %s", r.path, sorted(getattr(r, "methods", None) or []))


@app.on_event("shutdown")
async def on_shutdown():
    await app.state.game_server.shutdown()


def run() -> None:
    uvicorn.run("combate.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
