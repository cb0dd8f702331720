"""
Application settings
====================

Role
----
- Centralise the server parameters (name, host/port, admin token, timers,
  rate limits, logging level).
- Defaults suit a local dev environment.
- Every value can be overridden through a `.env` file or the environment.

Integrations
------------
- `pydantic-settings` loads environment variables and `.env` automatically.
- Services and routers import `from combate.config.settings import settings`.

Notes
-----
- Do *not* commit a real `ADMIN_TOKEN`. Use `.env`.
- A disconnect grace of 0 seconds means "tear the match down immediately".

Example `.env`
--------------
APP_NAME="Combate Backend (Staging)"
PORT=8082
ADMIN_TOKEN="put-a-secret-here"
PLACEMENT_DISCONNECT_GRACE_SECONDS=120
ACTIVE_DISCONNECT_GRACE_SECONDS=30
LOG_LEVEL="DEBUG"
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Service name (shown by /health)
    APP_NAME: str = "Combate Backend"
    # Network bind (FastAPI / Uvicorn)
    HOST: str = "0.0.0.0"
    PORT: int = 8082

    # Bearer token for the /admin routes
    # ⚠️ Replace in production through .env
    ADMIN_TOKEN: str = "changeme-super-secret"

    LOG_LEVEL: str = "INFO"

    # Front-ends allowed by the CORS middleware
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Disconnect policies, one per phase
    PLACEMENT_DISCONNECT_GRACE_SECONDS: float = 300.0
    ACTIVE_DISCONNECT_GRACE_SECONDS: float = 0.0

    # Fixed-window rate limits (requests per window, window length in ms)
    RATE_LIMIT_PLACEMENT_MAX: int = 100
    RATE_LIMIT_PLACEMENT_WINDOW_MS: int = 60_000
    RATE_LIMIT_MOVEMENT_MAX: int = 200
    RATE_LIMIT_MOVEMENT_WINDOW_MS: int = 60_000
    RATE_LIMIT_CONFIRMATION_MAX: int = 10
    RATE_LIMIT_CONFIRMATION_WINDOW_MS: int = 60_000

    # Legacy mode: skip placement, both armies are arranged at random
    INSTANT_SETUP: bool = False

    # pydantic-settings:
    # - reads .env (UTF-8) when present
    # - ignores extra keys
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Single importable instance: `settings`
settings = Settings()
