"""
Admin authentication dependency
===============================

`admin_required` guards the /admin routes with a Bearer token
(`settings.ADMIN_TOKEN`).

Return codes
------------
- 401 when no Bearer credentials are sent,
- 403 when a Bearer token is sent but does not match,
- True otherwise.

Notes
-----
- `HTTPBearer(auto_error=False)` so the 401/403 above are ours.
- Put the dependency on the routes, not on the app: CORS preflight
  (OPTIONS) requests carry no Authorization header.
"""
from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from combate.config.settings import settings

# Bearer scheme (no automatic error, see module notes)
bearer = HTTPBearer(auto_error=False)


def admin_required(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> bool:
    if credentials and (credentials.scheme or "").lower() == "bearer":
        if secrets.compare_digest(credentials.credentials, settings.ADMIN_TOKEN):
            return True
        raise HTTPException(status_code=403, detail="Invalid token")
    raise HTTPException(status_code=401, detail="Admin authentication required")
