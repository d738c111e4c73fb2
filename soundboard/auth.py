"""Bearer-token authentication for the HTTP API.

Tokens are HS256 JWTs whose ``sub`` is the user's SteamID64.  They are
minted by the identity-provider exchange after :func:`store.upsert_user`
(see :func:`create_token`); the API only verifies them.
"""

from __future__ import annotations

import os
import time

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from soundboard import store
from soundboard.errors import ApiError

# ── Configuration ─────────────────────────────────────────────────
JWT_SECRET = os.environ.get("SOUNDBOARD_JWT_SECRET", "soundboard-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_SECONDS = int(os.environ.get("SOUNDBOARD_JWT_EXPIRY", "604800"))  # 7d

_bearer = HTTPBearer(auto_error=False)


# ── JWT helpers ───────────────────────────────────────────────────

def create_token(steam_id_64: str) -> str:
    now = int(time.time())
    payload = {
        "sub": steam_id_64,
        "iat": now,
        "exp": now + JWT_EXPIRY_SECONDS,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise ApiError(401, "UNAUTHORIZED", "Session expired")
    except jwt.InvalidTokenError:
        raise ApiError(401, "UNAUTHORIZED", "Invalid session")


# ── FastAPI dependencies ──────────────────────────────────────────

async def require_user(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> dict:
    """Resolve the caller's user row; rejects anonymous and banned callers."""
    if creds is None:
        raise ApiError(401, "UNAUTHORIZED", "Authentication required")
    claims = decode_token(creds.credentials)
    user = store.get_user(str(claims.get("sub", "")))
    if user is None:
        raise ApiError(401, "UNAUTHORIZED", "Authentication required")
    if user["is_banned"]:
        raise ApiError(403, "BANNED", "Your account has been banned")
    return user


async def require_admin(user: dict = Depends(require_user)) -> dict:
    if not user["is_admin"]:
        raise ApiError(403, "FORBIDDEN", "Admin access required")
    return user
