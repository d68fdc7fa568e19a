"""JWT token creation and verification for REST API authentication.

Player ids are opaque strings issued by the account provider; this module
only signs and checks bearer tokens carrying them.

Usage::

    from polis.network.jwt_auth import create_token, get_current_player

    token = create_token(player_id)

    @app.get("/api/cities")
    async def cities(player_id: str = Depends(get_current_player)):
        ...
"""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

log = logging.getLogger(__name__)

# Secret key: read from env or use a default (fine for a local server)
JWT_SECRET: str = os.environ.get("JWT_SECRET", "polis-server-secret-key-change-in-prod")
JWT_ALGORITHM: str = "HS256"
JWT_EXPIRY_SECONDS: int = 86400  # 24 hours

_bearer_scheme = HTTPBearer(auto_error=False)


def create_token(player_id: str) -> str:
    """Create a signed JWT token for a player.

    Args:
        player_id: The authenticated player's id.

    Returns:
        Encoded JWT string.
    """
    payload = {
        "sub": player_id,
        "iat": int(time.time()),
        "exp": int(time.time()) + JWT_EXPIRY_SECONDS,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> str:
    """Verify a JWT token and return the player id.

    Raises:
        ValueError: If the token is invalid or expired.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise ValueError("Token expired")
    except jwt.InvalidTokenError as e:
        raise ValueError(f"Invalid token: {e}")
    player_id = payload.get("sub")
    if not player_id:
        raise ValueError("Token missing sub claim")
    return str(player_id)


async def get_current_player(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> str:
    """FastAPI dependency that extracts the player id from the Authorization header.

    Raises:
        HTTPException(401): If token is missing, invalid, or expired.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authorization header required")
    try:
        return verify_token(credentials.credentials)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))
