"""HS256 access tokens issued after sign-in."""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt

from ..config import Config

ALGORITHM = "HS256"


def create_auth_token(
    *,
    sub: str,
    role: str,
    username: str,
    expires_in: int = Config.ACCESS_TOKEN_TTL_SECONDS,
    secret: Optional[str] = None,
) -> str:
    now = int(time.time())
    claims = {
        "sub": sub,
        "role": role,
        "username": username,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(claims, secret or Config.JWT_SECRET, algorithm=ALGORITHM)


def verify_auth_token(token: str, *, secret: Optional[str] = None) -> Dict[str, Any]:
    """Decode ``token``; raises ``jwt.InvalidTokenError`` when it is bad or expired."""
    return jwt.decode(
        token,
        secret or Config.JWT_SECRET,
        algorithms=[ALGORITHM],
        options={"require": ["sub", "exp"]},
    )
