from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))
JWT_ISSUER = os.getenv("JWT_ISSUER", "access-control")


def create_access_token(
    *,
    user_id: str,
    expires_minutes: int | None = None,
) -> str:
    """Issue a token naming only the user; roles are read fresh on every request."""
    issued_at = datetime.now(UTC)
    lifetime = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    claims: dict[str, Any] = {
        "sub": user_id,
        "iss": JWT_ISSUER,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    claims = jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        issuer=JWT_ISSUER,
        options={"require": ["sub", "exp"]},
    )
    if not isinstance(claims.get("sub"), str):
        raise ValueError("token subject must be a user id")
    return claims
