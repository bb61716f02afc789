# app/core/security.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from app.core.config import get_settings


def create_access_token(subject: str, claims: Dict[str, Any], expires_minutes: Optional[int] = None) -> str:
    """
    Tokens are issued by the user service; this helper exists for that
    collaborator and for tests. Claims: role, fleet_manager_id (drivers only).
    """
    settings = get_settings()
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.jwt_access_token_minutes)
    payload = {
        **claims,
        "sub": subject,
        "iss": settings.jwt_issuer,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Verifies signature, expiry and issuer. Raises jose.JWTError on any failure.
    """
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
    )
