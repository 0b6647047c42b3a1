"""Account access tokens."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from jwt.exceptions import PyJWTError

from hotel_pms.core.config import settings

logger = logging.getLogger(__name__)


def create_access_token(
    account_id: str,
    role_id: int,
    expires_delta: timedelta | None = None,
    **claims: Any,
) -> str:
    """Create a signed token whose subject is the account id."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = dict(claims)
    to_encode.update({
        "sub": account_id,
        "role_id": role_id,
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a token; None when it is invalid or expired."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require": ["exp", "sub"]},
        )
    except PyJWTError as e:
        logger.debug(f"JWT decode error: {e}")
        return None
