"""Bearer token handling for the intake API.

Tokens come from the account service. The intake API only needs the owner
id, read from the 'sub' claim, to scope uploads, activities and links. When
AUTH_ISSUER is set, tokens from any other issuer are rejected.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from loguru import logger

from app.config.settings import settings


class TokenError(ValueError):
    """Bearer token could not be verified or names no owner."""


def _signing_key() -> str:
    if not settings.auth_secret_key:
        raise TokenError("Token verification is not configured")
    return settings.auth_secret_key


def create_access_token(user_id: str, expires_in: timedelta | None = None) -> str:
    """Sign a token for local tooling and tests.

    Args:
        user_id: Owner id for the 'sub' claim
        expires_in: Lifetime, defaults to AUTH_TOKEN_EXPIRE_DAYS

    Returns:
        Encoded JWT
    """
    owner = str(user_id).strip() if user_id is not None else ""
    if not owner:
        raise TokenError("user_id cannot be None or empty")

    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": owner,
        "iat": now,
        "exp": now + (expires_in if expires_in is not None else timedelta(days=settings.auth_token_expire_days)),
    }
    if settings.auth_issuer:
        claims["iss"] = settings.auth_issuer
    return jwt.encode(claims, _signing_key(), algorithm=settings.auth_algorithm)


def decode_access_token(token: str) -> str:
    """Verify a bearer token and return its owner id.

    Raises:
        TokenError: Bad signature, expired, wrong issuer, or no usable 'sub'
    """
    try:
        claims = jwt.decode(
            token,
            _signing_key(),
            algorithms=[settings.auth_algorithm],
            issuer=settings.auth_issuer or None,
        )
    except ExpiredSignatureError as e:
        raise TokenError("Token has expired") from e
    except JWTError as e:
        logger.warning(f"JWT decode failed: {e}")
        raise TokenError("Invalid token") from e

    owner = claims.get("sub")
    if not isinstance(owner, str) or not owner.strip():
        raise TokenError("Token missing user ID")
    return owner.strip()
