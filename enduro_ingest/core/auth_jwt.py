"""JWT token creation and verification utilities.

Tokens are issued by the platform's identity service; this service only
verifies them. The athlete id travels in the 'sub' claim.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from loguru import logger

from enduro_ingest.config.settings import settings


def create_access_token(athlete_id: str) -> str:
    """Create a signed access token for an athlete (operator tooling and tests).

    Args:
        athlete_id: Athlete ID to encode in the 'sub' claim

    Returns:
        JWT token string
    """
    athlete_id_str = str(athlete_id) if athlete_id is not None else ""
    if not athlete_id_str:
        raise ValueError("athlete_id cannot be None or empty")
    if not settings.auth_secret_key:
        raise ValueError("AUTH_SECRET_KEY is not configured")

    now = datetime.now(timezone.utc)
    payload = {
        "sub": athlete_id_str,
        "exp": now + timedelta(days=settings.auth_token_expire_days),
        "iat": now,
        "iss": "enduro-ingest",
    }
    return jwt.encode(
        payload,
        settings.auth_secret_key,
        algorithm=settings.auth_algorithm,
    )


def decode_access_token(token: str) -> str:
    """Decode and verify a JWT access token.

    Args:
        token: JWT token string

    Returns:
        Athlete ID from the token 'sub' claim

    Raises:
        ValueError: If token is invalid, expired, or cannot be verified
    """
    if not settings.auth_secret_key:
        raise ValueError("Token verification is not configured")
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret_key,
            algorithms=[settings.auth_algorithm],
        )
    except JWTError as e:
        logger.warning(f"[AUTH] JWT decode failed: {e}")
        raise ValueError("Invalid or expired token") from e

    athlete_id = payload.get("sub")
    if not athlete_id:
        raise ValueError("Token missing athlete ID")
    return str(athlete_id)
