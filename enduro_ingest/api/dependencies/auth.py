"""FastAPI authentication dependency.

Resolves the requesting athlete from a bearer JWT. Outside prod auth mode,
and only when ALLOW_HEADER_OVERRIDE is enabled, an X-Athlete-Id header is
accepted instead so local clients can act as any athlete.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from loguru import logger

from enduro_ingest.config.settings import settings
from enduro_ingest.core.auth_jwt import decode_access_token

ATHLETE_HEADER = "X-Athlete-Id"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_athlete_id(request: Request, token: str | None = Depends(oauth2_scheme)) -> str:
    """FastAPI dependency returning the authenticated athlete id.

    Raises:
        HTTPException: 401 if no usable credentials were supplied
    """
    header_athlete = request.headers.get(ATHLETE_HEADER, "").strip()
    if header_athlete and settings.auth_mode != "prod" and settings.allow_header_override:
        logger.debug(f"[AUTH] Using {ATHLETE_HEADER} override for {request.url.path}")
        return header_athlete

    if not token:
        logger.warning(f"[AUTH] Missing bearer token. Path: {request.url.path}, Method: {request.method}")
        raise _unauthorized("Not authenticated. Please provide a valid Bearer token in the Authorization header.")

    try:
        return decode_access_token(token)
    except ValueError as e:
        logger.warning(f"[AUTH] Rejected token: {e}, Path: {request.url.path}")
        raise _unauthorized("Invalid authentication credentials") from e
