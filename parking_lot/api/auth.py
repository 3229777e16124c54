"""Bearer-token authentication for API routes."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from parking_lot.config import get_settings
from parking_lot.core.records import UserService
from parking_lot.database.connection import get_db
from parking_lot.database.models import User

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_TYPE = "parking_access"

auth_scheme = HTTPBearer(auto_error=False)
user_service = UserService()


def create_access_token(email: str) -> Dict[str, Any]:
    """Create a signed access token for ``email``."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=max(settings.jwt_expiration_hours, 1))
    claims = {
        "sub": email,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_at": int(expires_at.timestamp()),
    }


def decode_access_token(token: str) -> str:
    """
    Validate an access token and return its subject email.

    Raises:
        ValueError: If the token is invalid, expired or of the wrong type
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise ValueError("Invalid or expired access token.") from exc

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise ValueError("Invalid access token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Access token missing subject.")
    return subject


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the authenticated user from the bearer token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        email = decode_access_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    user = await user_service.get_user(email, db)
    if user is None:
        logger.warning("token_for_unknown_user", email=email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User no longer exists.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
