"""
Authentication Dependencies for College Orbit

Provides FastAPI dependencies for:
- Bearer token verification and user lookup
- Shared-secret verification for the scheduled generation job

Usage:
    @router.get("/protected")
    def protected_endpoint(current_user: User = Depends(get_current_user)):
        return {"user_id": current_user.id}
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from orbit import config
from orbit.database import get_db
from orbit.models.models import User
from orbit.services.auth import TokenError, get_user_id_from_token

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for extracting tokens
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    FastAPI dependency to get the currently authenticated user.

    Raises:
        HTTPException: 401 if the token is missing, invalid, or names an unknown user
    """
    if not credentials or not credentials.credentials:
        raise _unauthorized("Not authenticated")

    try:
        user_id = get_user_id_from_token(credentials.credentials)
    except TokenError as e:
        logger.info("Rejected bearer token: %s", e)
        raise _unauthorized(str(e))

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise _unauthorized("Unauthorized")

    return user


def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` on scheduled-job endpoints."""
    expected = config.CRON_SECRET
    if not expected:
        logger.error("CRON_SECRET is not configured; refusing scheduled job request")
        raise _unauthorized("Unauthorized")

    presented = credentials.credentials if credentials else ""
    if not secrets.compare_digest(presented.encode(), expected.encode()):
        raise _unauthorized("Unauthorized")
