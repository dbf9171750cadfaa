"""
Authentication Service
Issues and verifies the JWT access tokens that identify a user.

Sign-up, login and password handling live with the identity provider;
this service only needs to map a bearer token to a user id.
"""
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt

from orbit.config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY

if not JWT_SECRET_KEY or len(JWT_SECRET_KEY) < 32:
    raise RuntimeError(
        "CRITICAL: JWT_SECRET_KEY environment variable must be set to a secure value "
        "(at least 32 characters). "
        "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
    )


class TokenError(Exception):
    """Raised when token is invalid or expired"""
    pass


def create_access_token(
    user_id: str,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: User ID to encode in token
        expires_delta: Optional custom expiration time

    Returns:
        JWT access token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    issued_at = datetime.utcnow()
    to_encode = {
        "sub": user_id,
        "type": "access",
        "exp": issued_at + expires_delta,
        "iat": issued_at,
    }

    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify and decode an access token.

    Raises:
        TokenError: If token is invalid or expired
    """
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        if "expired" in str(e).lower():
            raise TokenError("Token has expired")
        raise TokenError(f"Invalid token: {str(e)}")

    if payload.get("type") != "access":
        raise TokenError("Invalid token type. Expected access")

    if not payload.get("sub"):
        raise TokenError("Token missing user ID")

    return payload


def get_user_id_from_token(token: str) -> str:
    return verify_token(token)["sub"]
