"""
Security utilities for the Daily Outreach API.
JWT verification for dashboard routes and secure batch link tokens.
"""
from typing import Optional
import secrets

import jwt

from daily_outreach.config import settings


ACCESS_TOKEN_TYPE = "access"


def decode_token(token: str) -> Optional[dict]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded payload dict or None if invalid
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def verify_access_token(token: str) -> Optional[dict]:
    """
    Verify an access token issued by the auth service.

    Returns:
        Decoded payload if valid and of the access type, None otherwise
    """
    payload = decode_token(token)
    if payload and payload.get("type") == ACCESS_TOKEN_TYPE:
        return payload
    return None


def generate_secure_token(length: int = 32) -> str:
    """Generate an unguessable URL-safe token for batch links."""
    return secrets.token_urlsafe(length)
