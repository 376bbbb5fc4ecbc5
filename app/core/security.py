"""Access token signing and verification.

Tokens are HS256 JWTs whose payload is {userId, username, role, familyId, exp}.
This is the only place tokens are decoded.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import ValidationError

from app.config import Settings, settings as default_settings
from app.models.chat import Principal

# "Bearer <token>", plus the historical "Bearer: <token>" form
_BEARER_RE = re.compile(r"^Bearer:?\s+(\S+)$", re.IGNORECASE)


class InvalidTokenError(Exception):
    """Token missing, malformed, expired, or signed with another secret."""


def create_access_token(
    principal: Principal,
    expires_minutes: Optional[int] = None,
    settings: Settings = default_settings,
) -> str:
    """
    Sign an access token for a principal.

    Used by the login/registration collaborator and by tests.
    """
    lifetime = expires_minutes if expires_minutes is not None else settings.JWT_EXPIRE_MINUTES
    payload = {
        **principal.model_dump(mode="json", by_alias=True),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=lifetime),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def parse_authorization_header(header: Optional[str]) -> str:
    """
    Extract the raw token from an Authorization header.

    Raises:
        InvalidTokenError: If the header is absent or not a bearer credential
    """
    if not header:
        raise InvalidTokenError("Missing Authorization header")
    match = _BEARER_RE.match(header.strip())
    if not match:
        raise InvalidTokenError("Authorization header is not a bearer token")
    return match.group(1)


def decode_access_token(token: str, settings: Settings = default_settings) -> Principal:
    """
    Verify signature and expiry, then decode the payload into a Principal.

    Raises:
        InvalidTokenError: On any verification or payload problem
    """
    if not settings.JWT_SECRET:
        raise InvalidTokenError("JWT_SECRET is not configured")
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.PyJWTError as e:
        raise InvalidTokenError(str(e)) from e

    try:
        return Principal.model_validate(payload)
    except ValidationError as e:
        raise InvalidTokenError("Token payload does not describe a principal") from e
