"""Call Recording Ingest - Bearer token authentication.

Callers present "Authorization: Bearer <token>". Only the SHA256 digest of
each token is stored (users.api_token_hash); lookups hash the presented
token and match on the digest.
"""

from __future__ import annotations

import logging
import secrets

from sqlalchemy import select
from sqlalchemy.orm import Session

from callrec.models import User
from callrec.utils.hashing import sha256_text

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Missing, unknown or deactivated credentials (HTTP 401)."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def hash_api_token(token: str) -> str:
    """Digest stored in users.api_token_hash for a raw token."""
    return sha256_text(token)


def generate_api_token() -> str:
    """Create a new random bearer token (the caller stores only its hash)."""
    return secrets.token_urlsafe(32)


def parse_bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an Authorization header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def authenticate(session: Session, authorization: str | None) -> User:
    """Resolve the calling user from an Authorization header.

    Args:
        session: Database session.
        authorization: Raw Authorization header value (may be None).

    Returns:
        The active User owning the token.

    Raises:
        AuthenticationError: If the token is missing, unknown, or the account
            is deactivated.
    """
    token = parse_bearer_token(authorization)
    if token is None:
        raise AuthenticationError("Access token required")

    user = session.execute(
        select(User).where(User.api_token_hash == hash_api_token(token))
    ).scalar_one_or_none()
    if user is None:
        logger.warning("Rejected request with unknown bearer token")
        raise AuthenticationError("Invalid token - user not found")

    if not user.is_active:
        logger.warning("Rejected request from deactivated user %s", user.id)
        raise AuthenticationError("Account is deactivated")

    return user
