"""
Refresh token storage per RFC 6749 Section 6 and RFC 7009.

Refresh tokens are opaque, bound to the client they were issued to, and
valid until they expire or are revoked. They are not rotated on use.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from sso.oauth.errors import OAuthError, OAuthErrorCode
from sso.oauth.models import RefreshToken
from sso.oauth.pkce import random_token

from ..config import settings

logger = logging.getLogger(__name__)


def create_refresh_token(
    db: Session,
    user_id: str,
    client_id: str,
    scope: str,
) -> str:
    """
    Create a refresh token for the OAuth flow.

    Args:
        db: Database session
        user_id: User identifier
        client_id: Client identifier
        scope: Granted scopes (space-separated)

    Returns:
        The generated refresh token string (512 bits of entropy)
    """

    token = random_token(64)

    refresh_token = RefreshToken(
        token=token,
        user_id=user_id,
        client_id=client_id,
        scope=scope,
        revoked=False,
        expires_at=datetime.utcnow()
        + timedelta(seconds=settings.REFRESH_TOKEN_EXPIRE_SECONDS),
    )

    db.add(refresh_token)
    db.commit()

    return token


def validate_refresh_token(
    db: Session,
    token: str,
    client_id: str,
) -> RefreshToken:
    """
    Validate a refresh token.

    Args:
        db: Database session
        token: Refresh token string
        client_id: Client identifier for binding check

    Returns:
        RefreshToken if valid

    Raises:
        OAuthError if token is unknown for this client, expired, or revoked
    """
    refresh_token = (
        db.query(RefreshToken)
        .filter(RefreshToken.token == token, RefreshToken.client_id == client_id)
        .first()
    )

    if not refresh_token:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_GRANT,
            description="Invalid refresh token",
        )

    if refresh_token.revoked:
        logger.warning("Use of revoked refresh token for client=%s", client_id)
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_GRANT,
            description="Refresh token has been revoked",
        )

    if datetime.utcnow() >= refresh_token.expires_at:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_GRANT,
            description="Refresh token has expired",
        )

    return refresh_token


def revoke_refresh_token(
    db: Session,
    token: str,
    client_id: Optional[str] = None,
    reason: str = "user_revoked",
) -> bool:
    """
    Revoke a refresh token.

    Idempotent: unknown and already-revoked tokens are not an error,
    mirroring RFC 7009 Section 2.2.

    Args:
        db: Database session
        token: Refresh token string
        client_id: When given, only a token bound to this client is revoked
        reason: Recorded on the token for auditing

    Returns:
        True if this call revoked a live token, False otherwise
    """
    statement = update(RefreshToken).where(
        RefreshToken.token == token,
        RefreshToken.revoked.is_(False),
    )
    if client_id is not None:
        statement = statement.where(RefreshToken.client_id == client_id)

    result = db.execute(
        statement.values(
            revoked=True,
            revoked_at=datetime.utcnow(),
            revoked_reason=reason,
        )
    )
    db.commit()

    revoked = result.rowcount == 1
    if revoked:
        logger.info("Refresh token revoked (%s)", reason)
    return revoked
