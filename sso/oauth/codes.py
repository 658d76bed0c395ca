"""
Authorization code storage with single-use and expiry semantics.

Codes are issued by the authorization endpoint and redeemed exactly once
at the token endpoint (RFC 6749 Section 4.1.2: "The client MUST NOT use
the authorization code more than once").
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from sso.oauth.errors import OAuthError, OAuthErrorCode
from sso.oauth.models import AuthorizationCode
from sso.oauth.pkce import random_token, verify_code_challenge

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedeemedCode:
    user_id: str
    client_id: str
    scope: str
    nonce: Optional[str]


def _invalid_grant(description: str) -> OAuthError:
    return OAuthError(error_code=OAuthErrorCode.INVALID_GRANT, description=description)


def issue_authorization_code(
    db: Session,
    user_id: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    code_challenge: Optional[str] = None,
    code_challenge_method: Optional[str] = None,
    state: Optional[str] = None,
    nonce: Optional[str] = None,
) -> str:
    """
    Create an authorization code for the OAuth flow.

    Args:
        db: Database session
        user_id: Authenticated user's identifier
        client_id: Client identifier
        redirect_uri: Redirect URI for validation at token exchange
        scope: Granted scopes (space-separated)
        code_challenge: PKCE code challenge
        code_challenge_method: PKCE method ("S256" or "plain")
        state: The client's state value, kept for auditing
        nonce: Optional nonce for OIDC id_token

    Returns:
        The generated authorization code string
    """
    code = random_token(32)

    auth_code = AuthorizationCode(
        code=code,
        user_id=user_id,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        state=state,
        nonce=nonce,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method if code_challenge else None,
        used=False,
        expires_at=datetime.utcnow() + timedelta(seconds=settings.CODE_EXPIRY_SECONDS),
    )

    db.add(auth_code)
    db.commit()

    logger.info("Authorization code issued for client=%s user=%s", client_id, user_id)
    return code


def redeem_authorization_code(
    db: Session,
    code: str,
    client_id: str,
    redirect_uri: Optional[str],
    code_verifier: Optional[str] = None,
) -> RedeemedCode:
    """
    Validate and consume an authorization code.

    Args:
        db: Database session
        code: Authorization code
        client_id: Authenticated client identifier
        redirect_uri: Must equal the redirect_uri from the authorization request
        code_verifier: PKCE code verifier (required if a code_challenge was stored)

    Returns:
        RedeemedCode with the user, granted scope and nonce

    Raises:
        OAuthError(invalid_grant) if the code is unknown for this client,
        used, expired, bound to another redirect URI, or fails PKCE
    """
    auth_code = (
        db.query(AuthorizationCode)
        .filter(
            AuthorizationCode.code == code,
            AuthorizationCode.client_id == client_id,
        )
        .first()
    )

    if not auth_code:
        raise _invalid_grant("Authorization code not found")

    if auth_code.used:
        logger.warning("Replay of used authorization code for client=%s", client_id)
        raise _invalid_grant("Authorization code has already been used")

    if datetime.utcnow() >= auth_code.expires_at:
        raise _invalid_grant("Authorization code has expired")

    # Per RFC 6749 Section 4.1.3 the values MUST be identical
    if auth_code.redirect_uri != redirect_uri:
        raise _invalid_grant("Redirect URI mismatch")

    # Validate PKCE code_verifier per RFC 7636 Section 4.6
    if auth_code.code_challenge:
        if not code_verifier:
            raise _invalid_grant("Missing code_verifier for PKCE")

        if not verify_code_challenge(
            code_verifier,
            auth_code.code_challenge,
            auth_code.code_challenge_method or "S256",
        ):
            raise _invalid_grant("Invalid code_verifier")

    # Check-and-set: only the redeemer whose UPDATE flips used=false wins
    result = db.execute(
        update(AuthorizationCode)
        .where(
            AuthorizationCode.id == auth_code.id,
            AuthorizationCode.used.is_(False),
        )
        .values(used=True)
    )
    db.commit()

    if result.rowcount != 1:
        logger.warning("Concurrent redemption of authorization code for client=%s", client_id)
        raise _invalid_grant("Authorization code has already been used")

    logger.info("Authorization code redeemed for client=%s user=%s", client_id, auth_code.user_id)
    return RedeemedCode(
        user_id=auth_code.user_id,
        client_id=auth_code.client_id,
        scope=auth_code.scope,
        nonce=auth_code.nonce,
    )


def purge_expired_codes(db: Session) -> int:
    """Delete expired authorization codes. Returns the number removed."""
    result = db.execute(
        delete(AuthorizationCode).where(AuthorizationCode.expires_at <= datetime.utcnow())
    )
    db.commit()
    return result.rowcount
