import base64
import hashlib
import uuid
from datetime import datetime, timedelta
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from ..config import settings

ACCESS_TOKEN_TYPE = "access_token"


class InvalidTokenError(Exception):
    """Base class for access token verification failures."""

    reason = "invalid"


class MalformedTokenError(InvalidTokenError):
    """Bad signature, bad structure, wrong issuer or audience."""

    reason = "malformed"


class ExpiredTokenError(InvalidTokenError):
    reason = "expired"


class WrongTokenKindError(InvalidTokenError):
    """A validly signed token that is not an access token (e.g. an ID token)."""

    reason = "wrong_token_kind"


def scope_includes(scope: Optional[str], name: str) -> bool:
    return name in (scope or "").split()


def create_access_token(subject: str, audience: str, scope: str) -> tuple[str, str]:
    """
    Create a JWT access token with jti for identification.

    Claims follow RFC 9068: iss, sub, aud, exp, iat, jti, scope and
    client_id, plus token_type so an ID token can never be replayed
    as an access token.

    Returns:
        Tuple of (access_token, jti)
    """
    now = datetime.utcnow()
    jti = str(uuid.uuid4())

    payload = {
        "iss": settings.JWT_ISSUER,
        "sub": subject,
        "aud": audience,
        "iat": now,
        "exp": now + timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS),
        "scope": scope,
        "jti": jti,
        "client_id": audience,
        "token_type": ACCESS_TOKEN_TYPE,
    }

    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, jti


def verify_access_token(token: str, audience: Optional[str] = None) -> dict:
    """
    Verify an access token's signature, issuer, expiry and kind.

    Args:
        token: The compact JWT
        audience: Expected audience; when None any audience is accepted

    Returns:
        The token claims

    Raises:
        ExpiredTokenError, MalformedTokenError or WrongTokenKindError
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=audience,
            issuer=settings.JWT_ISSUER,
            options={"verify_aud": audience is not None},
        )
    except ExpiredSignatureError as exc:
        raise ExpiredTokenError(str(exc)) from exc
    except JWTError as exc:
        raise MalformedTokenError(str(exc)) from exc

    if claims.get("token_type") != ACCESS_TOKEN_TYPE:
        raise WrongTokenKindError("Token is not an access token")

    return claims


def compute_at_hash(access_token: str) -> str:
    """
    Compute at_hash claim for ID token per OIDC Core §3.1.3.6.

    SHA256 hash of the access token, left-truncated to 128 bits,
    then base64url-encoded.
    """
    sha256_hash = hashlib.sha256(access_token.encode()).digest()
    truncated = sha256_hash[:16]
    return base64.urlsafe_b64encode(truncated).rstrip(b"=").decode()


def create_id_token(
    user,
    audience: str,
    scope: str,
    nonce: str | None = None,
    access_token: str | None = None,
) -> str:
    """
    Create an OIDC ID token JWT.

    Required claims per OpenID Connect Core §2:
    - iss: Issuer identifier
    - sub: Subject identifier (user ID)
    - aud: Audience (client ID)
    - exp: Expiration time
    - iat: Issued at time

    Scope-gated claims:
    - name: only when "profile" was granted
    - email: only when "email" was granted

    Optional claims:
    - nonce: Value to bind ID token to authentication request
    - at_hash: Access token hash (if access_token provided)
    """
    now = datetime.utcnow()

    payload = {
        "iss": settings.JWT_ISSUER,
        "sub": str(user.id),
        "aud": audience,
        "iat": now,
        "exp": now + timedelta(seconds=settings.ID_TOKEN_EXPIRE_SECONDS),
    }

    if scope_includes(scope, "profile") and user.name:
        payload["name"] = user.name

    if scope_includes(scope, "email") and user.email:
        payload["email"] = user.email

    if nonce:
        payload["nonce"] = nonce

    if access_token:
        payload["at_hash"] = compute_at_hash(access_token)

    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token
