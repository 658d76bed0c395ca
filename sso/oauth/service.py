import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union

from sqlalchemy.orm import Session

from sso.models.user import User
from sso.oauth.codes import redeem_authorization_code
from sso.oauth.errors import (
    OAuthError,
    OAuthErrorCode,
    invalid_client_error,
    invalid_token_error,
)
from sso.oauth.jwt import (
    InvalidTokenError,
    create_access_token,
    create_id_token,
    scope_includes,
    verify_access_token,
)
from sso.oauth.models import OAuthClient
from sso.oauth.pkce import S256, SUPPORTED_METHODS
from sso.oauth.refresh_tokens import (
    create_refresh_token,
    revoke_refresh_token,
    validate_refresh_token,
)
from sso.oauth.utils import create_token_response
from sso.services.auth import verify_password

from ..config import settings

logger = logging.getLogger(__name__)


class GrantType(str, Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"


@dataclass(frozen=True)
class AuthorizationCodeGrant:
    code: str
    redirect_uri: str
    code_verifier: Optional[str] = None


@dataclass(frozen=True)
class RefreshTokenGrant:
    refresh_token: str


Grant = Union[AuthorizationCodeGrant, RefreshTokenGrant]


@dataclass(frozen=True)
class AuthorizationRequest:
    """Parameters of a GET /authorize request (RFC 6749 §4.1.1, OIDC Core §3.1.2.1)."""

    response_type: Optional[str] = None
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    scope: Optional[str] = None
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    nonce: Optional[str] = None
    prompt: Optional[str] = None

    @property
    def is_silent(self) -> bool:
        return self.prompt == "none"


def validate_client_and_redirect(
    db: Session, auth_request: AuthorizationRequest
) -> OAuthClient:
    """
    Validate the parts of an authorization request that decide whether
    the redirect URI can be trusted.

    Per RFC 6749 Section 4.1.2.1, failures here MUST NOT redirect the
    user-agent, so they are raised as OAuthError and rendered as JSON.

    Raises:
        OAuthError: invalid_request, unsupported_response_type or invalid_client
    """
    if (
        not auth_request.response_type
        or not auth_request.client_id
        or not auth_request.redirect_uri
    ):
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_REQUEST,
            description="Missing required parameters: response_type, client_id, redirect_uri",
        )

    if auth_request.response_type != "code":
        raise OAuthError(
            error_code=OAuthErrorCode.UNSUPPORTED_RESPONSE_TYPE,
            description="The authorization server only supports 'code' response type",
        )

    client = (
        db.query(OAuthClient)
        .filter(
            OAuthClient.client_id == auth_request.client_id,
            OAuthClient.is_active.is_(True),
        )
        .first()
    )

    if not client:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_CLIENT,
            description="Client not found or inactive",
        )

    # Never redirect to an unregistered URI (open redirector)
    if not client.is_valid_redirect_uri(auth_request.redirect_uri):
        logger.warning(
            "Rejected unregistered redirect_uri for client=%s", client.client_id
        )
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_REQUEST,
            description="Invalid redirect_uri",
        )

    return client


def validate_authorization_params(
    client: OAuthClient, auth_request: AuthorizationRequest
) -> AuthorizationRequest:
    """
    Validate PKCE and scope parameters for an already-trusted redirect URI.

    Errors raised here carry the request's state and are communicated by
    redirecting to the client.

    Returns:
        The request with defaults applied (scope and code_challenge_method)
    """
    if client.require_pkce and not auth_request.code_challenge:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_REQUEST,
            description="PKCE code_challenge required",
            state=auth_request.state,
        )

    method = auth_request.code_challenge_method
    if auth_request.code_challenge:
        method = method or S256
        if method not in SUPPORTED_METHODS:
            raise OAuthError(
                error_code=OAuthErrorCode.INVALID_REQUEST,
                description="Invalid code_challenge_method. Supported: S256, plain",
                state=auth_request.state,
            )

    scope = auth_request.scope or client.scopes
    requested = set(scope.split())
    if not requested.issubset(client.allowed_scopes):
        invalid_scopes = requested - client.allowed_scopes
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_SCOPE,
            description=f"Requested scopes not allowed: {' '.join(sorted(invalid_scopes))}",
            state=auth_request.state,
        )

    return replace(auth_request, scope=scope, code_challenge_method=method)


def authenticate_client(
    db: Session,
    client_id: Optional[str],
    client_secret: Optional[str],
) -> OAuthClient:
    """
    Authenticate the client at the token or revocation endpoint.

    Confidential clients MUST present their secret (RFC 6749 §2.3.1).
    Public clients cannot keep a secret and are identified by client_id only.

    Raises:
        OAuthError(invalid_client) with HTTP 401
    """
    if not client_id:
        raise invalid_client_error()

    client = (
        db.query(OAuthClient)
        .filter(OAuthClient.client_id == client_id)
        .first()
    )

    if not client or not client.is_active:
        logger.info("Token request from unknown or inactive client=%s", client_id)
        raise invalid_client_error()

    if client.is_confidential:
        if not client_secret or not verify_password(client_secret, client.client_secret):
            logger.info("Client authentication failed for client=%s", client_id)
            raise invalid_client_error()

    return client


def parse_grant(
    grant_type: Optional[str],
    code: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    code_verifier: Optional[str] = None,
    refresh_token: Optional[str] = None,
) -> Grant:
    """Turn token request parameters into one of the supported grants."""
    if not grant_type:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_REQUEST,
            description="Missing required parameter: grant_type",
        )

    try:
        kind = GrantType(grant_type)
    except ValueError:
        raise OAuthError(
            error_code=OAuthErrorCode.UNSUPPORTED_GRANT_TYPE,
            description=f"Unsupported grant type: {grant_type}",
        ) from None

    if kind is GrantType.AUTHORIZATION_CODE:
        if not code or not redirect_uri:
            raise OAuthError(
                error_code=OAuthErrorCode.INVALID_REQUEST,
                description="Missing required parameters: code, redirect_uri",
            )
        return AuthorizationCodeGrant(
            code=code, redirect_uri=redirect_uri, code_verifier=code_verifier
        )

    if not refresh_token:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_REQUEST,
            description="Missing required parameter: refresh_token",
        )
    return RefreshTokenGrant(refresh_token=refresh_token)


def handle_token_request(db: Session, client: OAuthClient, grant: Grant):
    """
    OAuth 2.0 token endpoint dispatch.

    Supports:
    - authorization_code grant (RFC 6749 §4.1.3)
    - refresh_token grant (RFC 6749 §6)
    """
    if isinstance(grant, AuthorizationCodeGrant):
        return handle_authorization_code_grant(db, client, grant)
    if isinstance(grant, RefreshTokenGrant):
        return handle_refresh_token_grant(db, client, grant)
    raise OAuthError(
        error_code=OAuthErrorCode.UNSUPPORTED_GRANT_TYPE,
        description="Unsupported grant type",
    )


def handle_authorization_code_grant(
    db: Session, client: OAuthClient, grant: AuthorizationCodeGrant
):
    """Exchange an authorization code for access, refresh and ID tokens."""
    redeemed = redeem_authorization_code(
        db=db,
        code=grant.code,
        client_id=client.client_id,
        redirect_uri=grant.redirect_uri,
        code_verifier=grant.code_verifier,
    )

    user = db.query(User).filter(User.id == redeemed.user_id).first()
    if not user:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_GRANT,
            description="The resource owner no longer exists",
        )

    access_token, _ = create_access_token(
        subject=str(user.id),
        audience=client.client_id,
        scope=redeemed.scope,
    )

    refresh_token = create_refresh_token(
        db=db,
        user_id=str(user.id),
        client_id=client.client_id,
        scope=redeemed.scope,
    )

    response_content = {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": settings.ACCESS_TOKEN_EXPIRE_SECONDS,
        "refresh_token": refresh_token,
        "scope": redeemed.scope,
    }

    # Create ID token if openid scope is granted
    if scope_includes(redeemed.scope, "openid"):
        response_content["id_token"] = create_id_token(
            user=user,
            audience=client.client_id,
            scope=redeemed.scope,
            nonce=redeemed.nonce,
            access_token=access_token,
        )

    return create_token_response(content=response_content)


def handle_refresh_token_grant(
    db: Session, client: OAuthClient, grant: RefreshTokenGrant
):
    """
    Handle refresh_token grant type per RFC 6749 §6.

    Issues a new access token with the originally granted scope. The
    refresh token is not rotated and stays valid.
    """
    token_record = validate_refresh_token(
        db=db,
        token=grant.refresh_token,
        client_id=client.client_id,
    )

    access_token, _ = create_access_token(
        subject=token_record.user_id,
        audience=client.client_id,
        scope=token_record.scope,
    )

    return create_token_response(
        content={
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_SECONDS,
            "scope": token_record.scope,
        }
    )


def get_userinfo(db: Session, access_token: str) -> dict:
    """
    Build the OIDC UserInfo response (OpenID Connect Core §5.3).

    Claims beyond sub are released according to the token's scope.
    """
    try:
        claims = verify_access_token(access_token)
    except InvalidTokenError as exc:
        logger.info("UserInfo rejected access token (%s)", exc.reason)
        raise invalid_token_error() from exc

    user = db.query(User).filter(User.id == claims["sub"]).first()
    if not user:
        raise invalid_token_error("User not found")

    scope = claims.get("scope", "")
    userinfo = {"sub": str(user.id)}

    if scope_includes(scope, "profile"):
        userinfo["name"] = user.name

    if scope_includes(scope, "email"):
        userinfo["email"] = user.email
        userinfo["email_verified"] = True

    return userinfo


def revoke_token(
    db: Session,
    token: Optional[str],
    token_type_hint: Optional[str] = None,
    client_id: Optional[str] = None,
) -> None:
    """
    Revoke a refresh token per RFC 7009.

    Access tokens are self-contained and expire on their own, so a token
    that is not a known refresh token is ignored. The caller always
    answers 200, whether or not anything was revoked.
    """
    if not token:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_REQUEST,
            description="Missing required parameter: token",
        )

    revoked = revoke_refresh_token(db, token, client_id=client_id)
    if not revoked:
        logger.debug(
            "Revocation request matched no live refresh token (hint=%s)", token_type_hint
        )
