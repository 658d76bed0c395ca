import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Header, Request
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sso.config import settings
from sso.db import get_db
from sso.models.user import User
from sso.oauth.codes import issue_authorization_code
from sso.oauth.errors import (
    OAuthError,
    OAuthErrorCode,
    append_query,
    create_authorization_error_response,
    invalid_token_error,
)
from sso.oauth.service import (
    AuthorizationRequest,
    authenticate_client,
    get_userinfo,
    handle_token_request,
    parse_grant,
    revoke_token,
    validate_authorization_params,
    validate_client_and_redirect,
)
from sso.oauth.utils import get_current_user, parse_basic_auth

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])


@router.get("/authorize")
def authorize(
    request: Request,
    response_type: Optional[str] = None,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    scope: Optional[str] = None,
    state: Optional[str] = None,
    code_challenge: Optional[str] = None,
    code_challenge_method: Optional[str] = None,
    nonce: Optional[str] = None,
    prompt: Optional[str] = None,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_current_user),
):
    """
    OAuth 2.0 Authorization Endpoint.

    Validates the client and authorization parameters, then either:
    - Redirects to login if user is not authenticated
    - Fails with login_required if user is not authenticated and prompt=none
    - Issues an authorization code for first-party clients
    """
    auth_request = AuthorizationRequest(
        response_type=response_type,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=scope,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        nonce=nonce,
        prompt=prompt,
    )

    # =========================================================================
    # STEP 1: Validate client and redirect_uri
    # =========================================================================
    # Per RFC 6749 Section 4.1.2.1:
    # "If the request fails due to a missing, invalid, or mismatching
    # redirection URI, or if the client identifier is missing or invalid,
    # the authorization server SHOULD inform the resource owner of the
    # error and MUST NOT automatically redirect the user-agent to the
    # invalid redirection URI."
    # OAuthError raised here is rendered as a JSON 400 by the handler.
    client = validate_client_and_redirect(db, auth_request)

    # =========================================================================
    # STEP 2: Validate PKCE and scope, errors go back to the client
    # =========================================================================
    try:
        auth_request = validate_authorization_params(client, auth_request)
    except OAuthError as exc:
        return create_authorization_error_response(
            redirect_uri=auth_request.redirect_uri,
            error_code=exc.error_code,
            description=exc.description,
            state=auth_request.state,
        )

    # =========================================================================
    # STEP 3: Check user authentication
    # =========================================================================
    if not user:
        if auth_request.is_silent:
            # OIDC Core §3.1.2.6: no UI may be shown for prompt=none
            return create_authorization_error_response(
                redirect_uri=auth_request.redirect_uri,
                error_code=OAuthErrorCode.LOGIN_REQUIRED,
                description="User is not authenticated",
                state=auth_request.state,
            )

        # Send the full original request along so login can resume it
        return_to = request.url.path
        if request.url.query:
            return_to = f"{return_to}?{request.url.query}"
        return RedirectResponse(
            append_query(settings.LOGIN_URL, {"next": return_to}), status_code=302
        )

    # =========================================================================
    # STEP 4: Issue the code (first-party clients skip consent)
    # =========================================================================
    if not client.is_first_party:
        return create_authorization_error_response(
            redirect_uri=auth_request.redirect_uri,
            error_code=OAuthErrorCode.ACCESS_DENIED,
            description="Client requires user consent, which is not supported",
            state=auth_request.state,
        )

    try:
        code = issue_authorization_code(
            db=db,
            user_id=str(user.id),
            client_id=client.client_id,
            redirect_uri=auth_request.redirect_uri,
            scope=auth_request.scope,
            code_challenge=auth_request.code_challenge,
            code_challenge_method=auth_request.code_challenge_method,
            state=auth_request.state,
            nonce=auth_request.nonce,
        )
    except SQLAlchemyError:
        logger.exception("Failed to store authorization code for client=%s", client.client_id)
        db.rollback()
        return create_authorization_error_response(
            redirect_uri=auth_request.redirect_uri,
            error_code=OAuthErrorCode.SERVER_ERROR,
            description="Internal server error",
            state=auth_request.state,
        )

    # state is optional (RECOMMENDED but not REQUIRED per RFC 6749)
    params = {"code": code}
    if auth_request.state:
        params["state"] = auth_request.state

    return RedirectResponse(append_query(auth_request.redirect_uri, params), status_code=302)


@router.post("/token")
def token(
    grant_type: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    code_verifier: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """
    OAuth 2.0 Token Endpoint.

    Authenticates the client (HTTP Basic or request body), then exchanges
    an authorization code or a refresh token for tokens.

    Supports:
    - authorization_code grant (RFC 6749 §4.1)
    - refresh_token grant (RFC 6749 §6)
    """
    if not grant_type:
        raise OAuthError(
            error_code=OAuthErrorCode.INVALID_REQUEST,
            description="Missing required parameter: grant_type",
        )

    basic_id, basic_secret = parse_basic_auth(authorization)
    if basic_id is not None:
        client_id, client_secret = basic_id, basic_secret

    client = authenticate_client(db, client_id, client_secret)

    grant = parse_grant(
        grant_type=grant_type,
        code=code,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
        refresh_token=refresh_token,
    )

    return handle_token_request(db, client, grant)


@router.get("/userinfo")
def userinfo(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """
    OIDC UserInfo Endpoint per OpenID Connect Core §5.3.

    Requires a Bearer access token (RFC 6750 §2.1).
    """
    scheme, _, access_token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not access_token.strip():
        raise invalid_token_error("Missing or invalid access token")

    return get_userinfo(db, access_token.strip())


@router.post("/revoke")
def revoke(
    token: Optional[str] = Form(None),
    token_type_hint: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """
    Token Revocation Endpoint per RFC 7009.

    Client credentials are optional; when presented they must be valid
    and revocation is limited to that client's tokens. Responds 200
    whether or not the token existed (RFC 7009 §2.2).
    """
    basic_id, basic_secret = parse_basic_auth(authorization)
    if basic_id is not None:
        client_id, client_secret = basic_id, basic_secret

    bound_client_id = None
    if client_id:
        bound_client_id = authenticate_client(db, client_id, client_secret).client_id

    revoke_token(
        db=db,
        token=token,
        token_type_hint=token_type_hint,
        client_id=bound_client_id,
    )

    return Response(status_code=200, headers={"Cache-Control": "no-store"})
