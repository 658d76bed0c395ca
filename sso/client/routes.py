from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from sso.client.auth_server import AuthServerClient
from sso.client.errors import InvalidSessionError, RelyingPartyError
from sso.client.flow import CallbackStatus, RelyingPartyFlow
from sso.client.pending import PendingAuthorizationStore
from sso.client.session import BrowserSession, verify_session_token
from sso.config import ClientSettings
from sso.oauth.errors import append_query

router = APIRouter(tags=["relying-party"])


# =============================================================================
# Dependencies
# =============================================================================


def get_client_settings(request: Request) -> ClientSettings:
    return request.app.state.client_settings


def get_pending_store(request: Request) -> PendingAuthorizationStore:
    return request.app.state.pending_store


def get_auth_server_client(request: Request) -> AuthServerClient:
    return request.app.state.auth_server


def get_flow(
    auth_server: AuthServerClient = Depends(get_auth_server_client),
    pending: PendingAuthorizationStore = Depends(get_pending_store),
    config: ClientSettings = Depends(get_client_settings),
) -> RelyingPartyFlow:
    return RelyingPartyFlow(auth_server, pending, config)


# =============================================================================
# Request bodies
# =============================================================================


class CallbackBody(BaseModel):
    code: Optional[str] = None
    state: Optional[str] = None
    codeVerifier: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class RefreshBody(BaseModel):
    refreshToken: Optional[str] = None


# =============================================================================
# Browser redirect flow
# =============================================================================


@router.get("/oauth/login")
def login(request: Request, flow: RelyingPartyFlow = Depends(get_flow)):
    session = BrowserSession.load(request.session)
    url, _ = flow.begin_login(session)
    session.save(request.session)
    return RedirectResponse(url=url, status_code=302)


@router.get("/oauth/silent-login")
def silent_login(
    request: Request,
    flow: RelyingPartyFlow = Depends(get_flow),
    config: ClientSettings = Depends(get_client_settings),
):
    """
    Attempt silent SSO (prompt=none).

    When the guard refuses (already authenticated, already attempted or
    explicitly logged out) the browser goes straight back to the frontend.
    """
    session = BrowserSession.load(request.session)
    started = flow.begin_silent_login(session)
    session.save(request.session)

    if started is None:
        return RedirectResponse(url=config.FRONTEND_URL, status_code=302)
    url, _ = started
    return RedirectResponse(url=url, status_code=302)


@router.get("/oauth/callback")
def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    flow: RelyingPartyFlow = Depends(get_flow),
    config: ClientSettings = Depends(get_client_settings),
):
    """
    Redirect target registered with the authorization server.

    Failures are reported to the frontend as ?error=...; the browser is
    never left on an RP error page.
    """
    session = BrowserSession.load(request.session)
    try:
        result = flow.handle_callback(
            session,
            code=code,
            state=state,
            error=error,
            error_description=error_description,
        )
    except RelyingPartyError as exc:
        session.save(request.session)
        params = {"error": exc.error}
        if exc.description:
            params["error_description"] = exc.description
        return RedirectResponse(url=append_query(config.FRONTEND_URL, params), status_code=302)

    session.save(request.session)

    if result.status == CallbackStatus.NOT_LOGGED_IN:
        return RedirectResponse(url=config.FRONTEND_URL, status_code=302)

    success_url = f"{config.FRONTEND_URL.rstrip('/')}/oauth/success"
    return RedirectResponse(
        url=append_query(success_url, {"token": result.access_token}),
        status_code=302,
    )


# =============================================================================
# SPA (JSON) flow
# =============================================================================


@router.post("/oauth/authorize-url")
def authorize_url(request: Request, flow: RelyingPartyFlow = Depends(get_flow)):
    session = BrowserSession.load(request.session)
    url, state = flow.begin_login(session)
    session.save(request.session)
    return {"authorizationUrl": url, "state": state}


@router.post("/oauth/callback")
def callback_json(
    body: CallbackBody,
    request: Request,
    flow: RelyingPartyFlow = Depends(get_flow),
):
    session = BrowserSession.load(request.session)
    try:
        result = flow.handle_callback(
            session,
            code=body.code,
            state=body.state,
            error=body.error,
            error_description=body.error_description,
            code_verifier=body.codeVerifier,
        )
    finally:
        session.save(request.session)

    if result.status == CallbackStatus.NOT_LOGGED_IN:
        return {"user": None, "error": "login_required"}
    return result.as_response()


@router.post("/oauth/refresh")
def refresh(
    request: Request,
    body: Optional[RefreshBody] = None,
    flow: RelyingPartyFlow = Depends(get_flow),
):
    session = BrowserSession.load(request.session)
    try:
        result = flow.refresh(session, refresh_token=body.refreshToken if body else None)
    finally:
        session.save(request.session)
    return result.as_response()


@router.post("/oauth/logout")
def logout(request: Request, flow: RelyingPartyFlow = Depends(get_flow)):
    session = BrowserSession.load(request.session)
    flow.logout(session)
    session.save(request.session)
    return {"message": "Logged out successfully"}


# =============================================================================
# Local session
# =============================================================================


@router.get("/auth/me")
def me(
    request: Request,
    authorization: Optional[str] = Header(None),
    config: ClientSettings = Depends(get_client_settings),
):
    """Return the local user from a Bearer session token or the browser session."""
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
    if not token:
        token = BrowserSession.load(request.session).local_token
    if not token:
        raise InvalidSessionError("Not authorized, no token provided")

    user = verify_session_token(token, config)
    return {"user": asdict(user)}
