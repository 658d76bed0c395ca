"""Relying-party flow errors and their HTTP rendering."""

import logging
from typing import Optional

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class RelyingPartyError(Exception):
    """
    Base error for the relying-party flow.

    Attributes:
        error: Short machine-readable code (OAuth style)
        description: Human-readable description, safe to show to the user
        status_code: HTTP status used when rendered as JSON
    """

    error = "server_error"
    status_code = 400

    def __init__(self, description: Optional[str] = None, error: Optional[str] = None):
        if error:
            self.error = error
        self.description = description
        super().__init__(description or self.error)


class StateMismatchError(RelyingPartyError):
    """The callback's state matches no pending authorization (possible CSRF)."""

    error = "invalid_state"


class AuthorizationError(RelyingPartyError):
    """The authorization server redirected back with an error."""

    error = "access_denied"


class AuthServerError(RelyingPartyError):
    """A call to the authorization server failed or returned an error."""

    error = "auth_server_error"


class NonceMismatchError(RelyingPartyError):
    """The ID token's nonce does not match the one sent with the request."""

    error = "invalid_nonce"


class InvalidSessionError(RelyingPartyError):
    """No valid local session token was presented."""

    error = "invalid_session"
    status_code = 401


def register_client_exception_handlers(app) -> None:
    """Render RelyingPartyError as {error, error_description} JSON."""

    @app.exception_handler(RelyingPartyError)
    async def relying_party_error_handler(request, exc: RelyingPartyError):
        content = {"error": exc.error}
        if exc.description:
            content["error_description"] = exc.description
        return JSONResponse(
            status_code=exc.status_code,
            content=content,
            headers={"Cache-Control": "no-store"},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "server_error", "error_description": "Internal server error"},
        )
