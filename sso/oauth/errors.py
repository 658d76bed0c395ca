"""
OAuth 2.0 RFC 6749 compliant error handling.

This module provides error types and response utilities for the
authorization server, covering the OAuth 2.0 error codes from RFC 6749,
the bearer-token errors from RFC 6750 and the OpenID Connect
authentication-request errors.

References:
- RFC 6749 Section 4.1.2.1: Authorization Error Response
- RFC 6749 Section 5.2: Token Error Response
- RFC 6750 Section 3.1: Bearer Token Error Codes
- OpenID Connect Core Section 3.1.2.6: Authentication Error Response
"""

import logging
from enum import Enum
from typing import Dict, Optional
from urllib.parse import urlencode

from fastapi.responses import RedirectResponse, JSONResponse

logger = logging.getLogger(__name__)


class OAuthErrorCode(str, Enum):
    """
    OAuth 2.0 / OpenID Connect error codes.

    Error codes for authorization endpoint (RFC 6749 Section 4.1.2.1):
    - invalid_request
    - access_denied
    - unsupported_response_type
    - invalid_scope
    - server_error
    - temporarily_unavailable

    Additional error codes for token endpoint (RFC 6749 Section 5.2):
    - invalid_client
    - invalid_grant
    - unsupported_grant_type

    Protected resource errors (RFC 6750 Section 3.1):
    - invalid_token

    OpenID Connect authentication errors (Core Section 3.1.2.6):
    - login_required
    """

    # Authorization endpoint errors
    INVALID_REQUEST = "invalid_request"
    ACCESS_DENIED = "access_denied"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    INVALID_SCOPE = "invalid_scope"
    SERVER_ERROR = "server_error"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"

    # Token endpoint errors (additional)
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"

    # UserInfo endpoint errors
    INVALID_TOKEN = "invalid_token"

    # OpenID Connect silent authentication
    LOGIN_REQUIRED = "login_required"


class OAuthError(Exception):
    """
    Base OAuth error exception.

    This exception can be raised to indicate OAuth-related errors
    and can be converted to appropriate error responses.

    Attributes:
        error_code: The OAuth error code enum value
        description: Optional human-readable error description
        uri: Optional URI pointing to error documentation
        state: The state parameter from the original request (if any)
        status_code: HTTP status used when rendered as a JSON response
        headers: Extra response headers (e.g. WWW-Authenticate)
    """

    def __init__(
        self,
        error_code: OAuthErrorCode,
        description: Optional[str] = None,
        uri: Optional[str] = None,
        state: Optional[str] = None,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.error_code = error_code
        self.description = description
        self.uri = uri
        self.state = state
        self.status_code = status_code
        self.headers = headers
        super().__init__(description or error_code.value)


def invalid_client_error(description: str = "Client authentication failed") -> OAuthError:
    """
    Build an invalid_client error.

    Per RFC 6749 Section 5.2 the server responds with 401 and a
    WWW-Authenticate header matching the authentication scheme used.
    """
    return OAuthError(
        error_code=OAuthErrorCode.INVALID_CLIENT,
        description=description,
        status_code=401,
        headers={"WWW-Authenticate": 'Basic realm="oauth"'},
    )


def invalid_token_error(description: str = "Access token is invalid or expired") -> OAuthError:
    """Build an RFC 6750 invalid_token error for protected resources."""
    return OAuthError(
        error_code=OAuthErrorCode.INVALID_TOKEN,
        description=description,
        status_code=401,
        headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
    )


def create_authorization_error_response(
    redirect_uri: str,
    error_code: OAuthErrorCode,
    description: Optional[str] = None,
    state: Optional[str] = None
) -> RedirectResponse:
    """
    Create a redirect response with OAuth error parameters.

    As per RFC 6749 Section 4.1.2.1, once the redirect URI has been
    validated, errors at the authorization endpoint are communicated by
    redirecting the user-agent back to the client's redirect URI.

    Args:
        redirect_uri: The client's validated redirect URI
        error_code: The OAuth error code enum value
        description: Optional human-readable error description
        state: The state parameter from the original request (if provided)

    Returns:
        RedirectResponse (302) with error parameters in the query string

    Example:
        >>> response = create_authorization_error_response(
        ...     redirect_uri="https://client.example.com/callback",
        ...     error_code=OAuthErrorCode.LOGIN_REQUIRED,
        ...     description="User is not authenticated",
        ...     state="xyz123"
        ... )
        >>> # Redirects to: https://client.example.com/callback?error=login_required&error_description=...&state=xyz123
    """
    params = {"error": error_code.value}

    if description:
        params["error_description"] = description

    if state:
        params["state"] = state

    return RedirectResponse(append_query(redirect_uri, params), status_code=302)


def append_query(url: str, params: Dict[str, str]) -> str:
    """Append URL-encoded parameters, keeping any query the URL already has."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def create_token_error_response(
    error_code: OAuthErrorCode,
    description: Optional[str] = None,
    uri: Optional[str] = None,
    status_code: int = 400,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    Create a JSON error response for the token, userinfo and revocation endpoints.

    As per RFC 6749 Section 5.2, the server responds with HTTP 400
    (or 401 for client authentication failures) and a JSON body
    containing the error details.

    Args:
        error_code: The OAuth error code enum value
        description: Optional human-readable error description
        uri: Optional URI pointing to error documentation
        status_code: HTTP status code
        headers: Extra headers merged over the no-cache headers

    Returns:
        JSONResponse with the error body and no-cache headers

    Example:
        >>> response = create_token_error_response(
        ...     error_code=OAuthErrorCode.INVALID_GRANT,
        ...     description="The authorization code has expired"
        ... )
        >>> # Returns HTTP 400 with body: {"error": "invalid_grant", "error_description": "..."}
    """
    content = {"error": error_code.value}

    if description:
        content["error_description"] = description

    if uri:
        content["error_uri"] = uri

    response_headers = {
        "Cache-Control": "no-store",
        "Pragma": "no-cache"
    }
    if headers:
        response_headers.update(headers)

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=response_headers,
    )


def register_oauth_exception_handlers(app) -> None:
    """
    Register OAuth exception handlers with the FastAPI application.

    OAuthError is rendered as an RFC 6749 error body. Any other
    exception is logged and reported as a bare server_error so that
    no internal detail reaches the client.

    Args:
        app: The FastAPI application instance
    """

    @app.exception_handler(OAuthError)
    async def oauth_error_handler(request, exc: OAuthError):
        """Handle OAuth errors and return proper error responses."""
        return create_token_error_response(
            error_code=exc.error_code,
            description=exc.description,
            uri=exc.uri,
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return create_token_error_response(
            error_code=OAuthErrorCode.SERVER_ERROR,
            description="Internal server error",
            status_code=500,
        )
