import base64
import binascii
from typing import Optional
from urllib.parse import unquote_plus

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sso.db import get_db
from sso.models.user import User


def get_current_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """Return the user logged in to this browser session, if any.

    The session's user_id is set by the external login surface.
    """
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    return db.query(User).filter(User.id == user_id).first()


def parse_basic_auth(authorization: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Extract client credentials from an HTTP Basic Authorization header.

    Per RFC 6749 Section 2.3.1 the client identifier and secret are
    form-urlencoded before being joined with ":" and base64-encoded.

    Returns:
        (client_id, client_secret), or (None, None) if the header is
        absent, uses another scheme, or is malformed
    """
    if not authorization:
        return None, None

    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None, None

    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None, None

    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        return None, None

    return unquote_plus(client_id), unquote_plus(client_secret)


def create_token_response(content: dict) -> JSONResponse:
    """
    Create a JSON response for token requests with RFC 6749 compliant headers.

    As per RFC 6749 Section 5.1:
    "The authorization server MUST include the HTTP "Cache-Control" response header
    field [RFC2616] with a value of "no-store" in any response containing tokens,
    credentials, or other sensitive information, as well as the "Pragma" response
    header field [RFC2616] with a value of "no-cache"."
    """
    return JSONResponse(
        content=content,
        headers={
            "Cache-Control": "no-store",
            "Pragma": "no-cache",
        },
    )
