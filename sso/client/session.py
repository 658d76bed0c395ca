"""
Local session state for the relying party.

After a successful authorization code exchange the RP mints its own
session token; the authorization server's tokens never leave the RP
except as returned by the SPA callback endpoint.
"""

from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta
from typing import Any, MutableMapping, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from sso.client.errors import InvalidSessionError
from sso.config import ClientSettings

SESSION_KEY = "rp"
SESSION_SOURCE = "oauth2"
SESSION_TOKEN_ALGORITHM = "HS256"


@dataclass
class LocalUser:
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    source: str = SESSION_SOURCE

    @classmethod
    def from_userinfo(cls, userinfo: dict) -> "LocalUser":
        return cls(
            id=userinfo["sub"],
            name=userinfo.get("name"),
            email=userinfo.get("email"),
        )


def create_session_token(user: LocalUser, config: ClientSettings) -> str:
    now = datetime.utcnow()
    payload = {
        "userId": user.id,
        "email": user.email,
        "name": user.name,
        "source": user.source,
        "iat": now,
        "exp": now + timedelta(seconds=config.SESSION_TOKEN_EXPIRE_SECONDS),
    }
    return jwt.encode(payload, config.SESSION_TOKEN_SECRET, algorithm=SESSION_TOKEN_ALGORITHM)


def verify_session_token(token: str, config: ClientSettings) -> LocalUser:
    try:
        claims = jwt.decode(
            token, config.SESSION_TOKEN_SECRET, algorithms=[SESSION_TOKEN_ALGORITHM]
        )
    except ExpiredSignatureError as exc:
        raise InvalidSessionError("Session token expired") from exc
    except JWTError as exc:
        raise InvalidSessionError("Session token invalid") from exc

    if not claims.get("userId"):
        raise InvalidSessionError("Session token invalid")

    return LocalUser(
        id=claims["userId"],
        name=claims.get("name"),
        email=claims.get("email"),
        source=claims.get("source", SESSION_SOURCE),
    )


@dataclass
class BrowserSession:
    """
    Per-browser RP state.

    silent_sso_attempted is a one-shot flag: a prompt=none round trip is
    made at most once per browser session. explicitly_logged_out is sticky:
    it is set on logout and only cleared by an explicit login.
    """

    local_token: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    user: Optional[dict] = None
    silent_sso_attempted: bool = False
    explicitly_logged_out: bool = False

    @property
    def is_authenticated(self) -> bool:
        return bool(self.local_token)

    def clear_tokens(self) -> None:
        self.local_token = None
        self.refresh_token = None
        self.id_token = None
        self.user = None

    @classmethod
    def load(cls, storage: MutableMapping[str, Any]) -> "BrowserSession":
        data = storage.get(SESSION_KEY) or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def save(self, storage: MutableMapping[str, Any]) -> None:
        storage[SESSION_KEY] = asdict(self)
