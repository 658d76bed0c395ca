"""
Relying-party side of the Authorization Code Flow with PKCE.

    idle --begin_login / begin_silent_login--> awaiting callback
    awaiting callback --handle_callback--> authenticated | idle

The controller is stateless apart from the shared pending-authorization
store; all per-browser state lives in the BrowserSession passed in.
"""

import logging
import secrets
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

from jose import JWTError, jwt

from sso.client.auth_server import AuthServerClient
from sso.client.errors import (
    AuthServerError,
    AuthorizationError,
    NonceMismatchError,
    RelyingPartyError,
    StateMismatchError,
)
from sso.client.pending import PendingAuthorizationStore
from sso.client.session import (
    BrowserSession,
    LocalUser,
    create_session_token,
)
from sso.config import ClientSettings
from sso.oauth.pkce import generate_pkce_pair, random_token

logger = logging.getLogger(__name__)

LOGIN_REQUIRED = "login_required"


class CallbackStatus(str, Enum):
    AUTHENTICATED = "authenticated"
    # Silent SSO found no session at the authorization server
    NOT_LOGGED_IN = "not_logged_in"


@dataclass
class CallbackResult:
    status: CallbackStatus
    user: Optional[LocalUser] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_in: Optional[int] = None

    def as_response(self) -> dict:
        return {
            "user": asdict(self.user) if self.user else None,
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "idToken": self.id_token,
            "expiresIn": self.expires_in,
        }


class RelyingPartyFlow:
    def __init__(
        self,
        auth_server: AuthServerClient,
        pending: PendingAuthorizationStore,
        config: ClientSettings,
    ):
        self.auth_server = auth_server
        self.pending = pending
        self.config = config

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    def _start(self, silent: bool) -> tuple[str, str]:
        code_verifier, code_challenge = generate_pkce_pair()
        state = random_token(32)
        nonce = random_token(32)

        self.pending.put(state, code_verifier, nonce=nonce, silent=silent)

        url = self.auth_server.authorization_url(
            state=state,
            code_challenge=code_challenge,
            nonce=nonce,
            prompt="none" if silent else None,
        )
        return url, state

    def begin_login(self, session: BrowserSession) -> tuple[str, str]:
        """
        Start an interactive login.

        An explicit login lifts the logged-out suppression of silent SSO.

        Returns:
            (authorization_url, state)
        """
        session.explicitly_logged_out = False
        return self._start(silent=False)

    def should_attempt_silent_sso(self, session: BrowserSession) -> bool:
        return not (
            session.is_authenticated
            or session.silent_sso_attempted
            or session.explicitly_logged_out
        )

    def begin_silent_login(self, session: BrowserSession) -> Optional[tuple[str, str]]:
        """
        Start a prompt=none round trip, at most once per browser session.

        Returns:
            (authorization_url, state), or None if silent SSO is suppressed
        """
        if not self.should_attempt_silent_sso(session):
            return None
        session.silent_sso_attempted = True
        return self._start(silent=True)

    # ------------------------------------------------------------------
    # Callback
    # ------------------------------------------------------------------

    def handle_callback(
        self,
        session: BrowserSession,
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
        code_verifier: Optional[str] = None,
    ) -> CallbackResult:
        """
        Complete the flow from the authorization server's redirect.

        The pending entry for state is consumed before anything else, so a
        forged or replayed callback never reaches the token endpoint.

        Args:
            code_verifier: Verifier echoed by a browser client; when given
                it must equal the stored one

        Raises:
            StateMismatchError, AuthorizationError, AuthServerError,
            NonceMismatchError
        """
        pending = self.pending.pop(state)

        if error:
            if error == LOGIN_REQUIRED and pending is not None and pending.silent:
                logger.info("Silent SSO: no session at the authorization server")
                return CallbackResult(status=CallbackStatus.NOT_LOGGED_IN)
            logger.info("Authorization server returned error=%s", error)
            raise AuthorizationError(error_description or error, error=error)

        if pending is None:
            logger.warning("Rejected callback with unknown or expired state")
            raise StateMismatchError("Invalid state parameter - possible CSRF attack")

        if code_verifier is not None and not secrets.compare_digest(
            code_verifier.encode("utf-8"), pending.code_verifier.encode("utf-8")
        ):
            logger.warning("Rejected callback with mismatched code_verifier")
            raise StateMismatchError("code_verifier does not match the pending request")

        if not code:
            raise AuthorizationError("Missing authorization code", error="invalid_request")

        try:
            tokens = self.auth_server.exchange_code(code, pending.code_verifier)
            id_token = tokens.get("id_token")
            if id_token:
                self._check_nonce(id_token, pending.nonce)
            user, local_token = self._establish(session, tokens["access_token"])
        except (RelyingPartyError, KeyError):
            session.clear_tokens()
            raise

        session.refresh_token = tokens.get("refresh_token")
        session.id_token = id_token
        session.explicitly_logged_out = False
        logger.info("Local session established for user=%s", user.id)

        return CallbackResult(
            status=CallbackStatus.AUTHENTICATED,
            user=user,
            access_token=local_token,
            refresh_token=session.refresh_token,
            id_token=id_token,
            expires_in=tokens.get("expires_in"),
        )

    def _check_nonce(self, id_token: str, expected_nonce: Optional[str]) -> None:
        # The ID token came straight from the token endpoint over TLS, so
        # OIDC Core §3.1.3.7 allows skipping signature validation here.
        try:
            claims = jwt.get_unverified_claims(id_token)
        except JWTError as exc:
            raise AuthServerError("Malformed ID token", error="invalid_id_token") from exc

        if expected_nonce and claims.get("nonce") != expected_nonce:
            logger.warning("ID token nonce mismatch")
            raise NonceMismatchError("ID token nonce does not match the request")

    def _establish(self, session: BrowserSession, access_token: str) -> tuple[LocalUser, str]:
        userinfo = self.auth_server.userinfo(access_token)
        user = LocalUser.from_userinfo(userinfo)
        local_token = create_session_token(user, self.config)
        session.local_token = local_token
        session.user = asdict(user)
        return user, local_token

    # ------------------------------------------------------------------
    # Refresh and logout
    # ------------------------------------------------------------------

    def refresh(
        self, session: BrowserSession, refresh_token: Optional[str] = None
    ) -> CallbackResult:
        """
        Use the refresh token to re-derive the local session.

        The authorization server does not rotate refresh tokens, so the
        same token stays in the session.
        """
        token = refresh_token or session.refresh_token
        if not token:
            raise AuthorizationError("No refresh token available", error="invalid_request")

        try:
            tokens = self.auth_server.refresh(token)
            user, local_token = self._establish(session, tokens["access_token"])
        except (RelyingPartyError, KeyError):
            session.clear_tokens()
            raise

        session.refresh_token = token
        return CallbackResult(
            status=CallbackStatus.AUTHENTICATED,
            user=user,
            access_token=local_token,
            refresh_token=token,
            expires_in=tokens.get("expires_in"),
        )

    def logout(self, session: BrowserSession) -> None:
        """Clear the local session and suppress silent SSO until the next explicit login."""
        refresh_token = session.refresh_token
        if refresh_token:
            try:
                self.auth_server.revoke(refresh_token)
            except AuthServerError as exc:
                logger.warning("Refresh token revocation failed during logout: %s", exc)

        session.clear_tokens()
        session.explicitly_logged_out = True
