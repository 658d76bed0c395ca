"""
HTTP client for the authorization server's token, userinfo and
revocation endpoints.

Every call carries a bounded timeout. Timeouts and network failures are
reported as AuthServerError and never retried here; retrying is up to
the caller.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from sso.client.errors import AuthServerError
from sso.config import ClientSettings
from sso.oauth.errors import OAuthErrorCode

logger = logging.getLogger(__name__)


class AuthServerClient:
    def __init__(self, http: httpx.Client, config: ClientSettings):
        self.http = http
        self.config = config

    def _url(self, path: str) -> str:
        return f"{self.config.AUTH_SERVER_URL.rstrip('/')}{path}"

    def _client_credentials(self) -> dict:
        credentials = {"client_id": self.config.CLIENT_ID}
        if self.config.CLIENT_SECRET:
            credentials["client_secret"] = self.config.CLIENT_SECRET
        return credentials

    def authorization_url(
        self,
        state: str,
        code_challenge: str,
        nonce: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> str:
        """Build the /authorize URL for an S256 PKCE request."""
        params = {
            "response_type": "code",
            "client_id": self.config.CLIENT_ID,
            "redirect_uri": self.config.REDIRECT_URI,
            "scope": self.config.SCOPE,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        if nonce:
            params["nonce"] = nonce
        if prompt:
            params["prompt"] = prompt
        return f"{self._url(self.config.AUTHORIZE_PATH)}?{urlencode(params)}"

    def _post_form(self, path: str, data: dict, timeout: float, action: str) -> httpx.Response:
        try:
            return self.http.post(self._url(path), data=data, timeout=timeout)
        except httpx.TimeoutException as exc:
            logger.warning("%s timed out after %.1fs", action, timeout)
            raise AuthServerError(
                f"{action} timed out",
                error=OAuthErrorCode.TEMPORARILY_UNAVAILABLE.value,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s failed: %s", action, exc)
            raise AuthServerError(
                f"{action} failed",
                error=OAuthErrorCode.TEMPORARILY_UNAVAILABLE.value,
            ) from exc

    @staticmethod
    def _raise_for_error(response: httpx.Response, action: str, default_error: str) -> dict:
        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code != 200 or not isinstance(body, dict):
            error = body.get("error") if isinstance(body, dict) else None
            description = body.get("error_description") if isinstance(body, dict) else None
            logger.warning(
                "%s rejected with HTTP %s (%s)", action, response.status_code, error
            )
            raise AuthServerError(
                description or f"{action} failed", error=error or default_error
            )
        return body

    def exchange_code(self, code: str, code_verifier: str) -> dict:
        """Exchange an authorization code (grant_type=authorization_code)."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.REDIRECT_URI,
            "code_verifier": code_verifier,
            **self._client_credentials(),
        }
        response = self._post_form(
            self.config.TOKEN_PATH, data, self.config.TOKEN_TIMEOUT_SECONDS, "Token exchange"
        )
        return self._raise_for_error(response, "Token exchange", "token_exchange_failed")

    def refresh(self, refresh_token: str) -> dict:
        """Obtain a new access token (grant_type=refresh_token)."""
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **self._client_credentials(),
        }
        response = self._post_form(
            self.config.TOKEN_PATH, data, self.config.TOKEN_TIMEOUT_SECONDS, "Token refresh"
        )
        return self._raise_for_error(response, "Token refresh", "refresh_failed")

    def userinfo(self, access_token: str) -> dict:
        timeout = self.config.USERINFO_TIMEOUT_SECONDS
        try:
            response = self.http.get(
                self._url(self.config.USERINFO_PATH),
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning("UserInfo request timed out after %.1fs", timeout)
            raise AuthServerError(
                "UserInfo request timed out",
                error=OAuthErrorCode.TEMPORARILY_UNAVAILABLE.value,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("UserInfo request failed: %s", exc)
            raise AuthServerError(
                "UserInfo request failed",
                error=OAuthErrorCode.TEMPORARILY_UNAVAILABLE.value,
            ) from exc
        return self._raise_for_error(response, "UserInfo request", "userinfo_failed")

    def revoke(self, token: str) -> None:
        """Revoke a refresh token (RFC 7009)."""
        data = {
            "token": token,
            "token_type_hint": "refresh_token",
            **self._client_credentials(),
        }
        response = self._post_form(
            self.config.REVOKE_PATH, data, self.config.REVOKE_TIMEOUT_SECONDS, "Revocation"
        )
        if response.status_code != 200:
            logger.warning("Revocation rejected with HTTP %s", response.status_code)
            raise AuthServerError("Revocation failed", error="revocation_failed")
