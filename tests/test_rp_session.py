"""
Tests for the relying party's local session token and browser session state.
"""

from datetime import datetime, timedelta

import pytest
from jose import jwt

from sso.client.errors import InvalidSessionError
from sso.client.session import (
    BrowserSession,
    LocalUser,
    create_session_token,
    verify_session_token,
)
from sso.config import ClientSettings


@pytest.fixture
def config():
    return ClientSettings(SESSION_TOKEN_SECRET="test-session-secret")


class TestSessionToken:
    def test_roundtrip_claims(self, config):
        user = LocalUser(id="u1", name="User One", email="u1@example.com")

        token = create_session_token(user, config)
        claims = jwt.get_unverified_claims(token)

        assert claims["userId"] == "u1"
        assert claims["source"] == "oauth2"
        assert claims["exp"] - claims["iat"] == config.SESSION_TOKEN_EXPIRE_SECONDS
        assert verify_session_token(token, config) == user

    def test_other_secret_rejected(self, config):
        token = create_session_token(LocalUser(id="u1"), config)
        other = ClientSettings(SESSION_TOKEN_SECRET="another-secret")

        with pytest.raises(InvalidSessionError):
            verify_session_token(token, other)

    def test_expired_rejected(self, config):
        now = datetime.utcnow()
        token = jwt.encode(
            {"userId": "u1", "iat": now - timedelta(days=2), "exp": now - timedelta(days=1)},
            config.SESSION_TOKEN_SECRET,
            algorithm="HS256",
        )

        with pytest.raises(InvalidSessionError) as exc_info:
            verify_session_token(token, config)
        assert exc_info.value.status_code == 401

    def test_missing_user_id_rejected(self, config):
        token = jwt.encode({"email": "x@example.com"}, config.SESSION_TOKEN_SECRET)

        with pytest.raises(InvalidSessionError):
            verify_session_token(token, config)

    def test_from_userinfo(self):
        user = LocalUser.from_userinfo({"sub": "u1", "email": "u1@example.com"})

        assert user == LocalUser(id="u1", name=None, email="u1@example.com")


class TestBrowserSession:
    def test_load_empty_storage(self):
        session = BrowserSession.load({})

        assert session.is_authenticated is False
        assert session.silent_sso_attempted is False
        assert session.explicitly_logged_out is False

    def test_save_and_load(self):
        storage = {}
        session = BrowserSession(
            local_token="t", refresh_token="r", silent_sso_attempted=True
        )
        session.save(storage)

        loaded = BrowserSession.load(storage)

        assert loaded == session

    def test_unknown_keys_ignored(self):
        session = BrowserSession.load({"rp": {"local_token": "t", "legacy": 1}})

        assert session.local_token == "t"

    def test_clear_tokens_keeps_flags(self):
        session = BrowserSession(
            local_token="t",
            refresh_token="r",
            id_token="i",
            user={"id": "u1"},
            silent_sso_attempted=True,
        )

        session.clear_tokens()

        assert session.is_authenticated is False
        assert session.refresh_token is None
        assert session.user is None
        assert session.silent_sso_attempted is True
