"""
Tests for authorization code storage per RFC 6749 §4.1.2 and RFC 7636 §4.6.

Tests cover:
- Single use (including concurrent redemption)
- Expiry
- Client and redirect URI binding
- PKCE S256 and plain verification
"""

import logging
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sso.db import Base
from sso.models.user import User  # noqa: F401
from sso.oauth.codes import (
    issue_authorization_code,
    purge_expired_codes,
    redeem_authorization_code,
)
from sso.oauth.errors import OAuthError, OAuthErrorCode
from sso.oauth.models import AuthorizationCode
from sso.oauth.pkce import PLAIN, S256, create_code_challenge

REDIRECT_URI = "https://rp.example/cb"
VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def issue(db, method=S256, verifier=VERIFIER, **overrides):
    params = dict(
        user_id="u1",
        client_id="app-b-client",
        redirect_uri=REDIRECT_URI,
        scope="openid profile email",
        code_challenge=create_code_challenge(verifier, method),
        code_challenge_method=method,
        state="abc",
        nonce="n-123",
    )
    params.update(overrides)
    return issue_authorization_code(db, **params)


def assert_invalid_grant(exc_info, fragment=None):
    assert exc_info.value.error_code == OAuthErrorCode.INVALID_GRANT
    if fragment:
        assert fragment in exc_info.value.description


class TestIssue:
    def test_code_is_stored_unused_with_expiry(self, db):
        code = issue(db)
        record = db.query(AuthorizationCode).filter_by(code=code).one()

        assert record.used is False
        assert record.client_id == "app-b-client"
        assert record.redirect_uri == REDIRECT_URI
        assert record.nonce == "n-123"
        remaining = record.expires_at - datetime.utcnow()
        assert timedelta(minutes=9) < remaining <= timedelta(minutes=10)

    def test_codes_are_unique(self, db):
        assert issue(db) != issue(db)

    def test_method_dropped_without_challenge(self, db):
        code = issue(db, code_challenge=None)
        record = db.query(AuthorizationCode).filter_by(code=code).one()

        assert record.code_challenge is None
        assert record.code_challenge_method is None


class TestRedeem:
    def test_success_returns_grant_data(self, db):
        code = issue(db)

        redeemed = redeem_authorization_code(
            db, code, "app-b-client", REDIRECT_URI, code_verifier=VERIFIER
        )

        assert redeemed.user_id == "u1"
        assert redeemed.scope == "openid profile email"
        assert redeemed.nonce == "n-123"

    def test_second_redemption_fails(self, db):
        """RFC 6749 §4.1.2: the client MUST NOT use the code more than once."""
        code = issue(db)
        redeem_authorization_code(db, code, "app-b-client", REDIRECT_URI, VERIFIER)

        with pytest.raises(OAuthError) as exc_info:
            redeem_authorization_code(db, code, "app-b-client", REDIRECT_URI, VERIFIER)
        assert_invalid_grant(exc_info, "already been used")

    def test_unknown_code(self, db):
        with pytest.raises(OAuthError) as exc_info:
            redeem_authorization_code(db, "nope", "app-b-client", REDIRECT_URI, VERIFIER)
        assert_invalid_grant(exc_info, "not found")

    def test_code_bound_to_client(self, db):
        code = issue(db)

        with pytest.raises(OAuthError) as exc_info:
            redeem_authorization_code(db, code, "other-client", REDIRECT_URI, VERIFIER)
        assert_invalid_grant(exc_info)

        # The legitimate client can still redeem it
        redeem_authorization_code(db, code, "app-b-client", REDIRECT_URI, VERIFIER)

    def test_expired_code(self, db):
        code = issue(db)
        record = db.query(AuthorizationCode).filter_by(code=code).one()
        record.expires_at = datetime.utcnow() - timedelta(seconds=1)
        db.commit()

        with pytest.raises(OAuthError) as exc_info:
            redeem_authorization_code(db, code, "app-b-client", REDIRECT_URI, VERIFIER)
        assert_invalid_grant(exc_info, "expired")

    def test_redirect_uri_mismatch(self, db):
        code = issue(db)

        with pytest.raises(OAuthError) as exc_info:
            redeem_authorization_code(
                db, code, "app-b-client", "https://rp.example/cb/", VERIFIER
            )
        assert_invalid_grant(exc_info, "Redirect URI")

    def test_missing_verifier(self, db):
        code = issue(db)

        with pytest.raises(OAuthError) as exc_info:
            redeem_authorization_code(db, code, "app-b-client", REDIRECT_URI, None)
        assert_invalid_grant(exc_info, "Missing code_verifier")

    def test_short_plain_verifier_round_trips(self, db):
        """Any challenge /authorize accepted must be redeemable with its verifier."""
        code = issue(db, method=PLAIN, verifier="abc")

        redeemed = redeem_authorization_code(
            db, code, "app-b-client", REDIRECT_URI, "abc"
        )
        assert redeemed.user_id == "u1"

    def test_wrong_verifier(self, db):
        code = issue(db)

        with pytest.raises(OAuthError) as exc_info:
            redeem_authorization_code(db, code, "app-b-client", REDIRECT_URI, "b" * 43)
        assert_invalid_grant(exc_info, "Invalid code_verifier")

    def test_failed_pkce_does_not_consume_code(self, db):
        code = issue(db)

        with pytest.raises(OAuthError):
            redeem_authorization_code(db, code, "app-b-client", REDIRECT_URI, "b" * 43)

        redeemed = redeem_authorization_code(
            db, code, "app-b-client", REDIRECT_URI, VERIFIER
        )
        assert redeemed.user_id == "u1"

    def test_plain_method(self, db):
        verifier = "p" * 64
        code = issue(db, method=PLAIN, verifier=verifier)

        redeemed = redeem_authorization_code(
            db, code, "app-b-client", REDIRECT_URI, verifier
        )
        assert redeemed.client_id == "app-b-client"

    def test_code_without_challenge_needs_no_verifier(self, db):
        code = issue(db, code_challenge=None)

        redeemed = redeem_authorization_code(db, code, "app-b-client", REDIRECT_URI)
        assert redeemed.user_id == "u1"


def test_concurrent_redemption_loses_check_and_set():
    """
    Two redeemers may both read used=false; only the one whose UPDATE
    flips the flag may succeed.
    """
    record = AuthorizationCode(
        code="c",
        user_id="u1",
        client_id="app-b-client",
        redirect_uri=REDIRECT_URI,
        scope="openid",
        used=False,
        expires_at=datetime.utcnow() + timedelta(minutes=10),
    )
    mock_db = MagicMock(spec=Session)
    mock_db.query.return_value.filter.return_value.first.return_value = record
    mock_db.execute.return_value.rowcount = 0

    with pytest.raises(OAuthError) as exc_info:
        redeem_authorization_code(mock_db, "c", "app-b-client", REDIRECT_URI)

    assert_invalid_grant(exc_info, "already been used")
    mock_db.commit.assert_called_once()


def test_two_sessions_race_for_the_same_code(tmp_path, caplog):
    """
    Both sessions load the row while it is unused; the conditional UPDATE
    lets exactly one of them consume it.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'codes.db'}")
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = SessionLocal()
    code = issue(setup)
    setup.close()

    first, second = SessionLocal(), SessionLocal()
    try:
        for session in (first, second):
            assert session.query(AuthorizationCode).filter_by(code=code).one().used is False

        redeemed = redeem_authorization_code(
            first, code, "app-b-client", REDIRECT_URI, VERIFIER
        )

        # second still holds its stale used=False copy of the row
        with caplog.at_level(logging.WARNING, logger="sso.oauth.codes"):
            with pytest.raises(OAuthError) as exc_info:
                redeem_authorization_code(
                    second, code, "app-b-client", REDIRECT_URI, VERIFIER
                )
    finally:
        first.close()
        second.close()
        engine.dispose()

    assert redeemed.user_id == "u1"
    assert_invalid_grant(exc_info, "already been used")
    assert "Concurrent redemption" in caplog.text


def test_purge_expired_codes(db):
    live = issue(db)
    stale = issue(db)
    record = db.query(AuthorizationCode).filter_by(code=stale).one()
    record.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()

    assert purge_expired_codes(db) == 1
    remaining = [row.code for row in db.query(AuthorizationCode).all()]
    assert remaining == [live]
