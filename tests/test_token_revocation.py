"""
Tests for Token Revocation per RFC 7009.

Tests cover:
- Revoke endpoint for refresh tokens
- Client authentication for revocation
- Access tokens and unknown tokens (always 200)
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sso.db import Base, get_db
from sso.main import app
from sso.models.user import User  # noqa: F401
from sso.oauth.errors import OAuthError, OAuthErrorCode
from sso.oauth.jwt import create_access_token
from sso.oauth.models import OAuthClient, RefreshToken
from sso.oauth.refresh_tokens import create_refresh_token
from sso.oauth.service import revoke_token
from sso.services.auth import hash_password

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = MagicMock(spec=Session)
    return db


# =============================================================================
# TestRevokeTokenService
# =============================================================================


class TestRevokeTokenService:
    def test_missing_token_is_invalid_request(self, mock_db):
        with pytest.raises(OAuthError) as exc_info:
            revoke_token(db=mock_db, token=None)

        assert exc_info.value.error_code == OAuthErrorCode.INVALID_REQUEST
        mock_db.execute.assert_not_called()

    def test_unknown_token_is_not_an_error(self, mock_db):
        mock_db.execute.return_value.rowcount = 0

        revoke_token(db=mock_db, token="unknown", client_id="app-b-client")

        mock_db.commit.assert_called_once()


# =============================================================================
# TestRevokeEndpoint
# =============================================================================


class TestRevokeEndpoint:
    @pytest.fixture(autouse=True)
    def setup_test_client(self):
        SQLALCHEMY_DATABASE_URL = "sqlite://"
        self.engine = create_engine(
            SQLALCHEMY_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self.TestingSessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )
        Base.metadata.create_all(bind=self.engine)

        def override_get_db():
            try:
                db = self.TestingSessionLocal()
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

        db = self.TestingSessionLocal()
        db.add(
            OAuthClient(
                client_id="app-b-client",
                client_secret=hash_password("s3cret"),
                redirect_uris=["https://rp.example/cb"],
                name="App B",
                scopes="openid profile email",
                client_type="confidential",
                require_pkce=True,
                is_first_party=True,
                is_active=True,
            )
        )
        db.commit()
        db.close()

        yield
        app.dependency_overrides.clear()

    @pytest.fixture
    def db_session(self):
        db = self.TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    @pytest.fixture
    def refresh_token(self, db_session):
        return create_refresh_token(db_session, "u1", "app-b-client", "openid")

    def is_revoked(self, db_session, token):
        db_session.expire_all()
        return db_session.query(RefreshToken).filter_by(token=token).one().revoked

    def test_revoke_refresh_token(self, db_session, refresh_token):
        response = self.client.post(
            "/oauth/revoke",
            data={"token": refresh_token, "token_type_hint": "refresh_token"},
            auth=("app-b-client", "s3cret"),
        )

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        assert self.is_revoked(db_session, refresh_token) is True

    def test_revoke_without_client_credentials(self, db_session, refresh_token):
        response = self.client.post("/oauth/revoke", data={"token": refresh_token})

        assert response.status_code == 200
        assert self.is_revoked(db_session, refresh_token) is True

    def test_revoke_twice(self, refresh_token):
        data = {"token": refresh_token}

        assert self.client.post("/oauth/revoke", data=data).status_code == 200
        assert self.client.post("/oauth/revoke", data=data).status_code == 200

    def test_unknown_token_returns_200(self):
        response = self.client.post("/oauth/revoke", data={"token": "does-not-exist"})

        assert response.status_code == 200

    def test_access_token_is_ignored(self):
        access_token, _ = create_access_token("u1", "app-b-client", "openid")

        response = self.client.post(
            "/oauth/revoke",
            data={"token": access_token, "token_type_hint": "access_token"},
        )

        assert response.status_code == 200

    def test_missing_token(self):
        response = self.client.post("/oauth/revoke", data={})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_bad_client_credentials(self, db_session, refresh_token):
        response = self.client.post(
            "/oauth/revoke",
            data={"token": refresh_token},
            auth=("app-b-client", "wrong"),
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_client"
        assert self.is_revoked(db_session, refresh_token) is False

    def test_other_clients_token_is_not_revoked(self, db_session):
        db_session.add(
            OAuthClient(
                client_id="other-client",
                client_secret=hash_password("other"),
                redirect_uris=["https://other.example/cb"],
                name="Other",
                scopes="openid",
                client_type="confidential",
                require_pkce=True,
                is_first_party=True,
                is_active=True,
            )
        )
        db_session.commit()
        token = create_refresh_token(db_session, "u1", "app-b-client", "openid")

        response = self.client.post(
            "/oauth/revoke",
            data={"token": token},
            auth=("other-client", "other"),
        )

        assert response.status_code == 200
        assert self.is_revoked(db_session, token) is False
