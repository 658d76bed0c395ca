import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text
from sqlalchemy.dialects.postgresql import UUID

from sso.db import Base


class OAuthClient(Base):
    __tablename__ = "oauth_clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(String, unique=True, nullable=False)
    client_secret = Column(String, nullable=True)  # bcrypt hash; confidential only
    redirect_uris = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)

    name = Column(String, nullable=False)
    scopes = Column(Text, nullable=False, default="openid profile email")

    client_type = Column(String, nullable=False, default="confidential")
    require_pkce = Column(Boolean, nullable=False, default=True)
    # First-party clients are auto-approved without a consent step
    is_first_party = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def is_confidential(self) -> bool:
        return self.client_type == "confidential"

    @property
    def allowed_scopes(self) -> set[str]:
        return set((self.scopes or "").split())

    def is_valid_redirect_uri(self, redirect_uri: str) -> bool:
        # Exact string match only; no prefix or pattern matching
        return redirect_uri in (self.redirect_uris or [])


class AuthorizationCode(Base):
    __tablename__ = "authorization_codes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, unique=True, nullable=False, index=True)

    user_id = Column(String, nullable=False)

    redirect_uri = Column(Text, nullable=False)
    scope = Column(Text, nullable=False)
    state = Column(Text, nullable=True)
    nonce = Column(Text, nullable=True)  # For OIDC id_token
    client_id = Column(String, nullable=False, index=True)

    used = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    code_challenge = Column(String, nullable=True)  # For PKCE
    code_challenge_method = Column(String, nullable=True)  # "S256" or "plain"


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    token = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    client_id = Column(String, nullable=False, index=True)
    scope = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime, nullable=True)
    revoked_reason = Column(Text, nullable=True)
