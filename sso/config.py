from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./sso.db"
    JWT_ISSUER: str = "http://localhost:8000"
    JWT_SECRET: str = "dev-secret-jwt"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 3600  # 1 hour
    ID_TOKEN_EXPIRE_SECONDS: int = 3600  # 1 hour
    REFRESH_TOKEN_EXPIRE_SECONDS: int = 30 * 24 * 3600
    CODE_EXPIRY_SECONDS: int = 600

    SESSION_SECRET_KEY: str = "dev-secret-session"

    # Where unauthenticated, interactive /authorize requests are sent
    LOGIN_URL: str = "/login"

    LOG_LEVEL: str = "INFO"


class ClientSettings(BaseSettings):
    """Relying-party settings, read from RP_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="RP_")

    AUTH_SERVER_URL: str = "http://localhost:8000"
    AUTHORIZE_PATH: str = "/oauth/authorize"
    TOKEN_PATH: str = "/oauth/token"
    USERINFO_PATH: str = "/oauth/userinfo"
    REVOKE_PATH: str = "/oauth/revoke"

    CLIENT_ID: str = "app-b-client"
    CLIENT_SECRET: str = ""
    REDIRECT_URI: str = "http://localhost:8001/oauth/callback"
    SCOPE: str = "openid profile email"

    # Browser-facing frontend the callback redirects back to
    FRONTEND_URL: str = "http://localhost:3002"

    SESSION_TOKEN_SECRET: str = "dev-secret-rp-session-token"
    SESSION_TOKEN_EXPIRE_SECONDS: int = 24 * 3600
    SESSION_SECRET_KEY: str = "dev-secret-rp-session"

    PENDING_AUTH_TTL_SECONDS: int = 600
    PENDING_SWEEP_INTERVAL_SECONDS: int = 60

    TOKEN_TIMEOUT_SECONDS: float = 10.0
    USERINFO_TIMEOUT_SECONDS: float = 5.0
    REVOKE_TIMEOUT_SECONDS: float = 5.0

    LOG_LEVEL: str = "INFO"


settings = Settings()
client_settings = ClientSettings()
