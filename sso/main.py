from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from sso.config import settings
from sso.logging_config import configure_logging
from sso.oauth.errors import register_oauth_exception_handlers
from sso.oauth.routes import router as oauth_router

configure_logging(settings.LOG_LEVEL)

app = FastAPI(title="SSO Authorization Server")

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SESSION_SECRET_KEY,
)

app.include_router(oauth_router)

register_oauth_exception_handlers(app)


@app.get("/.well-known/jwks.json")
def jwks():
    """
    OIDC JWKS Endpoint per OpenID Connect Discovery §3.

    Tokens are signed with a shared secret (HS256), so there are no
    public keys to publish.
    """
    return {"keys": []}


@app.get("/.well-known/openid-configuration")
def openid_configuration():
    """
    OpenID Connect Discovery Document per OpenID Connect Discovery §3.

    Returns metadata about the authorization server including
    endpoint URLs, supported features, and capabilities.
    """
    issuer = settings.JWT_ISSUER

    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth/authorize",
        "token_endpoint": f"{issuer}/oauth/token",
        "userinfo_endpoint": f"{issuer}/oauth/userinfo",
        "jwks_uri": f"{issuer}/.well-known/jwks.json",
        "revocation_endpoint": f"{issuer}/oauth/revoke",
        "grant_types_supported": [
            "authorization_code",
            "refresh_token",
        ],
        "response_types_supported": ["code"],
        "response_modes_supported": ["query"],
        "token_endpoint_auth_methods_supported": [
            "client_secret_basic",
            "client_secret_post",
            "none",
        ],
        "revocation_endpoint_auth_methods_supported": [
            "client_secret_basic",
            "client_secret_post",
            "none",
        ],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": [settings.JWT_ALGORITHM],
        "scopes_supported": [
            "openid",
            "profile",
            "email",
        ],
        "claims_supported": [
            "sub",
            "iss",
            "aud",
            "exp",
            "iat",
            "nonce",
            "name",
            "email",
            "email_verified",
        ],
        "code_challenge_methods_supported": ["S256", "plain"],
        "prompt_values_supported": ["none"],
    }


@app.get("/")
def root():
    return {"status": "ok"}
