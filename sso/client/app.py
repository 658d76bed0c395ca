"""
Relying-party application.

Run with:
    uvicorn sso.client.app:app --port 8001
"""

import asyncio
import contextlib
import logging
from typing import Optional

import httpx
from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from sso.client.auth_server import AuthServerClient
from sso.client.errors import register_client_exception_handlers
from sso.client.pending import PendingAuthorizationStore, run_sweeper
from sso.client.routes import router
from sso.config import ClientSettings, client_settings
from sso.logging_config import configure_logging

logger = logging.getLogger(__name__)


def create_app(
    config: ClientSettings = client_settings,
    http: Optional[httpx.Client] = None,
) -> FastAPI:
    """
    Build the RP app.

    Args:
        config: RP settings
        http: Client used to reach the authorization server. When omitted
            one is created and closed at shutdown.
    """
    owns_http = http is None
    if http is None:
        http = httpx.Client()

    pending_store = PendingAuthorizationStore(ttl_seconds=config.PENDING_AUTH_TTL_SECONDS)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(
            run_sweeper(pending_store, config.PENDING_SWEEP_INTERVAL_SECONDS)
        )
        logger.info("Relying party started (client_id=%s)", config.CLIENT_ID)
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            if owns_http:
                http.close()

    app = FastAPI(title="SSO Relying Party", lifespan=lifespan)

    app.state.client_settings = config
    app.state.pending_store = pending_store
    app.state.auth_server = AuthServerClient(http, config)

    app.add_middleware(
        SessionMiddleware,
        secret_key=config.SESSION_SECRET_KEY,
    )

    app.include_router(router)

    register_client_exception_handlers(app)

    @app.get("/")
    def health():
        return {"status": "ok"}

    return app


configure_logging(client_settings.LOG_LEVEL)

app = create_app()
