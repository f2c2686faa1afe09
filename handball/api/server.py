"""
Handball HTTP server.

Owns the login routes (`/login`, `/login/finalize`) and the routes guarded by the
session cookie. The OIDC provider is discovered once during startup; if discovery
or configuration fails the server refuses to start.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from handball.api.frontend import index_response
from handball.auth.config import ServiceSettings, load_provider_config, load_service_settings
from handball.auth.deps import get_oidc_client, get_session_codec, optional_user, require_user
from handball.auth.errors import InternalAuthFault, NotAuthenticated
from handball.auth.flow import finalize_login, login_redirect
from handball.auth.models import AuthUser, CallbackParams
from handball.auth.oidc import OIDCClient
from handball.auth.session import SessionCodec

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Discover the OIDC provider before accepting requests.

    ConfigError / DiscoveryError propagate so the server never runs with a
    broken auth client. No retry: fix the configuration and restart.
    """
    if getattr(app.state, "oidc_client", None) is None:
        settings: ServiceSettings = app.state.settings
        provider = load_provider_config()
        logger.info("Discovering OIDC provider %s (stage=%s)", provider.issuer_url, settings.stage)
        app.state.oidc_client = OIDCClient.discover(provider, timeout=settings.http_timeout_seconds)
    yield


def create_app(
    *,
    oidc_client: Optional[OIDCClient] = None,
    settings: Optional[ServiceSettings] = None,
) -> FastAPI:
    """
    Build the application.

    `oidc_client` skips startup discovery (used by tests and by callers that
    discover ahead of time).
    """
    settings = settings or load_service_settings()

    app = FastAPI(title="Handball", lifespan=lifespan)
    app.state.settings = settings
    app.state.oidc_client = oidc_client
    app.state.session_codec = SessionCodec(settings.session_secret)

    @app.exception_handler(NotAuthenticated)
    async def _not_authenticated(_request: Request, _exc: NotAuthenticated) -> JSONResponse:
        # Do not emit `WWW-Authenticate`; browsers would show a credentials modal.
        return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

    @app.exception_handler(InternalAuthFault)
    async def _internal_fault(request: Request, exc: InternalAuthFault) -> JSONResponse:
        logger.error("Internal auth fault on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.exception_handler(404)
    async def _not_found(_request: Request, _exc: Exception):
        # Unknown paths get the frontend shell so client-side routes resolve.
        try:
            return index_response(settings.frontend_index)
        except HTTPException as e:
            return JSONResponse(status_code=e.status_code, content={"detail": e.detail})

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming HTTP requests."""
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    @app.get("/login")
    def login(
        invitation: Optional[str] = Query(None),
        organization: Optional[str] = Query(None),
        client: OIDCClient = Depends(get_oidc_client),
    ) -> RedirectResponse:
        """Redirect to the provider's login page."""
        return login_redirect(client, invitation=invitation, organization=organization)

    # Sync route: FastAPI runs the blocking token exchange in its threadpool.
    @app.get("/login/finalize")
    def login_finalize(
        code: Optional[str] = Query(None),
        state: Optional[str] = Query(None),
        error: Optional[str] = Query(None),
        error_description: Optional[str] = Query(None),
        client: OIDCClient = Depends(get_oidc_client),
        codec: SessionCodec = Depends(get_session_codec),
    ):
        params = CallbackParams(code=code, state=state, error=error, error_description=error_description)
        return finalize_login(client, codec, params, strict_redirects=settings.strict_redirects)

    @app.get("/")
    def index(
        user: Optional[AuthUser] = Depends(optional_user),
        client: OIDCClient = Depends(get_oidc_client),
    ):
        if user is None:
            return RedirectResponse(url=client.authorization_url(), status_code=302)
        return index_response(settings.frontend_index, missing_status=500)

    @app.get("/error/{page}")
    def error_page(page: str):
        return index_response(settings.frontend_index)

    @app.get("/api/auth/me")
    def auth_me(user: AuthUser = Depends(require_user)) -> Dict[str, Any]:
        return {
            "ok": True,
            "user": {
                "subject": user.subject,
                "email": user.email,
                "username": user.username,
            },
        }

    return app


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    settings = load_service_settings()

    # Configure logging for the application
    log_level = settings.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # basicConfig is a no-op when the CLI already configured logging.
    logging.getLogger().setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting handball server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(create_app(settings=settings), host=host, port=port, log_level=uvicorn_log_level)
