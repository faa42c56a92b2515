"""Application factory: the one place where components are constructed.

The history log, the credential store and (optionally) the outbound transport
are created here and hung on ``app.state``. The lifespan starts the credential
sweep and shuts everything down in order.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from authprobe.config import Settings, get_settings
from authprobe.errors import (
    AuthorizationCallbackError,
    CallbackValidationError,
    ConfigurationError,
    CSRFError,
    DecodeError,
    OAuthHarnessError,
    ProviderError,
    TransportError,
    ValidationError,
)
from authprobe.history.store import HistoryLog
from authprobe.session.store import CredentialStore

logger = logging.getLogger(__name__)

# Looked up along the MRO of the raised error
_STATUS_BY_ERROR: dict[type[OAuthHarnessError], int] = {
    ConfigurationError: 400,
    CSRFError: 400,
    CallbackValidationError: 400,
    AuthorizationCallbackError: 400,
    ValidationError: 422,
    ProviderError: 502,
    DecodeError: 502,
    TransportError: 504,
}


def _status_for(exc: OAuthHarnessError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_ERROR:
            return _STATUS_BY_ERROR[cls]
    return 500


async def _harness_error_handler(request: Request, exc: OAuthHarnessError) -> JSONResponse:
    status = _status_for(exc)
    log = logger.error if status >= 500 else logger.warning
    log("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=exc.to_dict())


def create_app(
    settings: Settings | None = None,
    *,
    history: HistoryLog | None = None,
    credentials: CredentialStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the diagnostics app.

    Args:
        settings: Defaults to :func:`get_settings`.
        history: Injected log; when omitted one is opened at
            ``settings.resolved_database_path()`` and closed on shutdown.
        credentials: Injected store; defaults to one built from the settings.
        transport: Inner transport for every outbound call (tests pass
            ``httpx.MockTransport``); ``None`` means real network.
    """
    from authprobe.api.routes import router

    settings = settings or get_settings()
    owns_history = history is None
    credentials = credentials or CredentialStore(
        ttl_seconds=settings.session_ttl_hours * 3600,
        sweep_interval=settings.sweep_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.history is None:
            app.state.history = HistoryLog(settings.resolved_database_path())
        app.state.credentials.start()
        logger.info("authprobe ready (provider %s)", settings.base_url)
        try:
            yield
        finally:
            await app.state.credentials.stop()
            if owns_history:
                app.state.history.close()
                app.state.history = None

    app = FastAPI(
        title="authprobe",
        description="OAuth2 / OIDC flow diagnostics with full HTTP history.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.history = history
    app.state.credentials = credentials
    app.state.transport = transport

    app.add_exception_handler(OAuthHarnessError, _harness_error_handler)
    app.include_router(router)
    return app
