"""FastAPI entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import RequestResponseEndpoint
from starlette.responses import Response

from modelgate.config import get_settings, validate_settings_for_env
from modelgate.db.migrations.runner import run_migrations
from modelgate.errors import (
    ConfigurationError,
    DuplicateProviderError,
    GatewayError,
    NoProviderAvailableError,
    RateLimitExceededError,
    UnavailableError,
    UnknownProviderError,
    UpstreamError,
    describe_error,
)
from modelgate.gateway.orchestrator import Gateway
from modelgate.logging import bind_context, clear_context, configure_logging, new_request_id
from modelgate.routes.api import router as api_router
from modelgate.routes.health import router as health_router

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[GatewayError], int], ...] = (
    (UnknownProviderError, 404),
    (DuplicateProviderError, 409),
    (RateLimitExceededError, 429),
    (NoProviderAvailableError, 503),
    (UnavailableError, 503),
    (ConfigurationError, 503),
    (UpstreamError, 502),
)


def status_for(exc: GatewayError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    validate_settings_for_env(settings)
    configure_logging(settings.log_level)
    run_migrations()
    gateway: Gateway | None = getattr(app.state, "gateway", None)
    if gateway is None:
        gateway = Gateway.from_settings(settings)
        app.state.gateway = gateway
    if gateway.active_provider_name is None:
        try:
            switched = await gateway.initialize()
            logger.info("Gateway ready provider=%s mode=%s", switched.provider, switched.mode)
        except GatewayError as exc:
            logger.error("Gateway started without an active provider: %s", exc)
    yield
    await gateway.cleanup()


def create_app(gateway: Gateway | None = None) -> FastAPI:
    app = FastAPI(title="modelgate", version="0.1.0", lifespan=lifespan)
    if gateway is not None:
        app.state.gateway = gateway

    @app.exception_handler(GatewayError)
    async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        gw: Gateway | None = getattr(request.app.state, "gateway", None)
        info = describe_error(exc, gw.active_provider_name if gw else None)
        return JSONResponse(
            status_code=status_for(exc),
            content={
                "error": info.kind,
                "detail": str(exc),
                "message": info.user_message,
                "blocking": info.blocking,
                "can_retry": info.can_retry,
                "suggest_switch": info.suggest_switch,
            },
        )

    @app.middleware("http")
    async def _request_context(request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or new_request_id()
        bind_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            clear_context()
        response.headers["X-Request-ID"] = request_id
        return response

    settings = get_settings()
    cors_origins = [item.strip() for item in settings.web_cors_origins.split(",") if item.strip()]
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(health_router)
    app.include_router(api_router)
    return app


app = create_app()
