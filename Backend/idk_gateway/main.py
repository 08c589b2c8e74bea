"""
Gateway application.

Builds the FastAPI app: structured logging, the shared upstream client,
request tracing, canonical error rendering and the OpenAI-compatible routes.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from idk_gateway.core.config import settings
from idk_gateway.gateway.errors import GatewayError, generate_error_response
from idk_gateway.gateway.middleware import bind_trace
from idk_gateway.gateway.routers import health_router, openai_router
from idk_gateway.gateway.services.dispatcher import Dispatcher
from idk_gateway.gateway.services.request_log import LoggingStorageConnector


def configure_logging() -> None:
    """structlog over stdlib logging; JSON or console output per LOG_FORMAT."""
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log.format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Open the shared upstream client and the dispatcher.

    A dispatcher already placed on app.state (tests, embedding apps) is used
    as is and left open on shutdown.
    """
    owned_client = None
    if getattr(app.state, "dispatcher", None) is None:
        owned_client = httpx.AsyncClient(
            limits=httpx.Limits(max_connections=settings.gateway.max_connections),
            timeout=httpx.Timeout(settings.gateway.default_timeout_ms / 1000),
        )
        app.state.dispatcher = Dispatcher(owned_client, storage=LoggingStorageConnector())

    logger.info(
        "Gateway started",
        version=settings.app.app_version,
        env=settings.app.app_env,
        default_provider=settings.gateway.default_provider,
        config_header=settings.gateway.config_header,
    )
    try:
        yield
    finally:
        if owned_client is not None:
            await owned_client.aclose()
            app.state.dispatcher = None
        logger.info("Gateway stopped")


# ============================================================================
# Error rendering
# ============================================================================


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    headers = {"x-idk-retry-attempt": str(exc.retry_attempt)}
    if exc.provider:
        headers["x-idk-provider"] = exc.provider
    return JSONResponse(status_code=exc.status_code, content=exc.to_error_body(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {"loc": (), "msg": "Request validation failed"}
    field = ".".join(str(part) for part in first["loc"])
    body = generate_error_response(
        f"Invalid request: {field}: {first['msg']}" if field else first["msg"],
        None,
        error_type="invalid_request_error",
        param=field or None,
    )
    return JSONResponse(status_code=400, content=body)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=exc)
    body = generate_error_response(
        str(exc) if settings.app.app_debug else "An internal error occurred",
        None,
        error_type="internal_error",
    )
    return JSONResponse(status_code=500, content=body)


# ============================================================================
# Application
# ============================================================================


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app.app_name,
        version=settings.app.app_version,
        description="OpenAI-compatible gateway for many AI providers",
        docs_url="/docs" if settings.docs_enabled else None,
        redoc_url="/redoc" if settings.docs_enabled else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins_list,
        allow_credentials=settings.app.cors_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Trace-ID", "x-idk-provider", "x-idk-retry-attempt"],
    )

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        """Bind request/trace ids and log each request with its duration."""
        ids = bind_trace(request.headers)
        started = time.monotonic()
        log = logger.bind(method=request.method, path=request.url.path)
        log.info("Request started")
        try:
            response = await call_next(request)
        except Exception as e:
            log.error("Request failed", error=str(e), duration_ms=round((time.monotonic() - started) * 1000, 2))
            raise
        response.headers.update(ids.response_headers())
        log.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        return response

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(openai_router)
    app.include_router(health_router)
    return app


app = create_app()
