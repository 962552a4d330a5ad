from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.middleware import (
    AccessLogMiddleware,
    CustomHeadersMiddleware,
    RateLimitMiddleware,
    RequestSizeLimitMiddleware,
)
from app.api.problem_details import (
    ProblemDetailsMiddleware,
    ProblemDetailsRenderer,
    reraise_http_exception,
    reraise_validation_error,
)
from app.api.router import api_router
from app.api.sessions import RedisSessionStore, SessionManager, SessionMiddleware
from app.core.errors import set_stack_trace_order
from app.core.metrics import HTTPMetrics, MetricsMiddleware
from app.core.settings import APP_NAME, Settings, get_settings
from app.core.telemetry import setup_otel_sdk, start_profiler
from app.db.session import dispose_engine
from app.db.valkey import close_redis, get_redis


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings

    shutdown_telemetry = None
    if settings.otel_enabled:
        shutdown_telemetry = setup_otel_sdk(settings)
    if settings.pyroscope.enabled:
        start_profiler(settings.pyroscope)

    logger.info("server starting on %s:%s", settings.server.host, settings.server.port)
    try:
        yield
    finally:
        logger.info("server shutting down")
        await dispose_engine()
        await close_redis()
        if shutdown_telemetry is not None:
            shutdown_telemetry()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    set_stack_trace_order(settings.stack_trace_order)

    app = FastAPI(title=f"{APP_NAME} API", lifespan=lifespan)
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    renderer = ProblemDetailsRenderer(settings.problem_type_base)
    app.add_exception_handler(RequestValidationError, reraise_validation_error)
    app.add_exception_handler(StarletteHTTPException, reraise_http_exception)

    # Starlette wraps in reverse order of registration: the last added
    # middleware sees the request first.
    app.add_middleware(ProblemDetailsMiddleware, renderer=renderer)

    cors = settings.server.cors
    if cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors.allow_origins,
            allow_methods=[m.upper() for m in cors.allow_methods],
            allow_headers=cors.allow_headers,
            expose_headers=cors.expose_headers,
            allow_credentials=cors.allow_credentials,
            max_age=cors.max_age_hour * 3600,
        )

    skip_paths = set(settings.session.skip_paths)
    if settings.prometheus.enabled:
        skip_paths.add(settings.prometheus.metrics_path)
    sessions = SessionManager(
        RedisSessionStore(get_redis(), settings.session.key_prefix), settings.session
    )
    app.add_middleware(
        SessionMiddleware,
        manager=sessions,
        renderer=renderer,
        skip_paths=sorted(skip_paths),
    )

    if settings.server.custom_headers:
        app.add_middleware(CustomHeadersMiddleware, headers=settings.server.custom_headers)

    if settings.prometheus.enabled:
        metrics = HTTPMetrics()
        app.state.metrics = metrics
        app.add_route(
            settings.prometheus.metrics_path,
            metrics.endpoint,
            methods=["GET"],
            include_in_schema=False,
        )
        app.add_middleware(MetricsMiddleware, metrics=metrics)

    if settings.server.max_request_size > 0:
        app.add_middleware(
            RequestSizeLimitMiddleware,
            max_bytes=settings.server.max_request_size,
            renderer=renderer,
        )

    if settings.server.rate_limit.enabled:
        app.add_middleware(
            RateLimitMiddleware,
            limit=settings.server.rate_limit.limit,
            renderer=renderer,
        )

    app.add_middleware(AccessLogMiddleware)

    if settings.otlp_trace.enabled:
        FastAPIInstrumentor.instrument_app(
            app, excluded_urls=settings.prometheus.metrics_path
        )

    app.include_router(api_router)
    return app


app = create_app()
