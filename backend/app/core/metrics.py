from __future__ import annotations

import time

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Histogram, generate_latest
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.settings import APP_NAME


class HTTPMetrics:
    """Request-duration histogram on its own registry (one per app)."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.request_duration = Histogram(
            "request_duration_seconds",
            "Time spent handling HTTP requests, in seconds.",
            labelnames=("path", "method", "status"),
            namespace=APP_NAME,
            subsystem="http_server",
            registry=self.registry,
        )

    def observe(self, *, path: str, method: str, status: int, seconds: float) -> None:
        self.request_duration.labels(path=path, method=method, status=str(status)).observe(
            seconds
        )

    async def endpoint(self, _request: Request) -> Response:
        return Response(generate_latest(self.registry), media_type=CONTENT_TYPE_LATEST)


class MetricsMiddleware:
    def __init__(self, app: ASGIApp, metrics: HTTPMetrics) -> None:
        self.app = app
        self.metrics = metrics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            # Route template keeps label cardinality bounded.
            route = scope.get("route")
            path = getattr(route, "path", "") if route is not None else ""
            self.metrics.observe(
                path=path,
                method=scope["method"],
                status=status,
                seconds=time.perf_counter() - start,
            )
