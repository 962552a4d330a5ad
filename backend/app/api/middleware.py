from __future__ import annotations

import logging
import math
import time

from fastapi import HTTPException
from limits import parse as parse_limit
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from opentelemetry import trace
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.api.problem_details import ProblemDetailsRenderer
from app.core.errors import ErrorKind
from app.core.settings import CustomHeader
from app.core.telemetry import trace_id_of


access_logger = logging.getLogger("app.access")


class AccessLogMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

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
            latency_ms = round((time.perf_counter() - start) * 1000, 3)
            client = scope.get("client")
            client_ip = client[0] if client else None
            access_logger.info(
                "%s %s %s %.3fms",
                scope["method"],
                scope["path"],
                status,
                latency_ms,
                extra={
                    "method": scope["method"],
                    "path": scope["path"],
                    "status_code": status,
                    "latency_ms": latency_ms,
                    "client_ip": client_ip,
                },
            )


RATE_LIMIT_KEY = "global"


class RateLimitMiddleware:
    """Apply one process-wide moving-window limit to every HTTP request.

    Requests over the limit get a 429 problem document with Retry-After.
    """

    def __init__(self, app: ASGIApp, limit: str, renderer: ProblemDetailsRenderer) -> None:
        self.app = app
        self.item = parse_limit(limit)
        self.limiter = MovingWindowRateLimiter(MemoryStorage())
        self.renderer = renderer

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.limiter.hit(self.item, RATE_LIMIT_KEY):
            await self.app(scope, receive, send)
            return

        stats = self.limiter.get_window_stats(self.item, RATE_LIMIT_KEY)
        retry_after = max(math.ceil(stats.reset_time - time.time()), 1)
        err = ErrorKind.RATE_LIMIT.new("rate limit %s exceeded", self.item)
        response = self.renderer.response(
            err,
            trace_id_of(trace.get_current_span()),
            headers={"Retry-After": str(retry_after)},
        )
        await response(scope, receive, send)


class RequestSizeLimitMiddleware:
    """Reject request bodies larger than `max_bytes` with 413.

    Content-Length is checked up front; bodies without it are counted while
    the app reads them.
    """

    def __init__(self, app: ASGIApp, max_bytes: int, renderer: ProblemDetailsRenderer) -> None:
        self.app = app
        self.max_bytes = max_bytes
        self.renderer = renderer

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.max_bytes <= 0:
            await self.app(scope, receive, send)
            return

        content_length = Headers(scope=scope).get("content-length")
        if content_length is not None and content_length.isdigit():
            if int(content_length) > self.max_bytes:
                exc = HTTPException(status_code=413)
                response = self.renderer.response(exc, trace_id_of(trace.get_current_span()))
                await response(scope, receive, send)
                return

        received = 0

        async def receive_wrapper() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    # Rendered by ProblemDetailsMiddleware further in.
                    raise HTTPException(status_code=413)
            return message

        await self.app(scope, receive_wrapper, send)


class CustomHeadersMiddleware:
    def __init__(self, app: ASGIApp, headers: list[CustomHeader]) -> None:
        self.app = app
        self.headers = [h for h in headers if h.enabled]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.headers:
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for h in self.headers:
                    if h.override or h.name not in headers:
                        headers[h.name] = h.value
            await send(message)

        await self.app(scope, receive, send_wrapper)
