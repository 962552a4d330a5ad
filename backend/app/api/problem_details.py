"""Problem details (RFC 9457) rendering of request-scoped errors.

Handlers either raise or call `record_error()`; `ProblemDetailsMiddleware`
renders the last recorded error once the inner app is done, unless a response
has already been started.
"""

from __future__ import annotations

import http
import logging
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry import trace
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.api.validation_verbs import FALLBACK_VERB, VERBS
from app.core.errors import CustomError, ErrorKind, find_cause
from app.core.telemetry import trace_id_of


tracer = trace.get_tracer(__name__)

PROBLEM_JSON = "application/problem+json"
VALIDATION_DETAIL = "validation failed for one or more fields"

# Location prefixes FastAPI puts in front of the wire field name.
_LOC_SOURCES = frozenset({"body", "query", "path", "header", "cookie"})

STATUS_BY_KIND: Mapping[ErrorKind, int] = MappingProxyType(
    {
        ErrorKind.VALIDATION: 400,
        ErrorKind.INVALID_FORMAT: 400,
        ErrorKind.MISSING_FIELD: 400,
        ErrorKind.INVALID_STATE: 400,
        ErrorKind.DB_DUPLICATE: 400,
        ErrorKind.DB_CONSTRAINT: 400,
        ErrorKind.API_REQUEST: 400,
        ErrorKind.BUSINESS_RULE: 400,
        ErrorKind.INVALID_OPERATION: 400,
        ErrorKind.AUTHENTICATION: 401,
        ErrorKind.TOKEN_EXPIRED: 401,
        ErrorKind.TOKEN_INVALID: 401,
        ErrorKind.AUTHORIZATION: 403,
        ErrorKind.DB_NOT_FOUND: 404,
        ErrorKind.RESOURCE_NOT_FOUND: 404,
        ErrorKind.RATE_LIMIT: 429,
    }
)

# Client-visible detail for errors that carry no ErrorKind.
_KIND_BY_STATUS: Mapping[int, ErrorKind] = MappingProxyType(
    {
        401: ErrorKind.AUTHENTICATION,
        403: ErrorKind.AUTHORIZATION,
        404: ErrorKind.RESOURCE_NOT_FOUND,
        429: ErrorKind.RATE_LIMIT,
    }
)

_TYPE_PATHS: Mapping[int, str] = MappingProxyType(
    {
        400: "/bad_request",
        401: "/unauthorized",
        403: "/forbidden",
        404: "/resource_not_found",
        413: "/request_entity_too_large",
        429: "/too_many_requests",
        500: "/internal_server_error",
    }
)


class InvalidParam(BaseModel):
    name: str
    reason: str


class ProblemDetails(BaseModel):
    type: str
    title: str
    status: int
    detail: str | None = None
    invalid_params: list[InvalidParam] | None = None
    trace_id: str | None = None


def record_error(request: Request, err: BaseException) -> None:
    """Attach `err` to the request; the last recorded error is rendered."""

    errors = getattr(request.state, "errors", None)
    if errors is None:
        errors = []
        request.state.errors = errors
    errors.append(err)


def request_trace_id(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id is None:
        trace_id = trace_id_of(trace.get_current_span())
    return trace_id


def status_title(status: int) -> str:
    try:
        return http.HTTPStatus(status).phrase
    except ValueError:
        return "Error"


def field_name(loc: Sequence[int | str]) -> str:
    parts = list(loc)
    if len(parts) > 1 and parts[0] in _LOC_SOURCES:
        parts = parts[1:]
    return ".".join(str(p) for p in parts)


def validation_errors(err: BaseException) -> list[dict[str, Any]] | None:
    """Field errors of the validation failure `err` wraps, in validator order."""

    request_err = find_cause(err, RequestValidationError)
    if request_err is not None:
        return list(request_err.errors())
    model_err = find_cause(err, ValidationError)
    if model_err is not None:
        return list(model_err.errors())
    return None


class ProblemDetailsRenderer:
    def __init__(self, uri_reference_base: str, logger: logging.Logger | None = None) -> None:
        try:
            parts = urlsplit(uri_reference_base)
            # Accessing port validates it.
            _ = parts.port
        except ValueError as exc:
            raise ErrorKind.SYSTEM_INTERNAL.new(
                "failed to initialize problem details renderer: url %s",
                uri_reference_base,
                cause=exc,
            ) from exc
        self._scheme = parts.scheme
        self._netloc = parts.netloc
        self._logger = logger or logging.getLogger(__name__)

    def type_uri(self, path: str) -> str:
        return urlunsplit((self._scheme, self._netloc, path, "", ""))

    def type_for_status(self, status: int) -> str:
        path = _TYPE_PATHS.get(status)
        if path is None:
            if status >= 500:
                path = _TYPE_PATHS[500]
            else:
                path = "/" + status_title(status).lower().replace(" ", "_").replace("-", "_")
        return self.type_uri(path)

    def status_for(self, err: BaseException) -> int:
        if isinstance(err, CustomError):
            status = STATUS_BY_KIND.get(err.kind, 500)
        elif isinstance(err, StarletteHTTPException):
            status = err.status_code
        elif isinstance(err, (RequestValidationError, ValidationError)):
            status = 400
        else:
            status = 500
        return status if status >= 400 else 400

    def verb_for_rule(self, rule: str) -> str:
        verb = VERBS.get(rule)
        if verb is None:
            self._logger.error("no validation message registered for rule %r", rule)
            return FALLBACK_VERB
        return verb

    def invalid_params(self, field_errors: Sequence[Mapping[str, Any]]) -> list[InvalidParam]:
        params: list[InvalidParam] = []
        for fe in field_errors:
            name = field_name(fe.get("loc", ()))
            verb = self.verb_for_rule(str(fe.get("type", "")))
            params.append(InvalidParam(name=name, reason=f"'{name}' {verb}"))
        return params

    def build(self, err: BaseException, trace_id: str) -> ProblemDetails:
        status = self.status_for(err)

        field_errors = validation_errors(err)
        if field_errors is not None and status < 500:
            return ProblemDetails(
                type=self.type_uri("/validation-error"),
                title=status_title(status),
                status=status,
                detail=VALIDATION_DETAIL,
                invalid_params=self.invalid_params(field_errors),
                trace_id=trace_id,
            )

        detail: str | None = None
        if status < 500:
            # Only the fixed kind detail; never the cause or override message.
            if isinstance(err, CustomError):
                detail = err.kind.detail
            else:
                detail = _KIND_BY_STATUS.get(status, ErrorKind.API_REQUEST).detail
        return ProblemDetails(
            type=self.type_for_status(status),
            title=status_title(status),
            status=status,
            detail=detail,
            trace_id=trace_id,
        )

    def log(self, err: BaseException, status: int, trace_id: str) -> None:
        extra: dict[str, Any] = {"status_code": status, "trace_id": trace_id or None}
        if isinstance(err, CustomError):
            extra["error_code"] = err.code
            extra["checkpoints"] = list(err.checkpoints) or None
        if status >= 500:
            stack = ""
            if isinstance(err, CustomError) and err.stack:
                stack = "\n" + "".join(err.format_stack())
            self._logger.error(
                "request failed: %s%s",
                err,
                stack,
                extra=extra,
                exc_info=(type(err), err, err.__traceback__),
            )
        else:
            self._logger.info("request rejected: %s", err, extra=extra)

    def log_unrendered(self, err: BaseException, trace_id: str) -> None:
        self._logger.warning(
            "response already written, not rendering error: %s",
            err,
            extra={"trace_id": trace_id or None},
        )

    def response(
        self,
        err: BaseException,
        trace_id: str,
        headers: Mapping[str, str] | None = None,
    ) -> JSONResponse:
        problem = self.build(err, trace_id)
        self.log(err, problem.status, trace_id)
        if headers is None and isinstance(err, StarletteHTTPException):
            headers = err.headers
        return JSONResponse(
            status_code=problem.status,
            content=problem.model_dump(exclude_none=True),
            headers=dict(headers) if headers else None,
            media_type=PROBLEM_JSON,
        )


class ProblemDetailsMiddleware:
    """Render the last request error as problem details (first writer wins)."""

    def __init__(self, app: ASGIApp, renderer: ProblemDetailsRenderer) -> None:
        self.app = app
        self.renderer = renderer

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        with tracer.start_as_current_span("problem_details_renderer") as span:
            trace_id = trace_id_of(span)
            state = scope.setdefault("state", {})
            state["trace_id"] = trace_id
            errors: list[BaseException] = []
            state["errors"] = errors

            started = False

            async def send_wrapper(message: Message) -> None:
                nonlocal started
                if message["type"] == "http.response.start":
                    started = True
                await send(message)

            raised: Exception | None = None
            try:
                await self.app(scope, receive, send_wrapper)
            except Exception as exc:
                raised = exc
                errors.append(exc)

            if not errors:
                return
            err = errors[-1]

            if started:
                self.renderer.log_unrendered(err, trace_id)
                if raised is not None:
                    raise raised
                return

            if isinstance(err, CustomError):
                span.set_attribute("error.code", err.code)
            response = self.renderer.response(err, trace_id)
            await response(scope, receive, send)


async def reraise_validation_error(_request: Request, exc: RequestValidationError) -> None:
    """Hand FastAPI's request validation failures to ProblemDetailsMiddleware."""

    raise ErrorKind.VALIDATION.new(cause=exc) from exc


async def reraise_http_exception(_request: Request, exc: StarletteHTTPException) -> None:
    raise exc
