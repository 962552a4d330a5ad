from __future__ import annotations

import dataclasses
import enum
import sys
import traceback
from collections.abc import Mapping
from types import FrameType, MappingProxyType
from typing import TypeVar


E = TypeVar("E", bound=BaseException)


class StackTraceOrder(str, enum.Enum):
    """Display order of captured stack frames.

    NEWEST_FIRST puts the frame that created the error first (the usual order
    for leaf-first consumers); OLDEST_FIRST matches Python tracebacks and
    APMs that expect root-first frames.
    """

    OLDEST_FIRST = "oldest_first"
    NEWEST_FIRST = "newest_first"


_stack_trace_order = StackTraceOrder.NEWEST_FIRST


def set_stack_trace_order(order: StackTraceOrder | str) -> None:
    global _stack_trace_order
    _stack_trace_order = StackTraceOrder(order)


def get_stack_trace_order() -> StackTraceOrder:
    return _stack_trace_order


def _capture_stack(frame: FrameType) -> tuple[traceback.FrameSummary, ...]:
    # Order is fixed here, at creation time.
    stack = tuple(traceback.extract_stack(frame))
    if _stack_trace_order is StackTraceOrder.NEWEST_FIRST:
        stack = tuple(reversed(stack))
    return stack


class ErrorKind(enum.Enum):
    UNKNOWN = enum.auto()

    # System / infrastructure
    SYSTEM_INTERNAL = enum.auto()
    RESOURCE_EXHAUSTED = enum.auto()
    TIMEOUT = enum.auto()
    UNAVAILABLE = enum.auto()

    # Database
    DB_CONNECTION = enum.auto()
    DB_OPERATION = enum.auto()
    DB_CONSTRAINT = enum.auto()
    DB_NOT_FOUND = enum.auto()
    DB_DUPLICATE = enum.auto()

    # API / HTTP
    API_REQUEST = enum.auto()
    API_RESPONSE = enum.auto()
    RATE_LIMIT = enum.auto()
    SERVICE_UNAVAILABLE = enum.auto()

    # Authentication / authorization
    AUTHENTICATION = enum.auto()
    AUTHORIZATION = enum.auto()
    TOKEN_EXPIRED = enum.auto()
    TOKEN_INVALID = enum.auto()

    # Validation
    VALIDATION = enum.auto()
    INVALID_FORMAT = enum.auto()
    MISSING_FIELD = enum.auto()
    INVALID_STATE = enum.auto()

    # Business logic
    BUSINESS_RULE = enum.auto()
    OPERATION_FAILED = enum.auto()
    INVALID_OPERATION = enum.auto()
    RESOURCE_NOT_FOUND = enum.auto()

    @property
    def code(self) -> str:
        return _TEMPLATES[self].code

    @property
    def detail(self) -> str:
        return _TEMPLATES[self].detail

    def new(
        self,
        message: str | None = None,
        *args: object,
        cause: BaseException | None = None,
    ) -> CustomError:
        """Create a CustomError of this kind.

        `message` overrides the default detail and is %-formatted with `args`
        when given. The stack is captured at the caller of `new`.
        """

        if message is not None and args:
            message = message % args
        return CustomError(
            self, message=message, cause=cause, stack=_capture_stack(sys._getframe(1))
        )


@dataclasses.dataclass(frozen=True, slots=True)
class _Template:
    code: str
    detail: str


# One entry per ErrorKind; verify_registry() enforces this at import time.
_TEMPLATES: Mapping[ErrorKind, _Template] = MappingProxyType(
    {
        ErrorKind.UNKNOWN: _Template("UNKNOWN_ERROR", "an unexpected error occurred"),
        ErrorKind.SYSTEM_INTERNAL: _Template(
            "SYSTEM_INTERNAL", "internal system error occurred"
        ),
        ErrorKind.RESOURCE_EXHAUSTED: _Template(
            "RESOURCE_EXHAUSTED", "system resources have been exhausted"
        ),
        ErrorKind.TIMEOUT: _Template("TIMEOUT", "operation timed out"),
        ErrorKind.UNAVAILABLE: _Template(
            "UNAVAILABLE", "service is currently unavailable"
        ),
        ErrorKind.DB_CONNECTION: _Template(
            "DB_CONNECTION", "failed to establish database connection"
        ),
        ErrorKind.DB_OPERATION: _Template("DB_OPERATION", "database operation failed"),
        ErrorKind.DB_CONSTRAINT: _Template(
            "DB_CONSTRAINT", "database constraint violation occurred"
        ),
        ErrorKind.DB_NOT_FOUND: _Template(
            "DB_NOT_FOUND", "requested record not found in database"
        ),
        ErrorKind.DB_DUPLICATE: _Template(
            "DB_DUPLICATE", "duplicate record detected in database"
        ),
        ErrorKind.API_REQUEST: _Template("API_REQUEST", "invalid API request"),
        ErrorKind.API_RESPONSE: _Template("API_RESPONSE", "API response error occurred"),
        ErrorKind.RATE_LIMIT: _Template("RATE_LIMIT", "rate limit exceeded"),
        ErrorKind.SERVICE_UNAVAILABLE: _Template(
            "SERVICE_UNAVAILABLE", "external service is unavailable"
        ),
        ErrorKind.AUTHENTICATION: _Template("AUTHENTICATION", "authentication failed"),
        ErrorKind.AUTHORIZATION: _Template("AUTHORIZATION", "authorization failed"),
        ErrorKind.TOKEN_EXPIRED: _Template(
            "TOKEN_EXPIRED", "authentication token has expired"
        ),
        ErrorKind.TOKEN_INVALID: _Template(
            "TOKEN_INVALID", "invalid authentication token"
        ),
        ErrorKind.VALIDATION: _Template("VALIDATION", "validation error occurred"),
        ErrorKind.INVALID_FORMAT: _Template("INVALID_FORMAT", "invalid format detected"),
        ErrorKind.MISSING_FIELD: _Template("MISSING_FIELD", "required field is missing"),
        ErrorKind.INVALID_STATE: _Template("INVALID_STATE", "invalid state detected"),
        ErrorKind.BUSINESS_RULE: _Template(
            "BUSINESS_RULE", "business rule violation occurred"
        ),
        ErrorKind.OPERATION_FAILED: _Template(
            "OPERATION_FAILED", "operation failed to complete"
        ),
        ErrorKind.INVALID_OPERATION: _Template(
            "INVALID_OPERATION", "invalid operation attempted"
        ),
        ErrorKind.RESOURCE_NOT_FOUND: _Template(
            "RESOURCE_NOT_FOUND", "requested resource not found"
        ),
    }
)


def verify_registry(templates: Mapping[ErrorKind, object] = _TEMPLATES) -> None:
    """Fail fast when the template table and ErrorKind drift apart."""

    if len(templates) != len(ErrorKind):
        raise RuntimeError(
            f"error registry has {len(templates)} templates "
            f"but ErrorKind defines {len(ErrorKind)} kinds"
        )
    missing = [kind.name for kind in ErrorKind if kind not in templates]
    if missing:
        raise RuntimeError(f"error registry is missing templates for: {missing}")


class CustomError(Exception):
    """An ErrorKind instance with cause, message override and captured stack."""

    def __init__(
        self,
        kind: ErrorKind,
        *,
        message: str | None = None,
        cause: BaseException | None = None,
        stack: tuple[traceback.FrameSummary, ...] = (),
        checkpoints: tuple[str, ...] = (),
    ) -> None:
        super().__init__(kind.code, message or kind.detail)
        self._kind = kind
        self._message = message
        self._cause = cause
        self._stack = stack
        self._checkpoints = checkpoints
        self.__cause__ = cause

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def code(self) -> str:
        return self._kind.code

    @property
    def detail(self) -> str:
        return self._message or self._kind.detail

    @property
    def message(self) -> str | None:
        return self._message

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    @property
    def stack(self) -> tuple[traceback.FrameSummary, ...]:
        return self._stack

    @property
    def checkpoints(self) -> tuple[str, ...]:
        return self._checkpoints

    def format_stack(self) -> list[str]:
        return traceback.format_list(list(self._stack))

    def __str__(self) -> str:
        text = f"[{self.code}] {self.detail}"
        if self._cause is not None:
            text = f"{text}: {self._cause}"
        return text

    def __repr__(self) -> str:
        return f"CustomError({self._kind.name}, detail={self.detail!r})"


def append_checkpoint(err: BaseException, message: str) -> CustomError:
    """Return a copy of `err` with `message` appended to its checkpoints."""

    if not isinstance(err, CustomError):
        return CustomError(
            ErrorKind.UNKNOWN,
            cause=err,
            stack=_capture_stack(sys._getframe(1)),
            checkpoints=(message,),
        )
    return CustomError(
        err.kind,
        message=err.message,
        cause=err.cause,
        stack=err.stack,
        checkpoints=(*err.checkpoints, message),
    )


def find_cause(err: BaseException | None, exc_type: type[E]) -> E | None:
    """Walk the cause chain of `err` and return the first `exc_type` instance."""

    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, exc_type):
            return err
        seen.add(id(err))
        if isinstance(err, CustomError) and err.cause is not None:
            err = err.cause
        else:
            err = err.__cause__ or err.__context__
    return None


verify_registry()
