from __future__ import annotations

import pytest

from app.core.errors import (
    CustomError,
    ErrorKind,
    StackTraceOrder,
    _TEMPLATES,
    append_checkpoint,
    find_cause,
    get_stack_trace_order,
    set_stack_trace_order,
    verify_registry,
)


@pytest.fixture()
def restore_stack_order():
    yield
    set_stack_trace_order(StackTraceOrder.NEWEST_FIRST)


def test_every_kind_builds_an_error_with_its_code() -> None:
    for kind in ErrorKind:
        err = kind.new()
        assert isinstance(err, CustomError)
        assert err.kind is kind
        assert err.code == _TEMPLATES[kind].code
        assert err.detail == _TEMPLATES[kind].detail
    assert ErrorKind.UNKNOWN.code == "UNKNOWN_ERROR"
    assert ErrorKind.DB_DUPLICATE.code == "DB_DUPLICATE"


def test_registry_check_rejects_missing_template() -> None:
    verify_registry()

    incomplete = {k: v for k, v in _TEMPLATES.items() if k is not ErrorKind.TIMEOUT}
    with pytest.raises(RuntimeError):
        verify_registry(incomplete)


def test_registry_check_rejects_foreign_keys() -> None:
    swapped = {k: v for k, v in _TEMPLATES.items() if k is not ErrorKind.TIMEOUT}
    swapped["TIMEOUT"] = _TEMPLATES[ErrorKind.TIMEOUT]  # type: ignore[index]
    with pytest.raises(RuntimeError):
        verify_registry(swapped)


def test_message_override_and_format() -> None:
    err = ErrorKind.TIMEOUT.new("gave up after %d s on %s", 5, "db")
    assert err.detail == "gave up after 5 s on db"
    assert err.kind.detail == "operation timed out"
    assert str(err) == "[TIMEOUT] gave up after 5 s on db"


def test_cause_is_chained() -> None:
    cause = ConnectionRefusedError("refused")
    err = ErrorKind.DB_CONNECTION.new(cause=cause)
    assert err.cause is cause
    assert err.__cause__ is cause
    assert str(err) == "[DB_CONNECTION] failed to establish database connection: refused"


def _make_here() -> CustomError:
    return ErrorKind.OPERATION_FAILED.new()


def test_stack_newest_first_starts_at_call_site(restore_stack_order) -> None:
    set_stack_trace_order(StackTraceOrder.NEWEST_FIRST)
    err = _make_here()
    assert err.stack[0].name == "_make_here"
    assert err.stack[1].name == "test_stack_newest_first_starts_at_call_site"


def test_stack_oldest_first_ends_at_call_site(restore_stack_order) -> None:
    set_stack_trace_order("oldest_first")
    err = _make_here()
    assert err.stack[-1].name == "_make_here"


def test_stack_order_toggle(restore_stack_order) -> None:
    assert get_stack_trace_order() is StackTraceOrder.NEWEST_FIRST
    set_stack_trace_order("oldest_first")
    assert get_stack_trace_order() is StackTraceOrder.OLDEST_FIRST
    with pytest.raises(ValueError):
        set_stack_trace_order("sideways")
    assert get_stack_trace_order() is StackTraceOrder.OLDEST_FIRST


def test_stack_order_fixed_at_creation(restore_stack_order) -> None:
    set_stack_trace_order(StackTraceOrder.OLDEST_FIRST)
    err = _make_here()
    set_stack_trace_order(StackTraceOrder.NEWEST_FIRST)
    assert err.stack[-1].name == "_make_here"
    assert err.format_stack()[-1].count("_make_here") == 1


def test_append_checkpoint_returns_new_error() -> None:
    original = ErrorKind.DB_NOT_FOUND.new("user %s", "u1")
    first = append_checkpoint(original, "store")
    second = append_checkpoint(first, "operations")

    assert original.checkpoints == ()
    assert first.checkpoints == ("store",)
    assert second.checkpoints == ("store", "operations")
    assert second.kind is ErrorKind.DB_NOT_FOUND
    assert second.detail == "user u1"
    assert second.stack == original.stack


def test_append_checkpoint_wraps_foreign_errors() -> None:
    cause = ValueError("bad")
    err = append_checkpoint(cause, "parsing")
    assert err.kind is ErrorKind.UNKNOWN
    assert err.cause is cause
    assert err.checkpoints == ("parsing",)


def test_find_cause_walks_the_chain() -> None:
    root = KeyError("k")
    middle = ErrorKind.DB_OPERATION.new(cause=root)
    try:
        try:
            raise middle
        except CustomError as exc:
            raise append_checkpoint(exc, "outer") from exc
    except CustomError as outer:
        assert find_cause(outer, KeyError) is root
        assert find_cause(outer, CustomError) is outer
        assert find_cause(outer, TimeoutError) is None


def test_errors_are_read_only() -> None:
    err = ErrorKind.VALIDATION.new()
    with pytest.raises(AttributeError):
        err.kind = ErrorKind.UNKNOWN  # type: ignore[misc]
