"""Tests for fault unwrapping and classification."""
import asyncio

from token_engine.errors import (
    CancelledError,
    ConfigurationError,
    FaultKind,
    ProviderError,
    TransientAuthError,
    classify,
    unwrap,
)


def test_unwrap_plain_exception_is_itself():
    e = ValueError("x")
    assert unwrap(e) is e


def test_unwrap_takes_first_of_group():
    first = ProviderError("first")
    group = ExceptionGroup("batch", [first, ValueError("second")])
    assert unwrap(group) is first


def test_unwrap_nested_groups():
    inner = ProviderError("inner")
    group = ExceptionGroup("outer", [ExceptionGroup("mid", [inner])])
    assert unwrap(group) is inner


def test_untagged_exception_is_transient():
    fault = classify(RuntimeError("network down"))
    assert fault.kind is FaultKind.TRANSIENT
    assert fault.message == "network down"


def test_tagged_provider_error_keeps_kind():
    assert classify(ProviderError("denied", kind=FaultKind.CANCELLED)).kind is FaultKind.CANCELLED
    assert classify(ProviderError("500")).kind is FaultKind.TRANSIENT


def test_engine_errors_carry_their_kind():
    assert classify(CancelledError()).kind is FaultKind.CANCELLED
    assert classify(ConfigurationError("missing")).kind is FaultKind.CONFIGURATION
    assert classify(TransientAuthError("late")).kind is FaultKind.TRANSIENT


def test_asyncio_cancellation_is_cancelled():
    assert classify(asyncio.CancelledError()).kind is FaultKind.CANCELLED


def test_group_classified_by_first_cause():
    group = ExceptionGroup("batch", [ProviderError("user declined", kind=FaultKind.CANCELLED), RuntimeError()])
    fault = classify(group)
    assert fault.kind is FaultKind.CANCELLED
    assert fault.message == "user declined"


def test_message_falls_back_to_type_name():
    assert classify(TimeoutError()).message == "TimeoutError"
