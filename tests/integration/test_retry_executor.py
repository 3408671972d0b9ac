"""Tests for bounded retry with exponential backoff."""

from __future__ import annotations

import pytest
import requests

from core.errors import (
    ErrorKind,
    PolicyDeniedError,
    TransientNetworkError,
    WhitelistSchemaError,
    classify_error,
)
from fetcher.retry import RetryExecutor, RetryOptions, is_network_error


class FlakyOperation:
    """Raise the queued errors in order, then return `result`."""

    def __init__(self, errors: list[Exception], result: object = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.mark.unit
def test_success_after_one_failure_waits_initial_delay():
    sleeps: list[float] = []
    operation = FlakyOperation([requests.Timeout("slow")])

    result = RetryExecutor(sleep_fn=sleeps.append).run(
        operation, RetryOptions(max_retries=2, initial_delay=0.5)
    )

    assert result == "ok"
    assert operation.calls == 2
    assert sleeps == [0.5]


@pytest.mark.unit
def test_non_retryable_error_is_raised_immediately():
    sleeps: list[float] = []
    operation = FlakyOperation([ValueError("bad input")])

    with pytest.raises(ValueError, match="bad input"):
        RetryExecutor(sleep_fn=sleeps.append).run(
            operation,
            RetryOptions(retryable=lambda exc: not isinstance(exc, ValueError)),
        )

    assert operation.calls == 1
    assert sleeps == []


@pytest.mark.unit
def test_exhaustion_raises_last_error_with_capped_delays():
    sleeps: list[float] = []
    errors = [requests.ConnectionError(f"refused {index}") for index in range(5)]
    operation = FlakyOperation(errors)
    options = RetryOptions(max_retries=4, initial_delay=1.0, max_delay=3.0, backoff_multiplier=2.0)

    with pytest.raises(requests.ConnectionError, match="refused 4"):
        RetryExecutor(sleep_fn=sleeps.append).run(operation, options)

    assert operation.calls == 5
    assert sleeps == [1.0, 2.0, 3.0, 3.0]


@pytest.mark.unit
def test_zero_retries_calls_once():
    operation = FlakyOperation([requests.Timeout("slow")])

    with pytest.raises(requests.Timeout):
        RetryExecutor(sleep_fn=lambda _: None).run(operation, RetryOptions(max_retries=0))

    assert operation.calls == 1


@pytest.mark.unit
def test_run_network_does_not_retry_compliance_denials():
    sleeps: list[float] = []
    operation = FlakyOperation([PolicyDeniedError("denied", host="a.test")])

    with pytest.raises(PolicyDeniedError):
        RetryExecutor(sleep_fn=sleeps.append).run_network(operation)

    assert operation.calls == 1
    assert sleeps == []


@pytest.mark.unit
def test_retry_events_are_logged(captured_events):
    operation = FlakyOperation([TransientNetworkError("upstream 503", status_code=503)])

    RetryExecutor(sleep_fn=lambda _: None, component="test").run_network(
        operation, RetryOptions(max_retries=1, initial_delay=0.25)
    )

    events = [event for event in captured_events() if event["event_type"] == "retry_scheduled"]
    assert len(events) == 1
    assert events[0]["component"] == "test"
    assert events[0]["attempt"] == 1
    assert events[0]["delay_seconds"] == 0.25
    assert events[0]["error_type"] == "TransientNetworkError"
    assert events[0]["max_retries"] == 1


@pytest.mark.unit
@pytest.mark.parametrize("max_retries", [-1])
def test_options_reject_negative_retries(max_retries: int):
    with pytest.raises(ValueError):
        RetryOptions(max_retries=max_retries)


class StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class CodedError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__("socket failure")
        self.code = code


@pytest.mark.unit
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (requests.Timeout("x"), True),
        (requests.ConnectionError("x"), True),
        (TimeoutError("x"), True),
        (StatusError(502), True),
        (StatusError(404), False),
        (CodedError("ECONNRESET"), True),
        (CodedError("EACCES"), False),
        (RuntimeError("getaddrinfo ENOTFOUND shop.test"), True),
        (RuntimeError("request timed out"), True),
        (RuntimeError("unexpected token"), False),
        (WhitelistSchemaError("network field missing"), False),
    ],
)
def test_is_network_error(error: Exception, expected: bool):
    assert is_network_error(error) is expected


@pytest.mark.unit
@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (PolicyDeniedError("x"), ErrorKind.POLICY_DENIED),
        (WhitelistSchemaError("x"), ErrorKind.WHITELIST_VIOLATION),
        (requests.Timeout("x"), ErrorKind.TRANSIENT_NETWORK),
        (KeyError("price"), ErrorKind.IMPORT_FAILED),
    ],
)
def test_classify_error(error: Exception, kind: ErrorKind):
    assert classify_error(error) == kind
