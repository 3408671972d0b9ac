"""Bounded retry with exponential backoff (no jitter), built on tenacity."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Callable, TypeVar

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.config import ComplianceConfig
from core.errors import ComplianceImportError, TransientNetworkError
from core.structured_logging import emit_json_event

T = TypeVar("T")

_NETWORK_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "network",
    "econnrefused",
    "enotfound",
    "connection refused",
    "name or service not known",
    "temporary failure in name resolution",
)
_NETWORK_ERROR_CODES = {"etimedout", "econnrefused", "enotfound", "econnreset"}


def _always(_: BaseException) -> bool:
    return True


@dataclass(frozen=True, slots=True)
class RetryOptions:
    """Retry schedule: delay(attempt) = min(initial * multiplier**attempt, max)."""

    max_retries: int = ComplianceConfig.RETRY_MAX_RETRIES
    initial_delay: float = ComplianceConfig.RETRY_INITIAL_DELAY_SECONDS
    max_delay: float = ComplianceConfig.RETRY_MAX_DELAY_SECONDS
    backoff_multiplier: float = ComplianceConfig.RETRY_BACKOFF_MULTIPLIER
    retryable: Callable[[BaseException], bool] = field(default=_always)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def wait_strategy(self) -> wait_exponential:
        """Delay after failed attempt n (1-based): min(initial * multiplier**(n-1), max)."""
        return wait_exponential(
            multiplier=self.initial_delay,
            exp_base=self.backoff_multiplier,
            max=self.max_delay,
        )


def _status_code_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_network_error(exc: BaseException) -> bool:
    """True for timeouts, DNS failures, refused connections and upstream 5xx."""
    if isinstance(exc, TransientNetworkError):
        return True
    if isinstance(exc, ComplianceImportError):
        return False
    if isinstance(exc, (requests.Timeout, requests.ConnectionError, TimeoutError, ConnectionError)):
        return True

    status = _status_code_of(exc)
    if status is not None and status >= 500:
        return True

    code = str(getattr(exc, "code", "") or "").lower()
    if code in _NETWORK_ERROR_CODES:
        return True

    message = str(exc).lower()
    return any(marker in message for marker in _NETWORK_MESSAGE_MARKERS)


class RetryExecutor:
    """Run an operation, retrying retryable failures on a fixed backoff schedule."""

    def __init__(
        self,
        sleep_fn: Callable[[float], None] | None = None,
        component: str = "retry",
    ) -> None:
        self._sleep = sleep_fn or time.sleep
        self.component = component

    def _retrying(self, opts: RetryOptions) -> Retrying:
        def _log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            emit_json_event(
                "retry_scheduled",
                component=self.component,
                attempt=retry_state.attempt_number,
                max_retries=opts.max_retries,
                delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error_type=type(error).__name__ if error else None,
                error=str(error) if error else None,
            )

        return Retrying(
            stop=stop_after_attempt(opts.max_retries + 1),
            wait=opts.wait_strategy(),
            retry=retry_if_exception(opts.retryable),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

    def run(self, operation: Callable[[], T], options: RetryOptions | None = None) -> T:
        """
        Call `operation` until it succeeds or retries are exhausted.

        Raises:
            The last error raised by `operation`; immediately when
            `options.retryable(error)` is False.
        """
        opts = options or RetryOptions()
        return self._retrying(opts)(operation)

    def run_network(self, operation: Callable[[], T], options: RetryOptions | None = None) -> T:
        """Retry only network-classified failures; everything else surfaces at once."""
        opts = replace(options or RetryOptions(), retryable=is_network_error)
        return self.run(operation, opts)
