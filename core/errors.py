"""Error taxonomy for the compliance-gated import path."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Why did one batch item fail?"""
    POLICY_DENIED = "policy_denied"  # Source policy forbids HTML retrieval
    ROBOTS_DENIED = "robots_denied"  # robots.txt disallows, or fail-closed check
    WHITELIST_VIOLATION = "whitelist_violation"  # Forbidden field or schema mismatch
    TRANSIENT_NETWORK = "transient_network"  # Retried network failure
    SINK_FAILURE = "sink_failure"  # Audit store / cache / revalidation
    IMPORT_FAILED = "import_failed"  # Anything else raised by the import operation


class ComplianceImportError(Exception):
    """Base class for classified import failures."""

    kind: ErrorKind = ErrorKind.IMPORT_FAILED

    def __init__(self, message: str, *, host: str | None = None) -> None:
        super().__init__(message)
        self.host = host


class PolicyDeniedError(ComplianceImportError):
    """Raised when the resolved source policy forbids HTML retrieval."""

    kind = ErrorKind.POLICY_DENIED


class RobotsDeniedError(ComplianceImportError):
    """Raised when robots.txt (or a fail-closed robots check) blocks a URL."""

    kind = ErrorKind.ROBOTS_DENIED

    def __init__(self, message: str, *, host: str | None = None, reason: str | None = None) -> None:
        super().__init__(message, host=host)
        self.reason = reason


class WhitelistViolationError(ComplianceImportError):
    """Raised when a product record fails data-minimization checks."""

    kind = ErrorKind.WHITELIST_VIOLATION


class ForbiddenFieldError(WhitelistViolationError):
    """A privacy-sensitive or out-of-scope field was present in the record."""

    def __init__(self, field_name: str) -> None:
        super().__init__(f"Forbidden field detected: {field_name}")
        self.field_name = field_name


class WhitelistSchemaError(WhitelistViolationError):
    """The record does not match the closed product schema."""


class TransientNetworkError(ComplianceImportError):
    """A network failure worth retrying (timeouts, DNS, refused, upstream 5xx)."""

    kind = ErrorKind.TRANSIENT_NETWORK

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception to its ErrorKind."""
    if isinstance(exc, ComplianceImportError):
        return exc.kind
    # Local import: retry depends on this module.
    from fetcher.retry import is_network_error

    if is_network_error(exc):
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.IMPORT_FAILED
