"""Best-effort compliance audit logger.

Audit is an observability side channel, not a gate: log() never raises and
is a no-op when the sink is disabled.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Mapping, Protocol

from core.config import ComplianceSettings
from core.errors import ErrorKind
from core.models import ComplianceAuditLogInput, ComplianceAuditRecord
from core.structured_logging import emit_warning


class AuditSink(Protocol):
    """Append-only store for audit rows."""

    def insert(self, record: ComplianceAuditRecord) -> None:
        ...


class ComplianceLogger:
    """Write one audit row per compliance decision, swallowing sink failures."""

    def __init__(
        self,
        store: AuditSink | None = None,
        enabled: bool | None = None,
        store_factory: Callable[[], AuditSink] | None = None,
    ) -> None:
        """
        Args:
            store: ready-to-use sink
            enabled: defaults to True when a store or factory is given
            store_factory: builds the sink on first use (connection errors
                then surface inside log(), where they are swallowed)
        """
        self._store = store
        self._store_factory = store_factory
        self._lock = threading.Lock()
        if enabled is None:
            enabled = store is not None or store_factory is not None
        self.enabled = enabled

    @classmethod
    def from_settings(cls, settings: ComplianceSettings) -> "ComplianceLogger":
        """SQLite-backed logger when COMPLIANCE_DB_ENABLED=true, else disabled."""
        if not settings.audit_enabled:
            return cls(enabled=False)

        from storage.sqlite import SQLiteAuditStore

        db_path = settings.audit_db_path
        return cls(store_factory=lambda: SQLiteAuditStore(db_path), enabled=True)

    def _get_store(self) -> AuditSink:
        if self._store is not None:
            return self._store
        if self._store_factory is None:
            raise RuntimeError("Compliance audit sink is not configured")
        with self._lock:
            if self._store is None:
                self._store = self._store_factory()
        return self._store

    def log(self, entry: ComplianceAuditLogInput | Mapping[str, Any]) -> ComplianceAuditRecord | None:
        """
        Record one audit event.

        Returns the stored record, or None when disabled or when the write
        failed (the failure is emitted as a warning event).
        """
        if not self.enabled:
            return None

        event_type: Any = None
        source_host: Any = None
        try:
            if not isinstance(entry, ComplianceAuditLogInput):
                entry = ComplianceAuditLogInput.model_validate(dict(entry))
            event_type = entry.event_type.value
            source_host = entry.source_host
            record = ComplianceAuditRecord.from_input(entry)
            self._get_store().insert(record)
            return record
        except Exception as exc:
            emit_warning(
                "compliance_audit_log_failed",
                component="audit",
                error_kind=ErrorKind.SINK_FAILURE.value,
                audit_event_type=event_type,
                source_host=source_host,
                error=exc,
            )
            return None
