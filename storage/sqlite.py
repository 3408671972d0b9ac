"""SQLite persistence for the compliance audit trail (append-only)."""

from __future__ import annotations

import calendar
import json
import sqlite3
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterator

from core.config import ComplianceConfig
from core.models import INCIDENT_EVENT_TYPES, ComplianceAuditRecord
from core.structured_logging import emit_json_event

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def _utc_now() -> datetime:
    """Return timezone-aware UTC timestamp."""
    return datetime.now(UTC)


def _subtract_months(value: datetime, months: int) -> datetime:
    """Calendar month subtraction, clamping the day to the target month."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _decode_checks(raw: str | None) -> dict[str, Any]:
    """Parse stored compliance_checks JSON, tolerating corrupt rows."""
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        emit_json_event(
            event_type="storage_checks_json_error",
            level="warning",
            component="storage",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return {}
    return payload if isinstance(payload, dict) else {}


class SQLiteAuditStore:
    """Persist compliance audit rows to SQLite."""

    def __init__(
        self,
        db_path: str | Path,
        initialize: bool = True,
        clock_fn: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize store and optionally apply the schema."""
        self.db_path = Path(db_path)
        self._clock = clock_fn or _utc_now
        if initialize:
            self.initialize_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self.db_path)
        connection.row_factory = sqlite3.Row
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def initialize_schema(self) -> None:
        """Apply the migration (idempotent: every statement is IF NOT EXISTS)."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        sql = (MIGRATIONS_DIR / "0001_init.sql").read_text(encoding="utf-8")
        with self._connect() as connection:
            connection.executescript(sql)

    def insert(self, record: ComplianceAuditRecord) -> None:
        """Append one audit row."""
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO compliance_audit (
                    id, timestamp, event_type, source_host, product_count,
                    http_status, duration_ms, user_agent, cache_status,
                    compliance_checks, error_message, request_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.timestamp.astimezone(UTC).isoformat(),
                    record.event_type.value,
                    record.source_host,
                    record.product_count,
                    record.http_status,
                    record.duration_ms,
                    record.user_agent,
                    record.cache_status,
                    json.dumps(record.compliance_checks, sort_keys=True, ensure_ascii=True),
                    record.error_message,
                    record.request_id,
                ),
            )

    def _cutoff(self, hours: int) -> str:
        return (self._clock() - timedelta(hours=hours)).astimezone(UTC).isoformat()

    def event_metrics(self, hours: int = 24) -> list[dict[str, Any]]:
        """Per event type: event count, HTTP errors (>= 400), mean duration."""
        with self._connect() as connection:
            rows = connection.execute(
                """
                SELECT
                    event_type,
                    COUNT(*) AS events,
                    SUM(CASE WHEN http_status >= 400 THEN 1 ELSE 0 END) AS errors,
                    AVG(duration_ms) AS avg_duration_ms
                FROM compliance_audit
                WHERE timestamp >= ?
                GROUP BY event_type
                ORDER BY events DESC, event_type
                """,
                (self._cutoff(hours),),
            ).fetchall()
        return [
            {
                "event_type": str(row["event_type"]),
                "events": int(row["events"]),
                "errors": int(row["errors"] or 0),
                "avg_duration_ms": row["avg_duration_ms"],
            }
            for row in rows
        ]

    def list_incidents(self, hours: int = 24, limit: int = 50) -> list[dict[str, Any]]:
        """Blocked and error events, newest first."""
        event_types = [event.value for event in INCIDENT_EVENT_TYPES]
        placeholders = ", ".join("?" for _ in event_types)
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT timestamp, event_type, source_host, http_status, error_message,
                       cache_status, compliance_checks, request_id
                FROM compliance_audit
                WHERE timestamp >= ? AND event_type IN ({placeholders})
                ORDER BY timestamp DESC
                LIMIT ?
                """,
                (self._cutoff(hours), *event_types, limit),
            ).fetchall()
        incidents: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            item["compliance_checks"] = _decode_checks(row["compliance_checks"])
            incidents.append(item)
        return incidents

    def count(self) -> int:
        with self._connect() as connection:
            row = connection.execute("SELECT COUNT(*) AS total FROM compliance_audit").fetchone()
        return int(row["total"])

    def cleanup(self, retention_months: int = ComplianceConfig.AUDIT_RETENTION_MONTHS) -> int:
        """Delete rows older than `retention_months`; return the deleted count."""
        if retention_months < 1:
            raise ValueError("retention_months must be >= 1")
        cutoff = _subtract_months(self._clock(), retention_months).astimezone(UTC).isoformat()
        with self._connect() as connection:
            cursor = connection.execute(
                "DELETE FROM compliance_audit WHERE timestamp < ?",
                (cutoff,),
            )
            deleted = cursor.rowcount
        emit_json_event(
            event_type="storage_audit_cleanup",
            component="storage",
            retention_months=retention_months,
            deleted_rows=deleted,
        )
        return deleted
