"""JSON-line event logging shared by the compliance importer components."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any


def _render(event: dict[str, Any]) -> str:
    return json.dumps(event, ensure_ascii=True, sort_keys=True, default=str)


def emit_json_event(
    event_type: str,
    *,
    run_id: str | None = None,
    level: str = "info",
    component: str | None = None,
    **payload: Any,
) -> str:
    """Emit one JSON event line to stdout and return the rendered line."""
    event: dict[str, Any] = {
        "event_type": event_type,
        "level": level,
        "timestamp": datetime.now(UTC).isoformat(),
        "run_id": run_id,
    }
    if component:
        event["component"] = component
    event.update(payload)
    line = _render(event)
    print(line)
    return line


def emit_warning(
    event_type: str,
    *,
    component: str,
    run_id: str | None = None,
    error: BaseException | None = None,
    **payload: Any,
) -> str:
    """Emit a warning-level event, flattening an optional exception."""
    if error is not None:
        payload.setdefault("error_type", type(error).__name__)
        payload.setdefault("error", str(error))
    return emit_json_event(
        event_type,
        run_id=run_id,
        level="warning",
        component=component,
        **payload,
    )
