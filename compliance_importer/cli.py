"""Minimal CLI entrypoint for compliance-importer."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Sequence
from uuid import uuid4

import jsonschema

from compliance.whitelist import ProductWhitelist
from core.config import ComplianceConfig, ComplianceSettings
from core.errors import WhitelistViolationError
from core.structured_logging import emit_json_event
from fetcher.robots import RobotsValidator
from policy.sources import SCHEMA_PATH, SourcePolicyResolver
from storage.sqlite import SQLiteAuditStore


def _emit_cli_event(
    event_type: str,
    *,
    run_id: str,
    command: str,
    **payload: Any,
) -> str:
    """Emit one structured CLI event line with standard fields."""
    return emit_json_event(
        event_type=event_type,
        run_id=run_id,
        command=command,
        **payload,
    )


def _validate_schema_file(path: Path) -> None:
    """Validate that a JSON schema file is well-formed and has required top-level keys."""
    data = json.loads(path.read_text(encoding="utf-8"))
    required_keys = {"$schema", "type", "properties", "required"}
    missing = required_keys.difference(data)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ValueError(f"{path.name} missing required schema keys: {missing_str}")
    jsonschema.Draft202012Validator.check_schema(data)


def _cmd_validate_schemas(_: argparse.Namespace) -> int:
    """Validate the source policy override schema."""
    run_id = str(uuid4())
    if not SCHEMA_PATH.exists():
        raise FileNotFoundError(f"Schema file not found: {SCHEMA_PATH}")
    _validate_schema_file(SCHEMA_PATH)
    _emit_cli_event(
        "cli_validate_schemas_completed",
        run_id=run_id,
        command="validate-schemas",
        schema_files=[str(SCHEMA_PATH)],
    )
    return 0


def _cmd_policy(args: argparse.Namespace) -> int:
    """Print the policy that applies to a URL or host."""
    settings = ComplianceSettings.from_env()
    policy = SourcePolicyResolver.from_settings(settings).resolve(args.url)
    _emit_cli_event(
        "cli_policy_completed",
        run_id=str(uuid4()),
        command="policy",
        url=args.url,
        source_policy_mode=settings.source_policy_mode.value,
        policy=policy.summary(),
        permits_html_crawl=policy.permits_html_crawl,
    )
    return 0


def _cmd_robots(args: argparse.Namespace) -> int:
    """Check robots.txt for a URL; exit 1 when retrieval is not allowed."""
    settings = ComplianceSettings.from_env()
    validator = RobotsValidator(
        user_agent=args.user_agent or settings.user_agent,
        enabled=settings.robots_enabled,
    )
    result = validator.can_fetch(args.url)
    _emit_cli_event(
        "cli_robots_completed",
        run_id=str(uuid4()),
        command="robots",
        url=args.url,
        **result.summary(),
    )
    return 0 if result.allowed else 1


def _cmd_whitelist(args: argparse.Namespace) -> int:
    """Run a JSON product record through the whitelist."""
    run_id = str(uuid4())
    record_path = Path(args.record_file)
    if not record_path.exists():
        raise FileNotFoundError(f"Record file not found: {record_path}")

    raw = json.loads(record_path.read_text(encoding="utf-8"))
    try:
        product = ProductWhitelist().enforce(raw)
    except WhitelistViolationError as exc:
        _emit_cli_event(
            "cli_whitelist_completed",
            run_id=run_id,
            command="whitelist",
            accepted=False,
            record_file=str(record_path),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return 1

    _emit_cli_event(
        "cli_whitelist_completed",
        run_id=run_id,
        command="whitelist",
        accepted=True,
        record_file=str(record_path),
        product=product.model_dump(mode="json", by_alias=True),
    )
    return 0


def _open_store(db: str) -> SQLiteAuditStore:
    db_path = Path(db)
    if not db_path.exists():
        raise FileNotFoundError(f"Database file not found: {db_path}")
    return SQLiteAuditStore(db_path, initialize=False)


def _cmd_audit_metrics(args: argparse.Namespace) -> int:
    """Summarize audit events per type over the last N hours."""
    store = _open_store(args.db)
    _emit_cli_event(
        "cli_audit_metrics_completed",
        run_id=str(uuid4()),
        command="audit-metrics",
        db=str(args.db),
        hours=args.hours,
        metrics=store.event_metrics(hours=args.hours),
    )
    return 0


def _cmd_audit_incidents(args: argparse.Namespace) -> int:
    """List blocked and error events over the last N hours."""
    store = _open_store(args.db)
    incidents = store.list_incidents(hours=args.hours, limit=args.limit)
    _emit_cli_event(
        "cli_audit_incidents_completed",
        run_id=str(uuid4()),
        command="audit-incidents",
        db=str(args.db),
        hours=args.hours,
        incident_count=len(incidents),
        incidents=incidents,
    )
    return 0


def _cmd_audit_cleanup(args: argparse.Namespace) -> int:
    """Delete audit rows past the retention window."""
    store = _open_store(args.db)
    deleted = store.cleanup(retention_months=args.months)
    _emit_cli_event(
        "cli_audit_cleanup_completed",
        run_id=str(uuid4()),
        command="audit-cleanup",
        db=str(args.db),
        retention_months=args.months,
        deleted_rows=deleted,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create argument parser for the compliance-importer CLI."""
    parser = argparse.ArgumentParser(
        prog="compliance-importer",
        description="Compliance-gated product import tooling",
    )
    parser.add_argument("--version", action="version", version="compliance-importer 0.1.0")

    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser(
        "validate-schemas",
        help="Validate the source policy override JSON schema",
    )
    validate_parser.set_defaults(func=_cmd_validate_schemas)

    policy_parser = subparsers.add_parser("policy", help="Resolve the source policy for a URL")
    policy_parser.add_argument("url", help="URL or bare hostname")
    policy_parser.set_defaults(func=_cmd_policy)

    robots_parser = subparsers.add_parser("robots", help="Check robots.txt for a URL")
    robots_parser.add_argument("url", help="Absolute URL to check")
    robots_parser.add_argument("--user-agent", help="Override COMPLIANCE_USER_AGENT")
    robots_parser.set_defaults(func=_cmd_robots)

    whitelist_parser = subparsers.add_parser(
        "whitelist",
        help="Validate a JSON product record against the import whitelist",
    )
    whitelist_parser.add_argument("record_file", help="Path to a JSON object file")
    whitelist_parser.set_defaults(func=_cmd_whitelist)

    metrics_parser = subparsers.add_parser("audit-metrics", help="Audit event counts per type")
    metrics_parser.add_argument("--hours", type=int, default=24, help="Look-back window in hours")
    metrics_parser.add_argument("--db", default="compliance.db", help="SQLite DB path")
    metrics_parser.set_defaults(func=_cmd_audit_metrics)

    incidents_parser = subparsers.add_parser("audit-incidents", help="Recent blocked/error events")
    incidents_parser.add_argument("--hours", type=int, default=24, help="Look-back window in hours")
    incidents_parser.add_argument("--limit", type=int, default=50, help="Maximum rows returned")
    incidents_parser.add_argument("--db", default="compliance.db", help="SQLite DB path")
    incidents_parser.set_defaults(func=_cmd_audit_incidents)

    cleanup_parser = subparsers.add_parser("audit-cleanup", help="Apply audit retention")
    cleanup_parser.add_argument(
        "--months",
        type=int,
        default=ComplianceConfig.AUDIT_RETENTION_MONTHS,
        help="Retention window in months",
    )
    cleanup_parser.add_argument("--db", default="compliance.db", help="SQLite DB path")
    cleanup_parser.set_defaults(func=_cmd_audit_cleanup)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Execute CLI and return process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        return int(args.func(args))
    except Exception as exc:
        _emit_cli_event(
            "cli_error",
            run_id=str(uuid4()),
            command=str(getattr(args, "command", "unknown")),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return 1


def cli() -> None:
    """Console-script entrypoint."""
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())
