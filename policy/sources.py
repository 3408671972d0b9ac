"""
Per-source retrieval policies ("no scraping by default").

Resolution layers, first match wins:
1. SOURCE_POLICY_MODE=allow_all: one permissive policy for every host
2. runtime overrides (SOURCE_POLICIES_JSON), in list order
3. built-in policies below, in list order
4. default deny (terms unknown, no HTML crawl)
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Iterable, Sequence
from urllib.parse import urlparse

import jsonschema
from jsonschema.exceptions import best_match

from core.config import ComplianceSettings, SourcePolicyMode
from core.models import CguStatus, SourcePolicy
from core.structured_logging import emit_warning

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "source_policy.schema.json"
SOURCE_POLICY_SCHEMA = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
_SCHEMA_VALIDATOR = jsonschema.Draft202012Validator(SOURCE_POLICY_SCHEMA)

DEFAULT_POLICY = SourcePolicy(
    host_pattern="*",
    cgu_status=CguStatus.UNKNOWN,
    allow_html_crawl=False,
    api_only=False,
    notes="Default deny for HTML crawl (terms of use unknown)",
)

ALLOW_ALL_POLICY = SourcePolicy(
    host_pattern="*",
    cgu_status=CguStatus.ALLOWED,
    allow_html_crawl=True,
    api_only=False,
    notes="ALLOW ALL (runtime override): bypasses source terms-of-use gating",
)


def _marketplace(pattern: str, cgu_url: str, notes: str) -> SourcePolicy:
    return SourcePolicy(
        host_pattern=pattern,
        cgu_url=cgu_url,
        cgu_status=CguStatus.UNKNOWN,
        allow_html_crawl=False,
        api_only=True,
        notes=notes,
    )


BASE_POLICIES: tuple[SourcePolicy, ...] = (
    _marketplace(
        ".aliexpress.com",
        "https://www.aliexpress.com/p/legal/terms-of-use.html",
        "Prefer Affiliate API; deny HTML crawl by default.",
    ),
    _marketplace(
        "*.amazon.*",
        "https://www.amazon.com/gp/help/customer/display.html?nodeId=508088",
        "Prefer official/affiliate APIs; deny HTML crawl by default.",
    ),
    _marketplace(
        "amazon.*",
        "https://www.amazon.com/gp/help/customer/display.html?nodeId=508088",
        "Bare amazon.<tld> hosts.",
    ),
    _marketplace(
        "*.ebay.*",
        "https://www.ebay.com/help/policies/member-behaviour-policies/user-agreement?id=4259",
        "Prefer eBay APIs; deny HTML crawl by default.",
    ),
    _marketplace(
        "ebay.*",
        "https://www.ebay.com/help/policies/member-behaviour-policies/user-agreement?id=4259",
        "Bare ebay.<tld> hosts.",
    ),
    SourcePolicy(
        host_pattern=".etsy.com",
        cgu_url="https://www.etsy.com/legal/terms-of-use",
        notes="Deny HTML crawl by default until terms validated.",
    ),
    SourcePolicy(
        host_pattern=".myshopify.com",
        notes="Shopify stores are per-merchant; default deny unless you have permission.",
    ),
    SourcePolicy(
        host_pattern=".shopify.com",
        cgu_url="https://www.shopify.com/legal/terms",
        notes="Default deny unless you have permission (per-store terms may apply).",
    ),
    SourcePolicy(
        host_pattern="www.cdiscount.com",
        cgu_url="https://www.cdiscount.com/informations/conditions-generales-de-vente.html",
        notes="Default deny until terms validated.",
    ),
    SourcePolicy(
        host_pattern="www.fnac.com",
        cgu_url="https://www.fnac.com/conditions-generales-de-vente",
        notes="Default deny until terms validated.",
    ),
)


def extract_hostname(url_or_host: str) -> str:
    """Return the lowercase hostname of a URL, or the host string itself."""
    value = (url_or_host or "").strip()
    if "://" in value:
        return (urlparse(value).hostname or "").lower()
    host = value.split("/", 1)[0]
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.lower()


def matches_host(hostname: str, pattern: str) -> bool:
    """Case-insensitive host match for the four supported pattern forms."""
    host = hostname.lower()
    pat = pattern.lower().strip()
    if not pat:
        return False
    if pat == "*":
        return True
    if pat.startswith("."):
        return host.endswith(pat) or host == pat[1:]
    if pat.endswith("."):
        return host.startswith(pat)
    if "*" in pat:
        regex = ".*".join(re.escape(part) for part in pat.split("*"))
        return re.fullmatch(regex, host, flags=re.IGNORECASE) is not None
    return host == pat


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _normalize_override(entry: dict[str, Any]) -> dict[str, Any]:
    status = entry.get("cguStatus")
    if status not in {member.value for member in CguStatus}:
        status = CguStatus.UNKNOWN.value
    allow_html_crawl = _coerce_bool(entry.get("allowHtmlCrawl"))
    if status == CguStatus.UNKNOWN.value:
        # Unreviewed terms never grant HTML crawling.
        allow_html_crawl = False
    return {
        "hostPattern": str(entry.get("hostPattern") or "").strip(),
        "cguUrl": str(entry["cguUrl"]) if entry.get("cguUrl") else None,
        "cguStatus": status,
        "allowHtmlCrawl": allow_html_crawl,
        "apiOnly": _coerce_bool(entry.get("apiOnly")),
        "notes": str(entry["notes"]) if entry.get("notes") else None,
    }


def _discard(index: int | None, reason: str) -> None:
    emit_warning(
        "source_policy_override_discarded",
        component="policy",
        index=index,
        reason=reason,
    )


def load_override_policies(raw: str | Sequence[Any] | None) -> tuple[SourcePolicy, ...]:
    """
    Parse runtime override policies.

    Never raises: undecodable JSON, a non-list document, non-object entries
    and entries with an empty hostPattern are dropped with a warning event.
    """
    if raw is None or raw == "":
        return ()

    data: Any = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except ValueError as exc:
            _discard(None, f"invalid JSON: {exc}")
            return ()

    if not isinstance(data, list):
        _discard(None, "override document must be a JSON list")
        return ()

    policies: list[SourcePolicy] = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            _discard(index, "entry is not an object")
            continue
        normalized = _normalize_override(entry)
        error = best_match(_SCHEMA_VALIDATOR.iter_errors(normalized))
        if error is not None:
            _discard(index, error.message)
            continue
        policies.append(SourcePolicy.model_validate(normalized))
    return tuple(policies)


class SourcePolicyResolver:
    """Pure host -> SourcePolicy resolution over two immutable layers."""

    def __init__(
        self,
        mode: SourcePolicyMode = SourcePolicyMode.DENY_BY_DEFAULT,
        overrides: Iterable[SourcePolicy] = (),
        base_policies: Iterable[SourcePolicy] = BASE_POLICIES,
    ) -> None:
        self.mode = mode
        self.overrides = tuple(overrides)
        self.base_policies = tuple(base_policies)

    @classmethod
    def from_settings(cls, settings: ComplianceSettings) -> "SourcePolicyResolver":
        """Build a resolver from environment-derived settings."""
        return cls(
            mode=settings.source_policy_mode,
            overrides=load_override_policies(settings.source_policies_json),
        )

    def resolve(self, url_or_host: str) -> SourcePolicy:
        """Return the single policy that applies to a URL or hostname."""
        if self.mode == SourcePolicyMode.ALLOW_ALL:
            emit_warning(
                "source_policy_allow_all",
                component="policy",
                target=url_or_host,
                message="SOURCE_POLICY_MODE=allow_all bypasses every source policy",
            )
            return ALLOW_ALL_POLICY

        hostname = extract_hostname(url_or_host)
        if not hostname:
            return DEFAULT_POLICY

        for policy in self.overrides:
            if matches_host(hostname, policy.host_pattern):
                return policy
        for policy in self.base_policies:
            if matches_host(hostname, policy.host_pattern):
                return policy
        return DEFAULT_POLICY
