"""Robots.txt validator with shared TTL cache and explicit failure semantics.

Failure policy:
- robots.txt answering >= 400 is treated as absent: allowed (no_robots)
- network errors fail closed: denied (fetch_error)
- unparseable bodies fail closed: denied (parse_error)
- cache read/write failures are logged and never change the decision
"""

from __future__ import annotations

from typing import Any, Iterable
from urllib.parse import ParseResult, urlparse

import requests

from core.config import ComplianceConfig
from core.errors import ErrorKind
from core.models import RobotsCacheStatus, RobotsCheckResult, RobotsReason, RobotsRule
from core.structured_logging import emit_warning
from storage.cache import InMemoryTTLCache, KeyValueCache


def robots_cache_key(host: str) -> str:
    """Cache key for the parsed rule set of one host."""
    # `host` keeps an explicit port (`example.com:8080`): rules differ per origin.
    return f"{ComplianceConfig.ROBOTS_CACHE_KEY_PREFIX}{host}"


def _host_with_port(parsed: ParseResult) -> str:
    return f"{parsed.hostname}:{parsed.port}" if parsed.port else parsed.hostname or ""


def _robots_url(parsed: ParseResult) -> str:
    scheme = (parsed.scheme or "https").lower()
    return f"{scheme}://{_host_with_port(parsed)}/robots.txt"


def _normalize_path(path: str) -> str:
    return path if path.startswith("/") else f"/{path}"


def path_matches(rule_path: str, target_path: str) -> bool:
    """Plain prefix match (no `*` / `$` extensions)."""
    return _normalize_path(target_path).startswith(_normalize_path(rule_path))


def parse_robots_txt(content: str) -> list[RobotsRule]:
    """
    Extract ordered Allow/Disallow rules from `User-agent: *` blocks.

    Directives under any other user-agent are discarded; an empty
    `Disallow:` or `Allow:` value is ignored (empty Disallow allows all).
    """
    rules: list[RobotsRule] = []
    applies = False

    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue

        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            applies = value == "*"
            continue

        if not applies or not value:
            continue

        if key == "disallow":
            rules.append(RobotsRule(allow=False, path=value))
        elif key == "allow":
            rules.append(RobotsRule(allow=True, path=value))

    return rules


def decide_allowed(rules: Iterable[RobotsRule], target_path: str) -> bool:
    """
    Longest matching rule path wins; no match means allowed.

    Allow and Disallow compete on path length only. On an exact length tie
    the rule seen first is kept.
    """
    best: RobotsRule | None = None
    for rule in rules:
        if not path_matches(rule.path, target_path):
            continue
        if best is None or len(_normalize_path(rule.path)) > len(_normalize_path(best.path)):
            best = rule
    if best is None:
        return True
    return best.allow


def _rules_to_cache(rules: list[RobotsRule]) -> dict[str, Any]:
    return {"rules": [rule.model_dump() for rule in rules]}


def _rules_from_cache(cached: Any) -> list[RobotsRule] | None:
    if not isinstance(cached, dict) or not isinstance(cached.get("rules"), list):
        return None
    return [RobotsRule.model_validate(item) for item in cached["rules"]]


class RobotsValidator:
    """Evaluate a host's robots.txt for a target URL."""

    def __init__(
        self,
        cache: KeyValueCache | None = None,
        session: requests.Session | None = None,
        user_agent: str = ComplianceConfig.DEFAULT_USER_AGENT,
        ttl_seconds: int = ComplianceConfig.ROBOTS_CACHE_TTL_SECONDS,
        enabled: bool = True,
        timeout_seconds: float = ComplianceConfig.ROBOTS_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize cache/session collaborators and fetch policy."""
        self.cache = cache if cache is not None else InMemoryTTLCache()
        self._session = session or requests.Session()
        self.user_agent = user_agent.strip() or ComplianceConfig.DEFAULT_USER_AGENT
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds

    def can_fetch(self, url: str) -> RobotsCheckResult:
        """Return the robots decision for `url`."""
        parsed = urlparse(url)
        hostname = parsed.hostname or ""
        if not self.enabled:
            return RobotsCheckResult(
                allowed=True,
                reason=RobotsReason.ALLOWED,
                cache_status=RobotsCacheStatus.DISABLED,
                robots_url=_robots_url(parsed) if hostname else "",
            )
        if not hostname:
            return RobotsCheckResult(
                allowed=False,
                reason=RobotsReason.FETCH_ERROR,
                cache_status=RobotsCacheStatus.ERROR,
                robots_url="",
            )

        host = _host_with_port(parsed)
        robots_url = _robots_url(parsed)
        target_path = parsed.path or "/"

        key = robots_cache_key(host)
        try:
            cached_rules = _rules_from_cache(self.cache.get(key))
        except Exception as exc:
            emit_warning(
                "robots_cache_read_failed",
                component="robots",
                host=host,
                error_kind=ErrorKind.SINK_FAILURE.value,
                error=exc,
            )
            cached_rules = None

        if cached_rules is not None:
            return self._decision(cached_rules, target_path, RobotsCacheStatus.HIT, robots_url)

        try:
            response = self._session.get(
                robots_url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": ComplianceConfig.ROBOTS_ACCEPT_HEADER,
                    "DNT": "1",
                },
                timeout=self.timeout_seconds,
                allow_redirects=True,
            )
        except (requests.RequestException, OSError):
            return RobotsCheckResult(
                allowed=False,
                reason=RobotsReason.FETCH_ERROR,
                cache_status=RobotsCacheStatus.ERROR,
                robots_url=robots_url,
            )

        if response.status_code >= 400:
            return RobotsCheckResult(
                allowed=True,
                reason=RobotsReason.NO_ROBOTS,
                cache_status=RobotsCacheStatus.MISS,
                robots_url=robots_url,
            )

        try:
            rules = parse_robots_txt(response.text or "")
        except Exception:
            return RobotsCheckResult(
                allowed=False,
                reason=RobotsReason.PARSE_ERROR,
                cache_status=RobotsCacheStatus.MISS,
                robots_url=robots_url,
            )

        try:
            self.cache.set(key, _rules_to_cache(rules), self.ttl_seconds)
        except Exception as exc:
            emit_warning(
                "robots_cache_write_failed",
                component="robots",
                host=host,
                error_kind=ErrorKind.SINK_FAILURE.value,
                error=exc,
            )

        return self._decision(rules, target_path, RobotsCacheStatus.MISS, robots_url)

    @staticmethod
    def _decision(
        rules: list[RobotsRule],
        target_path: str,
        cache_status: RobotsCacheStatus,
        robots_url: str,
    ) -> RobotsCheckResult:
        allowed = decide_allowed(rules, target_path)
        return RobotsCheckResult(
            allowed=allowed,
            reason=RobotsReason.ALLOWED if allowed else RobotsReason.DISALLOWED,
            cache_status=cache_status,
            robots_url=robots_url,
        )
