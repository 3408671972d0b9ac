"""Per-URL compliance gate: source policy, then robots.txt, with audit events."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse
from uuid import uuid4

import requests

from compliance.audit import ComplianceLogger
from core.config import ComplianceMode, ComplianceSettings
from core.errors import PolicyDeniedError, RobotsDeniedError
from core.models import (
    ComplianceChecks,
    ComplianceEventType,
    RobotsCheckResult,
    SourcePolicy,
)
from fetcher.robots import RobotsValidator
from policy.sources import SourcePolicyResolver
from storage.cache import KeyValueCache


@dataclass(slots=True)
class GateDecision:
    """Outcome of a passed gate check; carried into success/error audit events."""

    url: str
    host: str
    policy: SourcePolicy
    checks: ComplianceChecks
    request_id: str
    robots: RobotsCheckResult | None = None
    enforced: bool = True


class ComplianceGate:
    """
    Decide whether one URL may be retrieved as HTML.

    With compliance mode "off" nothing is consulted. Otherwise (strict and
    permissive enforce the same gate):
    - api_only policy -> crawl_blocked_policy, PolicyDeniedError
    - terms not allowed or no HTML crawl grant -> crawl_blocked_policy
    - robots check -> crawl_attempt; denied -> crawl_blocked_robots, RobotsDeniedError
    """

    def __init__(
        self,
        resolver: SourcePolicyResolver,
        robots_validator: RobotsValidator,
        audit_logger: ComplianceLogger,
        settings: ComplianceSettings,
    ) -> None:
        self.resolver = resolver
        self.robots_validator = robots_validator
        self.audit_logger = audit_logger
        self.settings = settings

    @classmethod
    def from_settings(
        cls,
        settings: ComplianceSettings,
        cache: KeyValueCache | None = None,
        session: requests.Session | None = None,
        audit_logger: ComplianceLogger | None = None,
    ) -> "ComplianceGate":
        """Wire resolver, robots validator and audit logger from settings."""
        return cls(
            resolver=SourcePolicyResolver.from_settings(settings),
            robots_validator=RobotsValidator(
                cache=cache,
                session=session,
                user_agent=settings.user_agent,
                ttl_seconds=settings.robots_cache_ttl_seconds,
                enabled=settings.robots_enabled,
            ),
            audit_logger=audit_logger or ComplianceLogger.from_settings(settings),
            settings=settings,
        )

    def _base_checks(self, policy: SourcePolicy) -> ComplianceChecks:
        return ComplianceChecks(
            compliance_mode=self.settings.compliance_mode.value,
            data_scope=self.settings.data_scope.value,
            policy=policy.summary(),
        )

    def _audit(
        self,
        event_type: ComplianceEventType,
        decision: GateDecision,
        **fields: object,
    ) -> None:
        checks = decision.checks
        if decision.robots is not None:
            checks = checks.model_copy(update={"robots": decision.robots.summary()})
        # Validation happens inside log(), which never raises.
        self.audit_logger.log(
            {
                "event_type": event_type,
                "source_host": decision.host,
                "user_agent": self.settings.user_agent,
                "compliance_checks": checks,
                "request_id": decision.request_id,
                **fields,
            }
        )

    def check(self, url: str, request_id: str | None = None) -> GateDecision:
        """
        Return a GateDecision when retrieval is permitted.

        Raises:
            PolicyDeniedError: the source policy forbids HTML retrieval
            RobotsDeniedError: robots.txt disallows, or the check failed closed
        """
        host = (urlparse(url).hostname or "").lower()
        policy = self.resolver.resolve(url)
        decision = GateDecision(
            url=url,
            host=host,
            policy=policy,
            checks=self._base_checks(policy),
            request_id=request_id or str(uuid4()),
        )

        if self.settings.compliance_mode == ComplianceMode.OFF:
            decision.enforced = False
            return decision

        if policy.api_only:
            message = "Policy apiOnly: HTML crawl blocked (use the source's official API)"
            self._audit(ComplianceEventType.CRAWL_BLOCKED_POLICY, decision, error_message=message)
            raise PolicyDeniedError(f"Source policy for {host}: {message}", host=host)

        if not policy.permits_html_crawl:
            message = "Policy denies HTML crawl (terms not allowed or allowHtmlCrawl=false)"
            self._audit(ComplianceEventType.CRAWL_BLOCKED_POLICY, decision, error_message=message)
            raise PolicyDeniedError(f"Source policy for {host}: {message}", host=host)

        robots = self.robots_validator.can_fetch(url)
        decision.robots = robots
        self._audit(
            ComplianceEventType.CRAWL_ATTEMPT,
            decision,
            cache_status=robots.cache_status.value,
        )
        if not robots.allowed:
            message = f"robots.txt disallows: {robots.reason.value}"
            self._audit(
                ComplianceEventType.CRAWL_BLOCKED_ROBOTS,
                decision,
                cache_status=robots.cache_status.value,
                error_message=message,
            )
            raise RobotsDeniedError(
                f"robots.txt forbids retrieving {url} ({robots.reason.value})",
                host=host,
                reason=robots.reason.value,
            )

        return decision

    def record_success(
        self,
        decision: GateDecision,
        *,
        duration_ms: int | None = None,
        http_status: int | None = None,
        product_count: int = 1,
    ) -> None:
        self._audit(
            ComplianceEventType.CRAWL_SUCCESS,
            decision,
            duration_ms=duration_ms,
            http_status=http_status,
            product_count=product_count,
        )

    def record_error(
        self,
        decision: GateDecision,
        error: BaseException,
        *,
        duration_ms: int | None = None,
    ) -> None:
        status = getattr(getattr(error, "response", None), "status_code", None)
        self._audit(
            ComplianceEventType.CRAWL_ERROR,
            decision,
            duration_ms=duration_ms,
            http_status=status if isinstance(status, int) else None,
            error_message=str(error) or type(error).__name__,
        )
