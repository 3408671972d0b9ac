"""
Compliance configuration for the product importer.

Two layers:
- ComplianceConfig: immutable constants (timeouts, batch limits, field
  blocklist). These are not read from the environment.
- ComplianceSettings: deployment switches read from the environment once per
  process (compliance mode, data scope, source policy overrides, audit sink).

Design: everything defaults to "safe + slow". Unknown or malformed
environment values fall back to the safe default instead of failing startup.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field


class ComplianceMode(str, Enum):
    """How strictly source policies and robots.txt are enforced."""
    STRICT = "strict"
    PERMISSIVE = "permissive"
    OFF = "off"


class DataScope(str, Enum):
    """How much product data may be created from external sources."""
    MINIMAL = "minimal"  # Analyze-only: creation path disabled
    FULL = "full"


class SourcePolicyMode(str, Enum):
    """Global source policy switch."""
    DENY_BY_DEFAULT = "deny_by_default"
    ALLOW_ALL = "allow_all"  # Escape hatch: bypasses every host policy


class ComplianceConfig:
    """
    Immutable compliance constants.

    Values mirror what the import path needs at fetch time; change them only
    together with the tests that pin them.
    """

    # ========================================================================
    # Robots.txt
    # ========================================================================

    ROBOTS_FETCH_TIMEOUT_SECONDS: float = 8.0
    """Timeout for a single robots.txt GET."""

    ROBOTS_CACHE_TTL_SECONDS: int = 24 * 3600
    """Parsed rule sets are cached per host for this long."""

    ROBOTS_CACHE_KEY_PREFIX: str = "compliance:robots:"
    """Cache key prefix; the hostname is appended."""

    ROBOTS_ACCEPT_HEADER: str = "text/plain,*/*"

    DEFAULT_USER_AGENT: str = "ComplianceImporter/1.0"
    """Identifying User-Agent (never a disguised browser string)."""

    # ========================================================================
    # Batch import
    # ========================================================================

    BATCH_MAX_CONCURRENT: int = 3
    """Items dispatched together in one window."""

    BATCH_WINDOW_PAUSE_SECONDS: float = 0.5
    """Pause between windows so upstream sources are not burst."""

    BATCH_ITEM_MAX_RETRIES: int = 2
    BATCH_ITEM_INITIAL_DELAY_SECONDS: float = 0.5

    # ========================================================================
    # Retry defaults
    # ========================================================================

    RETRY_MAX_RETRIES: int = 3
    RETRY_INITIAL_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 10.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0

    # ========================================================================
    # Downstream revalidation
    # ========================================================================

    REVALIDATION_TIMEOUT_SECONDS: float = 5.0
    REVALIDATION_PATH: str = "/products"
    REVALIDATION_ENDPOINT: str = "/api/revalidate"

    # ========================================================================
    # Data minimization
    # ========================================================================

    FORBIDDEN_PRODUCT_FIELDS: tuple[str, ...] = (
        "images",
        "description",
        "reviews",
        "review",
        "seller",
        "sellerEmail",
        "email",
        "phone",
        "geolocation",
        "location",
        "address",
        "user",
        "profile",
    )
    """Keys (case-insensitive) that reject a raw product record outright."""

    AUDIT_RETENTION_MONTHS: int = 12

    @classmethod
    def validate(cls) -> None:
        """
        Validate constants at startup.

        Raises:
            AssertionError: If any constraint is violated.
        """
        assert cls.ROBOTS_FETCH_TIMEOUT_SECONDS > 0, "ROBOTS_FETCH_TIMEOUT_SECONDS must be > 0"
        assert cls.ROBOTS_CACHE_TTL_SECONDS > 0, "ROBOTS_CACHE_TTL_SECONDS must be > 0"
        assert cls.BATCH_MAX_CONCURRENT >= 1, "BATCH_MAX_CONCURRENT must be ≥1"
        assert cls.BATCH_WINDOW_PAUSE_SECONDS >= 0, "BATCH_WINDOW_PAUSE_SECONDS must be ≥0"
        assert cls.BATCH_ITEM_MAX_RETRIES >= 0, "BATCH_ITEM_MAX_RETRIES must be ≥0"
        assert cls.RETRY_BACKOFF_MULTIPLIER >= 1, "RETRY_BACKOFF_MULTIPLIER must be ≥1"
        assert (
            cls.RETRY_MAX_DELAY_SECONDS >= cls.RETRY_INITIAL_DELAY_SECONDS
        ), "RETRY_MAX_DELAY_SECONDS must be ≥ RETRY_INITIAL_DELAY_SECONDS"
        assert cls.REVALIDATION_TIMEOUT_SECONDS > 0, "REVALIDATION_TIMEOUT_SECONDS must be > 0"
        assert cls.FORBIDDEN_PRODUCT_FIELDS, "FORBIDDEN_PRODUCT_FIELDS must not be empty"


# Validate at module import time
ComplianceConfig.validate()


def _read_choice(raw: str | None, enum_cls: type[Enum], default: Enum) -> Enum:
    value = (raw or "").strip().lower()
    for member in enum_cls:
        if member.value == value:
            return member
    return default


def _read_bool(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() == "true"


def _read_positive_int(raw: str | None, default: int) -> int:
    try:
        value = int((raw or "").strip())
    except ValueError:
        return default
    return value if value > 0 else default


class ComplianceSettings(BaseModel):
    """Deployment switches resolved from the environment."""

    model_config = ConfigDict(frozen=True)

    compliance_mode: ComplianceMode = ComplianceMode.STRICT
    data_scope: DataScope = DataScope.MINIMAL
    source_policy_mode: SourcePolicyMode = SourcePolicyMode.DENY_BY_DEFAULT
    source_policies_json: str | None = None
    user_agent: str = ComplianceConfig.DEFAULT_USER_AGENT
    robots_enabled: bool = True
    robots_cache_ttl_seconds: int = Field(default=ComplianceConfig.ROBOTS_CACHE_TTL_SECONDS, gt=0)
    audit_enabled: bool = False
    audit_db_path: str = "compliance.db"
    revalidate_base_url: str = "http://localhost:3000"
    revalidate_secret: str | None = None
    admin_token: str | None = None

    @property
    def creation_blocked(self) -> bool:
        """True when the deployment only allows analyze (no product creation)."""
        return self.compliance_mode != ComplianceMode.OFF and self.data_scope == DataScope.MINIMAL

    @property
    def images_allowed(self) -> bool:
        return self.compliance_mode == ComplianceMode.OFF

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ComplianceSettings":
        """Build settings from environment variables (defaults are the safe choice)."""
        env = os.environ if environ is None else environ
        user_agent = (env.get("COMPLIANCE_USER_AGENT") or "").strip()
        return cls(
            compliance_mode=_read_choice(
                env.get("COMPLIANCE_MODE"), ComplianceMode, ComplianceMode.STRICT
            ),
            data_scope=_read_choice(env.get("COMPLIANCE_DATA_SCOPE"), DataScope, DataScope.MINIMAL),
            source_policy_mode=_read_choice(
                env.get("SOURCE_POLICY_MODE"),
                SourcePolicyMode,
                SourcePolicyMode.DENY_BY_DEFAULT,
            ),
            source_policies_json=env.get("SOURCE_POLICIES_JSON") or None,
            user_agent=user_agent or ComplianceConfig.DEFAULT_USER_AGENT,
            robots_enabled=_read_bool(env.get("COMPLIANCE_ROBOTS_ENABLED"), True),
            robots_cache_ttl_seconds=_read_positive_int(
                env.get("COMPLIANCE_ROBOTS_CACHE_TTL"),
                ComplianceConfig.ROBOTS_CACHE_TTL_SECONDS,
            ),
            audit_enabled=_read_bool(env.get("COMPLIANCE_DB_ENABLED"), False),
            audit_db_path=(env.get("COMPLIANCE_DB_PATH") or "compliance.db").strip(),
            revalidate_base_url=(
                env.get("REVALIDATE_BASE_URL") or "http://localhost:3000"
            ).strip().rstrip("/"),
            revalidate_secret=env.get("REVALIDATE_SECRET") or None,
            admin_token=env.get("ADMIN_TOKEN") or None,
        )
