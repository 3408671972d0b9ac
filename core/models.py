"""
Core Pydantic models for the compliance importer.

Design principles:
- Policies, robots rules and whitelisted products are immutable once built
- The product record is a closed schema: unknown keys are a hard rejection
- Audit entries are append-only; the import path never reads them back
- Wire names (camelCase) are accepted on input, snake_case is used in code
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.errors import ErrorKind


def _utc_now() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Enums
# ============================================================================

class CguStatus(str, Enum):
    """Internal review status of a source's terms of use."""
    ALLOWED = "allowed"
    FORBIDDEN = "forbidden"
    UNKNOWN = "unknown"


class RobotsReason(str, Enum):
    """Why did the robots check decide the way it did?"""
    ALLOWED = "allowed"
    DISALLOWED = "disallowed"
    NO_ROBOTS = "no_robots"  # robots.txt answered >= 400: conventionally permissive
    FETCH_ERROR = "fetch_error"  # Network failure: fail closed
    PARSE_ERROR = "parse_error"  # Unparseable body: fail closed


class RobotsCacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    DISABLED = "disabled"
    ERROR = "error"


class ComplianceEventType(str, Enum):
    """Audit event types written to the compliance store."""
    CRAWL_ATTEMPT = "crawl_attempt"
    CRAWL_BLOCKED_POLICY = "crawl_blocked_policy"
    CRAWL_BLOCKED_ROBOTS = "crawl_blocked_robots"
    CRAWL_SUCCESS = "crawl_success"
    CRAWL_ERROR = "crawl_error"


INCIDENT_EVENT_TYPES = (
    ComplianceEventType.CRAWL_BLOCKED_POLICY,
    ComplianceEventType.CRAWL_BLOCKED_ROBOTS,
    ComplianceEventType.CRAWL_ERROR,
)


# ============================================================================
# Source policy
# ============================================================================

class SourcePolicy(BaseModel):
    """
    Per-host retrieval policy.

    Example:
      host_pattern = ".etsy.com"   # suffix match: etsy.com, www.etsy.com
      cgu_status = "unknown"       # terms not reviewed yet
      allow_html_crawl = False     # so HTML retrieval stays denied
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host_pattern: str = Field(alias="hostPattern")
    cgu_url: Optional[str] = Field(default=None, alias="cguUrl")
    cgu_status: CguStatus = Field(default=CguStatus.UNKNOWN, alias="cguStatus")
    allow_html_crawl: bool = Field(default=False, alias="allowHtmlCrawl")
    api_only: bool = Field(default=False, alias="apiOnly")
    notes: Optional[str] = None

    @property
    def permits_html_crawl(self) -> bool:
        """HTML retrieval needs validated terms AND an explicit crawl grant."""
        return self.cgu_status == CguStatus.ALLOWED and self.allow_html_crawl

    def summary(self) -> Dict[str, Any]:
        """Subset recorded in audit entries."""
        return {
            "hostPattern": self.host_pattern,
            "cguStatus": self.cgu_status.value,
            "allowHtmlCrawl": self.allow_html_crawl,
            "apiOnly": self.api_only,
        }


# ============================================================================
# Robots.txt
# ============================================================================

class RobotsRule(BaseModel):
    """One Allow/Disallow directive from the `User-agent: *` block."""
    model_config = ConfigDict(frozen=True)

    allow: bool
    path: str


class RobotsCheckResult(BaseModel):
    """Decision for one URL; produced fresh on every call."""
    allowed: bool
    reason: RobotsReason
    cache_status: RobotsCacheStatus
    robots_url: str

    def summary(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "cacheStatus": self.cache_status.value,
            "robotsUrl": self.robots_url,
        }


# ============================================================================
# Whitelisted product
# ============================================================================

class AllowedImportedProduct(BaseModel):
    """
    The only product shape that may be persisted from an external source.

    Closed schema (extra="forbid"), strict types: no images, description,
    reviews, seller or any other personal data.
    """
    model_config = ConfigDict(
        extra="forbid",
        strict=True,
        frozen=True,
        populate_by_name=True,
    )

    product_id: str = Field(alias="productId", min_length=1, max_length=128)
    title: str = Field(min_length=1, max_length=140)
    price: float = Field(ge=0, le=999999.99)
    currency: str = Field(min_length=1, max_length=8)
    availability: str = Field(min_length=1, max_length=64)
    source_url: str = Field(alias="sourceUrl")
    category: Optional[str] = Field(default=None, max_length=100)

    @field_validator("source_url")
    @classmethod
    def validate_source_url(cls, v: str) -> str:
        """Require an absolute http(s) URL."""
        parsed = urlparse(v)
        if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
            raise ValueError("sourceUrl must be an absolute http(s) URL")
        return v


# ============================================================================
# Compliance audit
# ============================================================================

class ComplianceChecks(BaseModel):
    """Snapshot of the checks that led to an audit event."""
    compliance_mode: str
    data_scope: str
    policy: Optional[Dict[str, Any]] = None
    robots: Optional[Dict[str, Any]] = None


class ComplianceAuditLogInput(BaseModel):
    """What callers hand to ComplianceLogger.log()."""
    event_type: ComplianceEventType
    source_host: str
    product_count: Optional[int] = Field(default=None, ge=0)
    http_status: Optional[int] = None
    duration_ms: Optional[int] = Field(default=None, ge=0)
    user_agent: Optional[str] = None
    cache_status: Optional[str] = None
    compliance_checks: Optional[ComplianceChecks] = None
    error_message: Optional[str] = None
    request_id: Optional[str] = None


class ComplianceAuditRecord(BaseModel):
    """One immutable row of the compliance audit trail."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=_utc_now)
    event_type: ComplianceEventType
    source_host: str
    product_count: int = 0
    http_status: Optional[int] = None
    duration_ms: Optional[int] = None
    user_agent: Optional[str] = None
    cache_status: Optional[str] = None
    compliance_checks: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    request_id: str

    @classmethod
    def from_input(cls, entry: ComplianceAuditLogInput) -> "ComplianceAuditRecord":
        """Assign id, timestamp and correlation id to a caller-supplied entry."""
        checks = entry.compliance_checks.model_dump(exclude_none=True) if entry.compliance_checks else {}
        return cls(
            event_type=entry.event_type,
            source_host=entry.source_host,
            product_count=entry.product_count or 0,
            http_status=entry.http_status,
            duration_ms=entry.duration_ms,
            user_agent=entry.user_agent,
            cache_status=entry.cache_status,
            compliance_checks=checks,
            error_message=entry.error_message,
            request_id=entry.request_id or str(uuid4()),
        )


# ============================================================================
# Batch import
# ============================================================================

class ImportOptions(BaseModel):
    """Per-item options forwarded to the import operation."""
    model_config = ConfigDict(populate_by_name=True)

    use_suggested_price: Optional[bool] = Field(default=None, alias="useSuggestedPrice")
    custom_price: Optional[float] = Field(default=None, alias="customPrice", ge=0)
    custom_category: Optional[str] = Field(default=None, alias="customCategory")
    stock: Optional[int] = Field(default=None, ge=0)
    download_images: Optional[bool] = Field(default=None, alias="downloadImages")


class BatchImportItem(BaseModel):
    url: str
    options: ImportOptions = Field(default_factory=ImportOptions)


class BatchItemResult(BaseModel):
    """Outcome for one input URL; `error` carries the reason string."""
    url: str
    success: bool
    product: Optional[AllowedImportedProduct] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class BatchAnalyzeItemResult(BaseModel):
    url: str
    success: bool
    analysis: Optional[AllowedImportedProduct] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class BatchImportResult(BaseModel):
    """
    Aggregated batch outcome.

    Invariant: len(results) == total and success + failed == total.
    """
    success: int = 0
    failed: int = 0
    total: int = 0
    results: List[BatchItemResult] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_counts(self) -> "BatchImportResult":
        if len(self.results) != self.total:
            raise ValueError("results length must equal total")
        if self.success + self.failed != self.total:
            raise ValueError("success + failed must equal total")
        return self

    @classmethod
    def from_results(cls, results: List[BatchItemResult]) -> "BatchImportResult":
        success = sum(1 for item in results if item.success)
        return cls(
            success=success,
            failed=len(results) - success,
            total=len(results),
            results=results,
        )
