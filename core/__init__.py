"""Core models, configuration and error taxonomy for the compliance importer."""

from core.config import ComplianceConfig, ComplianceMode, ComplianceSettings, DataScope, SourcePolicyMode
from core.errors import (
    ComplianceImportError,
    ErrorKind,
    ForbiddenFieldError,
    PolicyDeniedError,
    RobotsDeniedError,
    TransientNetworkError,
    WhitelistSchemaError,
    WhitelistViolationError,
)
from core.models import (
    AllowedImportedProduct,
    BatchImportItem,
    BatchImportResult,
    BatchItemResult,
    ComplianceAuditLogInput,
    ComplianceEventType,
    RobotsCheckResult,
    RobotsRule,
    SourcePolicy,
)

__all__ = [
    "AllowedImportedProduct",
    "BatchImportItem",
    "BatchImportResult",
    "BatchItemResult",
    "ComplianceAuditLogInput",
    "ComplianceConfig",
    "ComplianceEventType",
    "ComplianceImportError",
    "ComplianceMode",
    "ComplianceSettings",
    "DataScope",
    "ErrorKind",
    "ForbiddenFieldError",
    "PolicyDeniedError",
    "RobotsCheckResult",
    "RobotsDeniedError",
    "RobotsRule",
    "SourcePolicy",
    "SourcePolicyMode",
    "TransientNetworkError",
    "WhitelistSchemaError",
    "WhitelistViolationError",
]
