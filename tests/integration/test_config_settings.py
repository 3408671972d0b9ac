"""Tests for environment-derived compliance settings."""

from __future__ import annotations

import pytest

from core.config import (
    ComplianceConfig,
    ComplianceMode,
    ComplianceSettings,
    DataScope,
    SourcePolicyMode,
)


@pytest.mark.unit
def test_empty_environment_is_safe_default():
    settings = ComplianceSettings.from_env({})

    assert settings.compliance_mode == ComplianceMode.STRICT
    assert settings.data_scope == DataScope.MINIMAL
    assert settings.source_policy_mode == SourcePolicyMode.DENY_BY_DEFAULT
    assert settings.user_agent == ComplianceConfig.DEFAULT_USER_AGENT
    assert settings.robots_enabled is True
    assert settings.robots_cache_ttl_seconds == 86400
    assert settings.audit_enabled is False
    assert settings.creation_blocked is True
    assert settings.images_allowed is False


@pytest.mark.unit
def test_environment_values_are_read():
    settings = ComplianceSettings.from_env(
        {
            "COMPLIANCE_MODE": "Permissive",
            "COMPLIANCE_DATA_SCOPE": "full",
            "SOURCE_POLICY_MODE": "allow_all",
            "COMPLIANCE_USER_AGENT": "  MyImporter/2.0 (+https://example.com/bot)  ",
            "COMPLIANCE_ROBOTS_ENABLED": "false",
            "COMPLIANCE_ROBOTS_CACHE_TTL": "600",
            "COMPLIANCE_DB_ENABLED": "TRUE",
            "COMPLIANCE_DB_PATH": "/tmp/audit.db",
            "REVALIDATE_BASE_URL": "https://shop.test/",
            "REVALIDATE_SECRET": "s3cret",
        }
    )

    assert settings.compliance_mode == ComplianceMode.PERMISSIVE
    assert settings.data_scope == DataScope.FULL
    assert settings.source_policy_mode == SourcePolicyMode.ALLOW_ALL
    assert settings.user_agent == "MyImporter/2.0 (+https://example.com/bot)"
    assert settings.robots_enabled is False
    assert settings.robots_cache_ttl_seconds == 600
    assert settings.audit_enabled is True
    assert settings.audit_db_path == "/tmp/audit.db"
    assert settings.revalidate_base_url == "https://shop.test"
    assert settings.revalidate_secret == "s3cret"
    assert settings.creation_blocked is False


@pytest.mark.unit
@pytest.mark.parametrize(
    ("env", "attribute", "expected"),
    [
        ({"COMPLIANCE_MODE": "lenient"}, "compliance_mode", ComplianceMode.STRICT),
        ({"COMPLIANCE_DATA_SCOPE": "everything"}, "data_scope", DataScope.MINIMAL),
        ({"SOURCE_POLICY_MODE": "yolo"}, "source_policy_mode", SourcePolicyMode.DENY_BY_DEFAULT),
        ({"COMPLIANCE_ROBOTS_CACHE_TTL": "-5"}, "robots_cache_ttl_seconds", 86400),
        ({"COMPLIANCE_ROBOTS_CACHE_TTL": "soon"}, "robots_cache_ttl_seconds", 86400),
        ({"COMPLIANCE_USER_AGENT": "   "}, "user_agent", ComplianceConfig.DEFAULT_USER_AGENT),
    ],
)
def test_malformed_values_fall_back_to_defaults(env: dict, attribute: str, expected):
    assert getattr(ComplianceSettings.from_env(env), attribute) == expected


@pytest.mark.unit
def test_mode_off_allows_creation_and_images():
    settings = ComplianceSettings.from_env({"COMPLIANCE_MODE": "off"})

    assert settings.creation_blocked is False
    assert settings.images_allowed is True


@pytest.mark.unit
def test_constants_are_valid():
    ComplianceConfig.validate()
    assert "images" in ComplianceConfig.FORBIDDEN_PRODUCT_FIELDS
    assert ComplianceConfig.ROBOTS_CACHE_KEY_PREFIX == "compliance:robots:"
