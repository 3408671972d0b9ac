"""
Shared pytest fixtures and configuration for compliance-importer tests.
"""

import json

import pytest

from core.config import ComplianceMode, ComplianceSettings, DataScope, SourcePolicyMode
from core.models import CguStatus, SourcePolicy


# ============================================================================
# Fixtures: Settings
# ============================================================================

@pytest.fixture
def strict_full_settings() -> ComplianceSettings:
    """Strict gating with product creation enabled."""
    return ComplianceSettings(
        compliance_mode=ComplianceMode.STRICT,
        data_scope=DataScope.FULL,
        user_agent="ComplianceImporterTest/1.0",
    )


@pytest.fixture
def strict_minimal_settings() -> ComplianceSettings:
    """Default deployment: gating on, creation blocked."""
    return ComplianceSettings(
        compliance_mode=ComplianceMode.STRICT,
        data_scope=DataScope.MINIMAL,
    )


@pytest.fixture
def off_settings() -> ComplianceSettings:
    return ComplianceSettings(
        compliance_mode=ComplianceMode.OFF,
        data_scope=DataScope.FULL,
        source_policy_mode=SourcePolicyMode.DENY_BY_DEFAULT,
    )


# ============================================================================
# Fixtures: Policies
# ============================================================================

@pytest.fixture
def allowed_shop_policy() -> SourcePolicy:
    """Override granting HTML crawl for a partner shop."""
    return SourcePolicy(
        host_pattern="shop.example.com",
        cgu_status=CguStatus.ALLOWED,
        allow_html_crawl=True,
        api_only=False,
        notes="Partner agreement",
    )


# ============================================================================
# Fixtures: Product records
# ============================================================================

@pytest.fixture
def sample_product_raw() -> dict:
    """Raw candidate record that passes the whitelist."""
    return {
        "productId": "sku-001",
        "title": "Ceramic Mug",
        "price": 12.5,
        "currency": "EUR",
        "availability": "in_stock",
        "sourceUrl": "https://shop.example.com/p/1",
        "category": "Kitchen",
    }


# ============================================================================
# Helpers
# ============================================================================

def read_events(output: str) -> list[dict]:
    """Parse JSON event lines from captured stdout."""
    events = []
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("{"):
            events.append(json.loads(line))
    return events


@pytest.fixture
def captured_events(capsys):
    """Return a callable that drains stdout and parses emitted events."""
    def _read() -> list[dict]:
        return read_events(capsys.readouterr().out)
    return _read


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "contract: contract schema compliance tests")
    config.addinivalue_line("markers", "integration: end-to-end integration tests")
    config.addinivalue_line("markers", "unit: unit tests")
