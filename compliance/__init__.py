"""Compliance checks applied to every external product import."""

from compliance.audit import ComplianceLogger
from compliance.gate import ComplianceGate, GateDecision
from compliance.whitelist import ProductWhitelist, enforce_imported_product_whitelist

__all__ = [
    "ComplianceLogger",
    "ComplianceGate",
    "GateDecision",
    "ProductWhitelist",
    "enforce_imported_product_whitelist",
]
