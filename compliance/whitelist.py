"""
Strict whitelist of importable product data (data minimization by design).

Two phases so privacy rejections stay distinguishable in logs:
1. forbidden-field scan (images, description, seller, contact data, ...)
2. closed-schema parse (anything not in AllowedImportedProduct is rejected)
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from core.config import ComplianceConfig
from core.errors import ForbiddenFieldError, WhitelistSchemaError
from core.models import AllowedImportedProduct


class ProductWhitelist:
    """Enforce the product whitelist on raw candidate records."""

    def __init__(self, forbidden_fields: Iterable[str] = ComplianceConfig.FORBIDDEN_PRODUCT_FIELDS) -> None:
        self.forbidden_fields = frozenset(name.lower() for name in forbidden_fields)

    def assert_no_forbidden_fields(self, raw: Any) -> None:
        """Raise ForbiddenFieldError on the first forbidden key (case-insensitive)."""
        if not isinstance(raw, Mapping):
            return
        for key in raw:
            if str(key).lower() in self.forbidden_fields:
                raise ForbiddenFieldError(str(key))

    def enforce(self, raw: Any) -> AllowedImportedProduct:
        """
        Return the whitelisted product or raise a WhitelistViolationError.

        Raises:
            ForbiddenFieldError: a forbidden key is present (checked first)
            WhitelistSchemaError: unknown keys, missing or invalid values
        """
        self.assert_no_forbidden_fields(raw)
        if isinstance(raw, AllowedImportedProduct):
            return raw
        if not isinstance(raw, Mapping):
            raise WhitelistSchemaError(
                f"Whitelist validation failed: expected an object, got {type(raw).__name__}"
            )
        try:
            return AllowedImportedProduct.model_validate(dict(raw))
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
                for error in exc.errors()
            )
            raise WhitelistSchemaError(f"Whitelist validation failed: {problems}") from exc


_DEFAULT_WHITELIST = ProductWhitelist()


def enforce_imported_product_whitelist(raw: Any) -> AllowedImportedProduct:
    """Module-level shortcut using the default forbidden-field set."""
    return _DEFAULT_WHITELIST.enforce(raw)
