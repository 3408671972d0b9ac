"""Source policy resolution: which hosts may be retrieved as HTML."""

from policy.sources import (
    ALLOW_ALL_POLICY,
    BASE_POLICIES,
    DEFAULT_POLICY,
    SourcePolicyResolver,
    load_override_policies,
    matches_host,
)

__all__ = [
    "ALLOW_ALL_POLICY",
    "BASE_POLICIES",
    "DEFAULT_POLICY",
    "SourcePolicyResolver",
    "load_override_policies",
    "matches_host",
]
