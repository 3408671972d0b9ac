"""Downstream cache revalidation triggered after a successful batch."""

from __future__ import annotations

import requests

from core.config import ComplianceConfig, ComplianceSettings
from core.errors import ErrorKind
from core.structured_logging import emit_json_event, emit_warning


class RevalidationClient:
    """POST a revalidation request; every failure is logged and swallowed."""

    def __init__(
        self,
        base_url: str,
        secret: str | None = None,
        admin_token: str | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = ComplianceConfig.REVALIDATION_TIMEOUT_SECONDS,
    ) -> None:
        self.endpoint = f"{base_url.rstrip('/')}{ComplianceConfig.REVALIDATION_ENDPOINT}"
        self.secret = secret
        self.admin_token = admin_token
        self._session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(
        cls,
        settings: ComplianceSettings,
        session: requests.Session | None = None,
    ) -> "RevalidationClient":
        return cls(
            base_url=settings.revalidate_base_url,
            secret=settings.revalidate_secret,
            admin_token=settings.admin_token,
            session=session,
        )

    def revalidate(self, path: str = ComplianceConfig.REVALIDATION_PATH) -> bool:
        """Return True only when the endpoint confirms `{"revalidated": true}`."""
        headers = {"Content-Type": "application/json"}
        if self.admin_token:
            headers["Cookie"] = f"admin-token={self.admin_token}"

        try:
            response = self._session.post(
                self.endpoint,
                json={"path": path, "secret": self.secret},
                headers=headers,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, OSError, ValueError) as exc:
            emit_warning(
                "revalidation_failed",
                component="revalidation",
                error_kind=ErrorKind.SINK_FAILURE.value,
                endpoint=self.endpoint,
                path=path,
                error=exc,
            )
            return False

        revalidated = isinstance(payload, dict) and payload.get("revalidated") is True
        if not revalidated:
            emit_warning(
                "revalidation_failed",
                component="revalidation",
                error_kind=ErrorKind.SINK_FAILURE.value,
                endpoint=self.endpoint,
                path=path,
                reason="unexpected response",
                response=payload,
            )
            return False

        emit_json_event(
            "revalidation_completed",
            component="revalidation",
            endpoint=self.endpoint,
            path=path,
        )
        return True
