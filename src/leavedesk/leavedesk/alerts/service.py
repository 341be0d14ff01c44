from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from ..common.datetime_utils import utcnow
from ..core.enums import AlertSeverity
from .repository import AlertRepository

logger = logging.getLogger(__name__)

SLACK_TIMEOUT = 5
SLACK_MAX_FIELDS = 10

_TITLES = {
    AlertSeverity.CRITICAL: ":rotating_light: Critical Billing Alert",
    AlertSeverity.WARNING: ":warning: Billing Warning",
    AlertSeverity.INFO: ":information_source: Billing Info",
}


@dataclass(frozen=True)
class AlertResult:
    success: bool
    channels: dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None


class AlertService:
    """Operator alerts: stored in the ``alerts`` table, mirrored to Slack when configured.

    Channel failures are logged and reported in the result, never raised.
    """

    def __init__(
        self,
        alerts: AlertRepository,
        *,
        slack_webhook_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self._alerts = alerts
        self._slack_webhook_url = slack_webhook_url
        self._session = session or requests.Session()

    def critical(self, message: str, metadata: Optional[dict[str, Any]] = None) -> AlertResult:
        return self._send(AlertSeverity.CRITICAL, message, metadata, slack=True)

    def warning(self, message: str, metadata: Optional[dict[str, Any]] = None) -> AlertResult:
        return self._send(AlertSeverity.WARNING, message, metadata, slack=True)

    def info(self, message: str, metadata: Optional[dict[str, Any]] = None) -> AlertResult:
        return self._send(AlertSeverity.INFO, message, metadata, slack=False)

    def _send(
        self,
        severity: AlertSeverity,
        message: str,
        metadata: Optional[dict[str, Any]],
        *,
        slack: bool,
    ) -> AlertResult:
        channels = {"database": self._store(severity, message, metadata)}
        if slack:
            channels["slack"] = self._post_to_slack(severity, message, metadata)

        success = any(channels.values())
        if not success:
            logger.error("All alert channels failed for %s alert: %s", severity.value, message)
        return AlertResult(
            success=success,
            channels=channels,
            error=None if success else "All alert channels failed",
        )

    def _store(self, severity: AlertSeverity, message: str, metadata: Optional[dict[str, Any]]) -> bool:
        try:
            self._alerts.create(severity=severity, message=message, metadata=metadata)
        except Exception:
            logger.exception("Database alert failed")
            return False
        logger.info("Alert stored: %s - %s", severity.value, message)
        return True

    def _slack_payload(self, severity: AlertSeverity, message: str, metadata: Optional[dict[str, Any]]) -> dict:
        title = _TITLES[severity]
        blocks: list[dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": title, "emoji": True}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Message:* {message}"}},
        ]
        fields = [
            {"type": "mrkdwn", "text": f"*{key}:* {json.dumps(value, default=str)}"}
            for key, value in (metadata or {}).items()
            if value is not None
        ]
        if fields:
            blocks.append({"type": "section", "fields": fields[:SLACK_MAX_FIELDS]})
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": utcnow().isoformat() + "Z"}]})
        return {"text": title, "blocks": blocks}

    def _post_to_slack(self, severity: AlertSeverity, message: str, metadata: Optional[dict[str, Any]]) -> bool:
        if not self._slack_webhook_url:
            logger.debug("Slack webhook not configured, skipping")
            return False
        try:
            response = self._session.post(
                self._slack_webhook_url,
                json=self._slack_payload(severity, message, metadata),
                timeout=SLACK_TIMEOUT,
            )
        except requests.exceptions.RequestException as e:
            logger.error("Slack alert failed: %s", e)
            return False
        if not response.ok:
            logger.error("Slack webhook failed: %s %s", response.status_code, response.reason)
            return False
        return True
