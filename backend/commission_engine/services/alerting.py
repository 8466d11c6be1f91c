"""Observability webhook integration.

Pushes operational alerts (audit write failures) to the monitoring inbound
webhook. Never raises: an alert that cannot be delivered is only logged.
"""
import logging
import requests
from typing import Optional
from datetime import datetime, timezone
from commission_engine.core.config import settings

logger = logging.getLogger(__name__)


class ObservabilityWebhookService:
    """Sends alert payloads to the configured observability webhook URL."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[int] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.AUDIT_ALERT_WEBHOOK_URL
        self.timeout = timeout or settings.AUDIT_ALERT_TIMEOUT

    def _fire(self, payload: dict, event_type: str) -> dict:
        """Fire a webhook and log the result."""
        if not self.webhook_url:
            logger.debug(f"Observability webhook URL not configured for {event_type}, skipping")
            return {"skipped": True, "reason": "no_url_configured"}

        try:
            resp = requests.post(
                self.webhook_url,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "X-Commission-Event": event_type,
                    "X-Commission-Timestamp": datetime.now(timezone.utc).isoformat(),
                },
                timeout=self.timeout,
            )

            result = {
                "success": resp.status_code < 400,
                "status_code": resp.status_code,
                "response": resp.text[:500],
            }

            if resp.status_code >= 400:
                logger.warning(f"Observability webhook {event_type} returned {resp.status_code}: {resp.text[:200]}")
            else:
                logger.info(f"Observability webhook {event_type} sent ({resp.status_code})")

            return result

        except requests.RequestException as e:
            logger.error(f"Observability webhook {event_type} failed: {e}")
            return {"success": False, "error": str(e)}

    def fire_audit_write_failure(self, entity_type: str, entity_id: str, action: str,
                                 actor: str, error: str) -> dict:
        """Audit entry was lost; the primary change it describes went through."""
        payload = {
            "event_type": "audit_write_failure",
            "severity": "error",
            "service": settings.APP_NAME,
            "environment": settings.ENVIRONMENT,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "actor": actor,
            "error": error,
            "occurred_at": datetime.now(timezone.utc).isoformat(),
        }
        return self._fire(payload, "audit_write_failure")


def get_alert_service() -> ObservabilityWebhookService:
    return ObservabilityWebhookService()
