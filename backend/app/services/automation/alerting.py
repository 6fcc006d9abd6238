"""
Failure-Spike Alerting

Stateless check run after each worker batch: count jobs that failed within
the rolling window, group by target domain, and emit one event when the
total reaches the threshold.
"""
import logging
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
from sqlalchemy.orm import Session

from ...config import EngineSettings, get_settings
from ...models.db_models import JobStatus, WebformJobDB, utcnow

logger = logging.getLogger(__name__)

ALERT_TYPE = "WEBFORM_FAILURE_SPIKE"


class AlertSink(ABC):

    @abstractmethod
    def emit(self, event: Dict[str, Any]) -> None:
        ...


class LoggingAlertSink(AlertSink):
    """Used when no webhook is configured."""

    def emit(self, event: Dict[str, Any]) -> None:
        logger.error(f"ALERT {event['type']}: {event['totalFailed']} failures in "
                     f"{event['windowMinutes']}m {event['byDomain']}")


class WebhookAlertSink(AlertSink):

    def __init__(self, url: str, client: Optional[httpx.Client] = None):
        self.url = url
        self.client = client or httpx.Client(timeout=10.0)

    def emit(self, event: Dict[str, Any]) -> None:
        try:
            response = self.client.post(self.url, json=event)
            response.raise_for_status()
        except httpx.HTTPError as e:
            # alert delivery must not break the worker loop
            logger.error(f"Alert webhook delivery failed: {e}")


def sink_from_settings(settings: EngineSettings) -> AlertSink:
    if settings.alert_webhook_url:
        return WebhookAlertSink(settings.alert_webhook_url)
    return LoggingAlertSink()


def domain_of(job: WebformJobDB) -> str:
    host = urlparse(job.url or "").hostname if job.url else None
    if host:
        return host.lower().removeprefix("www.")
    return job.controller_key or "unknown"


class FailureSpikeMonitor:

    def __init__(self, db: Session, settings: Optional[EngineSettings] = None, sink: Optional[AlertSink] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.sink = sink or sink_from_settings(self.settings)

    def check(self, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Returns the emitted event, or None when under threshold."""
        now = now or utcnow()
        window = self.settings.alert_window_minutes
        since = now - timedelta(minutes=window)

        failed = self.db.query(WebformJobDB).filter(
            WebformJobDB.status == JobStatus.FAILED,
            WebformJobDB.updated_at >= since,
        ).all()

        by_domain = Counter(domain_of(job) for job in failed)
        total = sum(by_domain.values())
        if total < self.settings.alert_failure_threshold:
            return None

        event = {
            "type": ALERT_TYPE,
            "windowMinutes": window,
            "totalFailed": total,
            "byDomain": dict(by_domain),
            "at": now.isoformat() + "Z",
        }
        self.sink.emit(event)
        return event
