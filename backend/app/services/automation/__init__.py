"""
Webform Automation

Durable job queue, sequential worker, controller handlers, artifact capture
and failure-spike alerting.
"""

from .queue import WebformQueue, compute_backoff_ms, expected_backoff_ms
from .session import AutomationSession, PlaywrightSession, open_session
from .artifacts import ArtifactStore, LocalArtifactStore
from .alerting import AlertSink, FailureSpikeMonitor, LoggingAlertSink, WebhookAlertSink
from .worker import WebformWorker

__all__ = [
    "WebformQueue",
    "compute_backoff_ms",
    "expected_backoff_ms",
    "AutomationSession",
    "PlaywrightSession",
    "open_session",
    "ArtifactStore",
    "LocalArtifactStore",
    "AlertSink",
    "FailureSpikeMonitor",
    "LoggingAlertSink",
    "WebhookAlertSink",
    "WebformWorker",
]
