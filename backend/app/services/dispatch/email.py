"""
Email channel.

Only the retry contract lives here; the provider does the transport.
HTTP 429 and 5xx (plus network errors and timeouts) are retried with
exponential backoff up to `email_max_attempts`. Any other 4xx fails at once.
A final failure is raised to the Dispatch Router, which decides on fallback.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import httpx
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ...config import EngineSettings, get_settings
from ...errors import ChannelUnavailable, RateLimited
from ..privacy import redact_for_logs

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass
class EmailMessage:
    to: str
    subject: str
    text: str
    reply_to: Optional[str] = None
    tags: List[str] = field(default_factory=list)


class TransientEmailError(Exception):
    """Retryable provider failure."""

    def __init__(self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status <= 599


class EmailSender(ABC):
    """Sends one message and returns the provider message id."""

    @abstractmethod
    def send(self, message: EmailMessage) -> str:
        ...


class HttpEmailSender(EmailSender):
    """JSON-over-HTTP provider (Resend-compatible payload)."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self.client = client or httpx.Client(timeout=15.0)
        self.sleep = sleep

    def _post_once(self, message: EmailMessage) -> str:
        payload = {
            "from": self.settings.email_from,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
        }
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        if message.tags:
            payload["tags"] = [{"name": t, "value": "1"} for t in message.tags]

        try:
            response = self.client.post(
                self.settings.email_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.settings.email_api_key}"},
            )
        except httpx.RequestError as e:
            # timeouts, dropped connections, protocol and URL errors
            raise TransientEmailError(f"transport: {e}") from e

        if is_retryable_status(response.status_code):
            retry_after = None
            if response.status_code == 429:
                try:
                    retry_after = float(response.headers.get("retry-after", ""))
                except ValueError:
                    retry_after = None
            raise TransientEmailError(
                f"provider returned {response.status_code}",
                status=response.status_code,
                retry_after=retry_after,
            )
        if response.status_code >= 400:
            raise ChannelUnavailable(
                f"email provider rejected message ({response.status_code})",
                code="email_rejected",
            )

        try:
            data = response.json() if response.content else {}
        except ValueError:
            logger.warning(f"Email provider returned {response.status_code} with a non-JSON body")
            data = {}
        if not isinstance(data, dict):
            data = {}
        return str(data.get("id") or "")

    def send(self, message: EmailMessage) -> str:
        base_seconds = max(self.settings.email_backoff_base_ms, 1) / 1000.0
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.settings.email_max_attempts)),
            wait=wait_exponential(multiplier=base_seconds, min=base_seconds, max=base_seconds * 16),
            retry=retry_if_exception_type(TransientEmailError),
            sleep=self.sleep,
            before_sleep=lambda state: logger.warning(
                f"Email retry {state.attempt_number}: "
                f"{redact_for_logs(str(state.outcome.exception()))}"
            ),
        )
        try:
            return retrying(self._post_once, message)
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error(f"Email failed after retries: {redact_for_logs(str(last))}")
            if isinstance(last, TransientEmailError) and last.status == 429:
                raise RateLimited(
                    "email provider rate limited", retry_after_seconds=last.retry_after
                ) from last
            raise ChannelUnavailable(f"email delivery failed: {last}", code="email_failed") from last
