"""
Controller handler interface and shared helpers.

A handler knows how to reach one controller's removal form:
    key              registry key (exact match)
    domains          host substrings matched against the job URL
    resolve_url(job) explicit job URL > first candidate URL > default
    run(session, job) -> HandlerResult, never raises
"""
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from ....errors import AutomationError
from ....models.automation import HandlerResult, WebformJobInput
from ..session import AutomationSession

logger = logging.getLogger(__name__)

HTML_MAX_CHARS = 250_000
CONFIRMATION_MAX_CHARS = 5_000

TICKET_RE = re.compile(r"(ticket|reference|case)[\s#:]*([A-Z0-9\-_]{6,30})", re.IGNORECASE)

# Logical field -> candidate selectors, tried in order
FIELD_MAP: Dict[str, List[str]] = {
    "name": ["input[name*=name i]", "input#name", "input[autocomplete='name']"],
    "email": ["input[type=email]", "input[name*=email i]", "input#email"],
    "phone": ["input[type=tel]", "input[name*=phone i]", "input#phone"],
    "message": [
        "textarea[name*=message i]",
        "textarea#message",
        "textarea",
        "input[name*=message i]",
    ],
}

SUBMIT_SELECTORS = [
    "button[type=submit]",
    "input[type=submit]",
    "button:has-text('Submit')",
    "button:has-text('Send')",
    "button:has-text('Request')",
    "button:has-text('Continue')",
]

DEFAULT_MESSAGE = (
    "I am exercising my right to request deletion of my personal data "
    "associated with the information provided."
)


def page_text(html: Optional[str]) -> str:
    """Visible text of an HTML document, whitespace-collapsed."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return " ".join(soup.get_text(" ").split())


def extract_ticket_id(html: Optional[str]) -> Optional[str]:
    """Best-effort "Ticket #ABC123" / "Reference: ..." / "Case ..." scrape."""
    match = TICKET_RE.search(page_text(html))
    return match.group(2) if match else None


class WebformHandler(ABC):
    key: str = ""
    domains: Tuple[str, ...] = ()
    candidate_urls: Tuple[str, ...] = ()
    default_url: Optional[str] = None

    def matches_url(self, url: Optional[str]) -> bool:
        host = (url or "").lower()
        return bool(host) and any(d in host for d in self.domains)

    def resolve_url(self, job: WebformJobInput) -> Optional[str]:
        explicit = (job.url or "").strip()
        if explicit:
            return explicit
        if self.candidate_urls:
            return self.candidate_urls[0]
        return self.default_url

    def run(self, session: AutomationSession, job: WebformJobInput) -> HandlerResult:
        try:
            return self.submit(session, job)
        except AutomationError as e:
            return HandlerResult.failure(f"{e.code}: {e}")
        except Exception as e:  # handlers report, never raise
            logger.warning(f"{self.key} handler crashed on job {job.job_id}: {e}")
            return HandlerResult.failure(f"handler_error: {e}")

    @abstractmethod
    def submit(self, session: AutomationSession, job: WebformJobInput) -> HandlerResult:
        ...

    def capture(self, session: AutomationSession) -> HandlerResult:
        html = session.content() or ""
        text = session.visible_text() or page_text(html)
        return HandlerResult(
            ok=True,
            html=html[:HTML_MAX_CHARS],
            screenshot=session.screenshot(),
            confirmation_text=text[:CONFIRMATION_MAX_CHARS] or None,
            ticket_id=extract_ticket_id(html),
            final_url=session.current_url(),
        )


class CaptureHandler(WebformHandler):
    """
    Conservative handler: open the controller's public privacy/unlisting
    page and capture it. No login, no OTP, no form interaction.
    """

    def submit(self, session: AutomationSession, job: WebformJobInput) -> HandlerResult:
        url = self.resolve_url(job)
        if not url:
            return HandlerResult.failure("no target url", permanent=True)
        session.navigate(url)
        return self.capture(session)


class GenericFormHandler(WebformHandler):
    """
    Fills name/email/phone/message using profile selectors first, then
    FIELD_MAP, and clicks the first submit control it can find.
    """
    key = "generic"

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self.sleep = sleep

    def resolve_url(self, job: WebformJobInput) -> Optional[str]:
        explicit = (job.url or "").strip()
        if explicit:
            return explicit
        if job.profile and job.profile.form_url:
            return job.profile.form_url
        return None

    def _throttle(self, job: WebformJobInput) -> None:
        if job.profile and job.profile.throttle_ms:
            self.sleep(job.profile.throttle_ms / 1000.0)

    def submit(self, session: AutomationSession, job: WebformJobInput) -> HandlerResult:
        url = self.resolve_url(job)
        if not url:
            return HandlerResult.failure("no form url for generic handler", permanent=True)
        if job.profile and job.profile.captcha:
            return HandlerResult.failure("captcha-required", permanent=True)

        session.navigate(url)

        custom = (job.profile.field_selectors if job.profile else None) or {}
        payload = dict(job.payload or {})
        payload["message"] = payload.get("message") or DEFAULT_MESSAGE

        filled = []
        for field_name, default_selectors in FIELD_MAP.items():
            value = payload.get(field_name)
            if not value:
                continue
            selectors = list(custom.get(field_name) or []) + default_selectors
            if session.fill_first(selectors, str(value)):
                filled.append(field_name)
                self._throttle(job)

        if not filled:
            raise AutomationError("no known form fields found", code="no_form_fields")

        submit = list((job.profile.submit_selectors if job.profile else None) or []) + SUBMIT_SELECTORS
        if not session.click_first(submit):
            raise AutomationError("no obvious submit button found", code="no_submit_control")

        session.wait_idle()
        result = self.capture(session)
        logger.info(f"Generic form submitted for job {job.job_id} (fields: {', '.join(filled)})")
        return result
