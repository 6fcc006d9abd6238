"""
Automation Data Contracts

What a controller handler receives and returns. Handlers never raise;
every failure is a HandlerResult with ok=False.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ControllerProfile:
    """Per-controller automation hints (selectors, CAPTCHA, throttle)."""
    controller_key: str
    domain: Optional[str] = None
    form_url: Optional[str] = None
    field_selectors: Dict[str, List[str]] = field(default_factory=dict)
    submit_selectors: List[str] = field(default_factory=list)
    captcha: Optional[Dict[str, Any]] = None
    throttle_ms: Optional[int] = None


@dataclass
class WebformJobInput:
    """Handler-facing view of a claimed webform job."""
    job_id: str
    controller_key: Optional[str]
    url: Optional[str]
    payload: Dict[str, Optional[str]] = field(default_factory=dict)  # name/email/phone/message
    profile: Optional[ControllerProfile] = None
    attempt: int = 1


@dataclass
class HandlerResult:
    ok: bool
    html: Optional[str] = None
    screenshot: Optional[bytes] = None
    confirmation_text: Optional[str] = None
    ticket_id: Optional[str] = None
    final_url: Optional[str] = None
    error: Optional[str] = None
    permanent: bool = False  # True when retrying cannot help (e.g. no handler matched)

    @classmethod
    def failure(cls, error: str, permanent: bool = False) -> "HandlerResult":
        return cls(ok=False, error=error, permanent=permanent)
