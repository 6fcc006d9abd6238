"""
Handler registry.

Static registration list. Selection order:
1. exact controller key
2. first handler whose domain appears in the job URL
3. the generic form handler, only when an operator profile exists
4. nothing (the job cannot proceed)
"""
from typing import List, Optional

from ....models.automation import ControllerProfile
from .base import GenericFormHandler, WebformHandler
from .controllers import NaukriHandler, OlxHandler, ShineHandler, TimesJobsHandler, TruecallerHandler

HANDLERS: List[WebformHandler] = [
    TruecallerHandler(),
    NaukriHandler(),
    OlxHandler(),
    ShineHandler(),
    TimesJobsHandler(),
]

GENERIC_HANDLER = GenericFormHandler()


def pick_handler(
    controller_key: Optional[str],
    url: Optional[str] = None,
    profile: Optional[ControllerProfile] = None,
    handlers: Optional[List[WebformHandler]] = None,
) -> Optional[WebformHandler]:
    handlers = HANDLERS if handlers is None else handlers
    key = (controller_key or "").strip().lower()

    if key:
        for handler in handlers:
            if handler.key == key:
                return handler

    for handler in handlers:
        if handler.matches_url(url):
            return handler

    if profile is not None and (profile.form_url or url):
        return GENERIC_HANDLER
    return None


def default_form_url(controller_key: Optional[str]) -> Optional[str]:
    """The default form URL a registered handler would use, if any."""
    key = (controller_key or "").strip().lower()
    for handler in HANDLERS:
        if handler.key == key:
            return handler.candidate_urls[0] if handler.candidate_urls else handler.default_url
    return None
