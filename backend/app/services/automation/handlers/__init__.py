"""
Controller Handlers

Per-controller automation strategies and the static registry that picks one.
"""

from .base import (
    FIELD_MAP,
    SUBMIT_SELECTORS,
    CaptureHandler,
    GenericFormHandler,
    WebformHandler,
    extract_ticket_id,
    page_text,
)
from .controllers import NaukriHandler, OlxHandler, ShineHandler, TimesJobsHandler, TruecallerHandler
from .registry import GENERIC_HANDLER, HANDLERS, default_form_url, pick_handler

__all__ = [
    "FIELD_MAP",
    "SUBMIT_SELECTORS",
    "CaptureHandler",
    "GenericFormHandler",
    "WebformHandler",
    "extract_ticket_id",
    "page_text",
    "NaukriHandler",
    "OlxHandler",
    "ShineHandler",
    "TimesJobsHandler",
    "TruecallerHandler",
    "GENERIC_HANDLER",
    "HANDLERS",
    "default_form_url",
    "pick_handler",
]
