"""
Dispatch

Channel routing with one automatic fallback, and the email retry contract.
"""

from .email import EmailMessage, EmailSender, HttpEmailSender, TransientEmailError, is_retryable_status
from .router import DispatchRouter

__all__ = [
    "EmailMessage",
    "EmailSender",
    "HttpEmailSender",
    "TransientEmailError",
    "is_retryable_status",
    "DispatchRouter",
]
