"""
Dispatch Engine Error Taxonomy

Every failure the engine surfaces is one of these types.
Routers map them to HTTP status codes; the worker maps AutomationError
to retry/backoff. Raw automation errors never leave the engine.
"""
from typing import Optional


class DispatchEngineError(Exception):
    """Base class. `code` is machine-readable, `hint` is operator-facing."""

    code = "engine_error"
    http_status = 500

    def __init__(self, message: str = "", *, code: Optional[str] = None, hint: Optional[str] = None):
        super().__init__(message or self.code)
        if code:
            self.code = code
        self.hint = hint

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self), "hint": self.hint}


class InvalidInput(DispatchEngineError):
    """Missing or malformed envelope fields. Rejected immediately, never retried."""
    code = "invalid_input"
    http_status = 400


class PolicyViolation(DispatchEngineError):
    """URL not allow-listed or confidence below floor. Rejected at selection time."""
    code = "policy_violation"
    http_status = 403


class RateLimited(DispatchEngineError):
    """Upstream asked us to slow down; caller should retry after a delay."""
    code = "rate_limited"
    http_status = 429

    def __init__(self, message: str = "", *, retry_after_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after_seconds = retry_after_seconds


class ChannelUnavailable(DispatchEngineError):
    """Preferred and fallback channels disallowed or unconfigured."""
    code = "channel_unavailable"
    http_status = 409


class AutomationError(DispatchEngineError):
    """Handler failure, navigation timeout, missing submit control. Retryable."""
    code = "automation_error"
    http_status = 502


class SigningUnavailable(DispatchEngineError):
    """No usable signing backend. The ledger fails closed."""
    code = "signing_unavailable"
    http_status = 503


class JobNotFound(DispatchEngineError):
    code = "job_not_found"
    http_status = 404


class InvalidTransition(DispatchEngineError):
    """Requested status change would move an action or job backwards."""
    code = "invalid_transition"
    http_status = 409
