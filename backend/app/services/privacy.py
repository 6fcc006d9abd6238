"""
PII Scrubbing

Two passes:
- scrub_text(): conservative pass over draft text before storage. Masks long
  digit runs and key=value credential-looking tokens.
- redact_for_logs(): masks emails and phone numbers in anything headed for a
  log line. Accepts strings, dicts and lists.
"""
import re
from typing import Any, Iterable, Optional

MASK = "•"  # bullet

# 7+ digits, optional single separators between them (phones, account numbers, Aadhaar)
LONG_DIGITS_RE = re.compile(r"(?<![\w])\+?\d(?:[\s\-]?\d){6,}(?![\w])")
CREDENTIAL_RE = re.compile(
    r"\b(password|passwd|pwd|otp|pin|token|secret|api[_-]?key|access[_-]?key|session)"
    r"(\s*[=:]\s*)([^\s,;&]+)",
    re.IGNORECASE,
)
EMAIL_RE = re.compile(r"\b([A-Z0-9._%+-]+)@([A-Z0-9.-]+\.([A-Z]{2,}))\b", re.IGNORECASE)
PHONE_RE = re.compile(r"(?<![\w])(?:\+?91[\s\-]?)?(?:\d[\s\-]?){7,13}(?![\w])")

DEFAULT_LOG_KEYS = ("text", "html", "body", "draft_body")


def _mask_digits(match: re.Match) -> str:
    return re.sub(r"\d", MASK, match.group(0))


def scrub_text(text: Optional[str]) -> str:
    """Mask long digit runs and credential tokens. Idempotent."""
    if not text:
        return ""
    out = CREDENTIAL_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{MASK * 4}", text)
    return LONG_DIGITS_RE.sub(_mask_digits, out)


def mask_email(value: str) -> str:
    match = EMAIL_RE.fullmatch(value.strip())
    if not match:
        return MASK * 4 + "@" + MASK * 4
    local, _, tld = match.groups()
    return f"{local[0]}{MASK * max(1, len(local) - 1)}@{MASK * 4}.{tld}"


def redact_text(text: str) -> str:
    out = EMAIL_RE.sub(lambda m: mask_email(m.group(0)), text)
    return PHONE_RE.sub(_mask_digits, out)


def redact_for_logs(value: Any, keys: Iterable[str] = DEFAULT_LOG_KEYS) -> Any:
    """
    Recursively mask emails and phones. Values under `keys` (free-text bodies)
    are replaced with a length marker instead of being logged at all.
    """
    drop = set(keys)
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k in drop and isinstance(v, str):
                out[k] = f"[{len(v)} chars]"
            else:
                out[k] = redact_for_logs(v, drop)
        return out
    if isinstance(value, (list, tuple)):
        return [redact_for_logs(v, drop) for v in value]
    return value
