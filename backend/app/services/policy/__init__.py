"""
Controller Policy Services

Capability table, policy resolution, confidence banding, auto-candidate
selection and follow-up cadence.
"""

from .capability import (
    CAPABILITY_MATRIX,
    CONSERVATIVE_FALLBACK,
    GENERIC,
    ADAPTER_PRIORITY,
    get_capability,
    capability_for,
    infer_controller_from_url,
)
from .confidence import band_for, can_auto_followup, clamp01
from .allowlist import ALLOWED_DOMAINS, is_allowed, filter_allowed, hostname_of
from .resolver import PolicyResolver, channel_order
from .selector import AutoCandidateSelector, AMBIGUITY_PHRASES
from .followups import FollowupScheduler, next_followup_at, select_followup_candidates

__all__ = [
    "CAPABILITY_MATRIX",
    "CONSERVATIVE_FALLBACK",
    "GENERIC",
    "ADAPTER_PRIORITY",
    "get_capability",
    "capability_for",
    "infer_controller_from_url",
    "band_for",
    "can_auto_followup",
    "clamp01",
    "ALLOWED_DOMAINS",
    "is_allowed",
    "filter_allowed",
    "hostname_of",
    "PolicyResolver",
    "channel_order",
    "AutoCandidateSelector",
    "AMBIGUITY_PHRASES",
    "FollowupScheduler",
    "next_followup_at",
    "select_followup_candidates",
]
