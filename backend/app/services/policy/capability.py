"""
Controller Capability Table

Static per-controller declarations: which channels may be used, whether the
engine may prepare or submit actions without a human, confidence floors and
follow-up cadence. Operators adjust behaviour through live overrides
(controller_overrides), never by editing this table at runtime.

Lookup contract:
- get_capability(key) returns the table entry or None
- capability_for(key) never returns None; unknown controllers get the
  conservative fallback (email-only, higher floor, no auto-submit)
"""
from dataclasses import replace
from typing import Dict, List, Optional

from ...models.db_models import Channel
from ...models.policy import ControllerCapability


# =============================================================================
# COMPILED DEFAULTS (lowest merge layer)
# =============================================================================

DEFAULT_PREFERRED_CHANNEL = Channel.EMAIL
DEFAULT_FALLBACK_CHANNEL = Channel.WEBFORM
DEFAULT_ALLOWED_CHANNELS = (Channel.EMAIL, Channel.WEBFORM)
DEFAULT_MIN_CONFIDENCE = 0.82
DEFAULT_SLA_ACK_MINUTES = 72 * 60
DEFAULT_SLA_RESOLVE_MINUTES = 30 * 24 * 60

# Band thresholds used when a capability leaves them unset
DEFAULT_THRESHOLD_HIGH = 0.88
DEFAULT_THRESHOLD_MEDIUM = 0.80


# =============================================================================
# CAPABILITY TABLE
# =============================================================================

GENERIC = ControllerCapability(
    controller_id="generic",
    can_auto_prepare=True,
    can_auto_submit=True,
    allowed_channels=DEFAULT_ALLOWED_CHANNELS,
    preferred_channel=DEFAULT_PREFERRED_CHANNEL,
    fallback_channel=DEFAULT_FALLBACK_CHANNEL,
    default_min_confidence=DEFAULT_MIN_CONFIDENCE,
    threshold_high=DEFAULT_THRESHOLD_HIGH,
    threshold_medium=DEFAULT_THRESHOLD_MEDIUM,
    auto_followups=True,
    followup_cadence_days=7,
    max_followups=2,
)

# Used for controllers that have no table entry at all
CONSERVATIVE_FALLBACK = replace(
    GENERIC,
    controller_id="unknown",
    can_auto_submit=False,
    allowed_channels=(Channel.EMAIL,),
    preferred_channel=Channel.EMAIL,
    fallback_channel=None,
    default_min_confidence=0.90,
    auto_followups=False,
    max_followups=0,
)

CAPABILITY_MATRIX: Dict[str, ControllerCapability] = {
    "generic": GENERIC,

    # Indian local-business directories
    "justdial": replace(
        GENERIC,
        controller_id="justdial",
        default_min_confidence=0.84,
        region_confidence_overrides={"MH": 0.86, "DL": 0.86},
        region_followup_cadence_days={"MH": 5},
        domains=("justdial.com",),
    ),
    "sulekha": replace(
        GENERIC,
        controller_id="sulekha",
        default_min_confidence=0.84,
        domains=("sulekha.com",),
    ),
    "indiamart": replace(
        GENERIC,
        controller_id="indiamart",
        default_min_confidence=0.85,
        followup_cadence_days=10,
        domains=("indiamart.com",),
    ),

    # People-search sites
    "spokeo": replace(
        GENERIC,
        controller_id="spokeo",
        default_min_confidence=0.84,
        domains=("spokeo.com",),
    ),
    "whitepages": replace(
        GENERIC,
        controller_id="whitepages",
        attachments_kind="pdf",
        domains=("whitepages.com",),
    ),
    "beenverified": replace(
        GENERIC,
        controller_id="beenverified",
        followup_cadence_days=5,
        max_followups=3,
        domains=("beenverified.com",),
    ),

    # Platforms that want their portal form, not email
    "truecaller": replace(
        GENERIC,
        controller_id="truecaller",
        can_auto_submit=False,
        preferred_channel=Channel.WEBFORM,
        fallback_channel=Channel.EMAIL,
        allowed_channels=(Channel.WEBFORM, Channel.EMAIL),
        default_min_confidence=0.94,
        sla_ack_minutes=60,
        domains=("truecaller.com",),
    ),
    "naukri": replace(
        GENERIC,
        controller_id="naukri",
        can_auto_prepare=False,
        default_min_confidence=0.95,
        sla_ack_minutes=180,
        domains=("naukri.com",),
    ),
    "olx": replace(
        GENERIC,
        controller_id="olx",
        can_auto_prepare=False,
        preferred_channel=Channel.WEBFORM,
        fallback_channel=Channel.EMAIL,
        allowed_channels=(Channel.WEBFORM, Channel.EMAIL),
        default_min_confidence=0.96,
        sla_ack_minutes=120,
        domains=("olx.in",),
    ),
    "shine": replace(
        GENERIC,
        controller_id="shine",
        default_min_confidence=0.95,
        sla_ack_minutes=180,
        domains=("shine.com",),
    ),
}

# Tie-break order for candidates with equal confidence; unlisted ids sort last
ADAPTER_PRIORITY: List[str] = ["justdial", "sulekha", "indiamart", "generic"]


def get_capability(controller_id: Optional[str]) -> Optional[ControllerCapability]:
    """Exact table entry, or None."""
    return CAPABILITY_MATRIX.get((controller_id or "").strip().lower())


def capability_for(controller_id: Optional[str]) -> ControllerCapability:
    """Table entry, "generic" for a blank id, conservative fallback otherwise."""
    key = (controller_id or "").strip().lower()
    if not key:
        return GENERIC
    return CAPABILITY_MATRIX.get(key) or replace(CONSERVATIVE_FALLBACK, controller_id=key)


def infer_controller_from_url(url: Optional[str]) -> str:
    """Substring match of the URL against known controller domains."""
    s = (url or "").lower()
    if not s:
        return "generic"
    for key, cap in CAPABILITY_MATRIX.items():
        for domain in cap.domains:
            if domain in s:
                return key
    return "generic"


def adapter_priority(controller_id: str) -> int:
    try:
        return ADAPTER_PRIORITY.index(controller_id)
    except ValueError:
        return len(ADAPTER_PRIORITY)
