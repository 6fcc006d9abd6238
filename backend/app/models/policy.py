"""
Policy Data Contracts

Capability declarations, resolved policies, scan hits and selection results.
Capabilities are immutable reference data; EffectivePolicy is computed on
demand and never persisted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .db_models import Channel, ConfidenceBand


def coerce_channel(value: Any) -> Optional[Channel]:
    """Tolerant Channel parse. Unknown values become None."""
    if isinstance(value, Channel):
        return value
    if not value:
        return None
    try:
        return Channel(str(value).strip().lower())
    except ValueError:
        return None


# =============================================================================
# CAPABILITY TABLE ENTRY
# =============================================================================

@dataclass(frozen=True)
class ControllerCapability:
    """
    Static per-controller capability declaration.

    Region confidence overrides and region follow-up cadences are separate
    tables keyed by upper-case region code.
    """
    controller_id: str
    can_auto_prepare: bool = True
    can_auto_submit: bool = True
    allowed_channels: Tuple[Channel, ...] = (Channel.EMAIL, Channel.WEBFORM)
    preferred_channel: Channel = Channel.EMAIL
    fallback_channel: Optional[Channel] = Channel.WEBFORM
    default_min_confidence: float = 0.82
    threshold_high: Optional[float] = 0.88
    threshold_medium: Optional[float] = 0.80
    region_confidence_overrides: Dict[str, float] = field(default_factory=dict)
    auto_followups: bool = True
    followup_cadence_days: int = 7
    region_followup_cadence_days: Dict[str, int] = field(default_factory=dict)
    max_followups: int = 2
    sla_ack_minutes: int = 72 * 60
    sla_resolve_minutes: int = 30 * 24 * 60
    domains: Tuple[str, ...] = ()
    attachments_kind: str = "screenshot"

    def region_min_confidence(self, region: Optional[str]) -> Optional[float]:
        if not region:
            return None
        return self.region_confidence_overrides.get(region.upper())

    def cadence_days(self, region: Optional[str]) -> int:
        if region and region.upper() in self.region_followup_cadence_days:
            return self.region_followup_cadence_days[region.upper()]
        return self.followup_cadence_days


# =============================================================================
# OVERRIDES / RESOLVED POLICY
# =============================================================================

@dataclass
class PolicyOverride:
    """
    One override layer. None means "leave the lower layer alone".

    Used both for the live operator layer (controller_overrides rows) and the
    explicit per-call layer.
    """
    preferred_channel: Optional[Channel] = None
    fallback_channel: Optional[Channel] = None
    allowed_channels: Optional[List[Channel]] = None
    min_confidence: Optional[float] = None
    sla_ack_minutes: Optional[int] = None
    sla_resolve_minutes: Optional[int] = None
    can_auto_prepare: Optional[bool] = None
    can_auto_submit: Optional[bool] = None
    killed: Optional[bool] = None
    daily_cap: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PolicyOverride":
        data = data or {}
        allowed = data.get("allowed_channels")
        channels = None
        if isinstance(allowed, (list, tuple)):
            channels = [c for c in (coerce_channel(v) for v in allowed) if c is not None]
        return cls(
            preferred_channel=coerce_channel(data.get("preferred_channel")),
            fallback_channel=coerce_channel(data.get("fallback_channel")),
            allowed_channels=channels,
            min_confidence=data.get("min_confidence"),
            sla_ack_minutes=data.get("sla_ack_minutes"),
            sla_resolve_minutes=data.get("sla_resolve_minutes"),
            can_auto_prepare=data.get("can_auto_prepare"),
            can_auto_submit=data.get("can_auto_submit"),
            killed=data.get("killed"),
            daily_cap=data.get("daily_cap"),
        )


@dataclass
class EffectivePolicy:
    """Resolved view of one controller (+ optional region)."""
    controller_id: str
    region: Optional[str]
    preferred_channel: Channel
    fallback_channel: Optional[Channel]
    allowed_channels: List[Channel]
    min_confidence: float
    sla_ack_minutes: int
    sla_resolve_minutes: int
    can_auto_prepare: bool
    can_auto_submit: bool
    killed: bool = False
    daily_cap: Optional[int] = None
    layers: List[str] = field(default_factory=list)  # merge layers that contributed

    def allows(self, channel: Optional[Channel]) -> bool:
        return channel is not None and channel in self.allowed_channels

    @property
    def sla_minutes(self) -> Dict[str, int]:
        return {"acknowledge": self.sla_ack_minutes, "resolve": self.sla_resolve_minutes}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "controller_id": self.controller_id,
            "region": self.region,
            "preferred_channel": self.preferred_channel.value,
            "fallback_channel": self.fallback_channel.value if self.fallback_channel else None,
            "allowed_channels": [c.value for c in self.allowed_channels],
            "min_confidence": self.min_confidence,
            "sla_minutes": self.sla_minutes,
            "can_auto_prepare": self.can_auto_prepare,
            "can_auto_submit": self.can_auto_submit,
            "killed": self.killed,
            "daily_cap": self.daily_cap,
            "layers": list(self.layers),
        }


# =============================================================================
# SCAN HITS / SELECTION
# =============================================================================

@dataclass
class Hit:
    """Candidate produced by the discovery collaborator."""
    broker: str
    url: str
    category: str = "directory"
    confidence: float = 0.0
    why: List[str] = field(default_factory=list)
    preview: Dict[str, Optional[str]] = field(default_factory=dict)  # name/email/city previews
    adapter: Optional[str] = None
    region: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Hit":
        try:
            confidence = float(data.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        why = data.get("why") or []
        return cls(
            broker=str(data.get("broker") or ""),
            url=str(data.get("url") or ""),
            category=str(data.get("category") or "directory"),
            confidence=confidence,
            why=[str(w) for w in why] if isinstance(why, (list, tuple)) else [str(why)],
            preview=dict(data.get("preview") or {}),
            adapter=data.get("adapter") or None,
            region=data.get("region") or data.get("state") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "broker": self.broker,
            "url": self.url,
            "category": self.category,
            "confidence": self.confidence,
            "why": list(self.why),
            "preview": dict(self.preview),
            "adapter": self.adapter,
            "region": self.region,
        }


@dataclass
class AutoCandidate:
    """Hit accepted for automatic action creation."""
    hit: Hit
    controller_id: str
    band: ConfidenceBand
    min_confidence: float
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hit": self.hit.to_dict(),
            "controller_id": self.controller_id,
            "band": self.band.value,
            "min_confidence": self.min_confidence,
            "reasons": list(self.reasons),
        }


@dataclass
class RejectedHit:
    hit: Hit
    controller_id: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"hit": self.hit.to_dict(), "controller_id": self.controller_id, "reason": self.reason}


@dataclass
class SelectionResult:
    accepted: List[AutoCandidate] = field(default_factory=list)
    rejected: List[RejectedHit] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": [c.to_dict() for c in self.accepted],
            "rejected": [r.to_dict() for r in self.rejected],
        }
