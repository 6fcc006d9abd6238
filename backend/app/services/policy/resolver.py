"""
Policy Resolver

Merges, lowest to highest precedence:
1. compiled default policy
2. capability table entry (conservative fallback when absent)
3. per-region confidence override (can only raise the floor)
4. live operator override (controller_overrides row)
5. explicit caller override

Never raises. A failed live-override lookup is logged and skipped, and any
other unexpected input degrades to the conservative policy.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import Channel, ControllerOverrideDB
from ...models.policy import (
    ControllerCapability,
    EffectivePolicy,
    PolicyOverride,
    coerce_channel,
)
from .capability import (
    CONSERVATIVE_FALLBACK,
    DEFAULT_ALLOWED_CHANNELS,
    DEFAULT_FALLBACK_CHANNEL,
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_PREFERRED_CHANNEL,
    DEFAULT_SLA_ACK_MINUTES,
    DEFAULT_SLA_RESOLVE_MINUTES,
    capability_for,
    get_capability,
)

logger = logging.getLogger(__name__)

# Operator min_confidence values outside this band are ignored
OPERATOR_MIN_CONFIDENCE_RANGE = (0.50, 0.99)


def default_policy(controller_id: str, region: Optional[str]) -> EffectivePolicy:
    """Layer 1: compiled defaults."""
    return EffectivePolicy(
        controller_id=controller_id,
        region=region,
        preferred_channel=DEFAULT_PREFERRED_CHANNEL,
        fallback_channel=DEFAULT_FALLBACK_CHANNEL,
        allowed_channels=list(DEFAULT_ALLOWED_CHANNELS),
        min_confidence=DEFAULT_MIN_CONFIDENCE,
        sla_ack_minutes=DEFAULT_SLA_ACK_MINUTES,
        sla_resolve_minutes=DEFAULT_SLA_RESOLVE_MINUTES,
        can_auto_prepare=True,
        can_auto_submit=True,
        layers=["default"],
    )


def apply_capability(policy: EffectivePolicy, cap: ControllerCapability, layer: str) -> EffectivePolicy:
    """Layer 2: capability table entry replaces every default it declares."""
    policy.preferred_channel = cap.preferred_channel
    policy.fallback_channel = cap.fallback_channel
    policy.allowed_channels = list(cap.allowed_channels)
    policy.min_confidence = cap.default_min_confidence
    policy.sla_ack_minutes = cap.sla_ack_minutes
    policy.sla_resolve_minutes = cap.sla_resolve_minutes
    policy.can_auto_prepare = cap.can_auto_prepare
    policy.can_auto_submit = cap.can_auto_submit
    policy.layers.append(layer)
    return policy


def apply_region(policy: EffectivePolicy, cap: ControllerCapability) -> EffectivePolicy:
    """Layer 3: region confidence override."""
    floor = cap.region_min_confidence(policy.region)
    if floor is not None:
        policy.min_confidence = max(policy.min_confidence, float(floor))
        policy.layers.append(f"region:{policy.region}")
    return policy


def apply_override(policy: EffectivePolicy, override: Optional[PolicyOverride], layer: str) -> EffectivePolicy:
    """Layers 4 and 5: every non-None field replaces the lower layer."""
    if override is None:
        return policy

    touched = False
    if override.allowed_channels is not None:
        policy.allowed_channels = list(dict.fromkeys(override.allowed_channels))
        touched = True
    if override.preferred_channel is not None:
        policy.preferred_channel = override.preferred_channel
        touched = True
    if override.fallback_channel is not None:
        policy.fallback_channel = override.fallback_channel
        touched = True
    if override.min_confidence is not None:
        low, high = OPERATOR_MIN_CONFIDENCE_RANGE
        value = float(override.min_confidence)
        if low <= value <= high:
            policy.min_confidence = value
            touched = True
        else:
            logger.warning(
                f"Ignoring out-of-range min_confidence={value} for {policy.controller_id} ({layer})"
            )
    if override.sla_ack_minutes is not None:
        policy.sla_ack_minutes = int(override.sla_ack_minutes)
        touched = True
    if override.sla_resolve_minutes is not None:
        policy.sla_resolve_minutes = int(override.sla_resolve_minutes)
        touched = True
    if override.can_auto_prepare is not None:
        policy.can_auto_prepare = bool(override.can_auto_prepare)
        touched = True
    if override.can_auto_submit is not None:
        policy.can_auto_submit = bool(override.can_auto_submit)
        touched = True
    if override.killed is not None:
        policy.killed = bool(override.killed)
        touched = True
    if override.daily_cap is not None:
        policy.daily_cap = int(override.daily_cap) if override.daily_cap > 0 else None
        touched = True

    if touched:
        policy.layers.append(layer)
    return policy


def override_from_row(row: ControllerOverrideDB) -> PolicyOverride:
    allowed = None
    if isinstance(row.allowed_channels, list):
        allowed = [c for c in (coerce_channel(v) for v in row.allowed_channels) if c is not None]
    return PolicyOverride(
        preferred_channel=coerce_channel(row.preferred_channel),
        fallback_channel=coerce_channel(row.fallback_channel),
        allowed_channels=allowed,
        min_confidence=row.min_confidence,
        sla_ack_minutes=row.sla_ack_minutes,
        sla_resolve_minutes=row.sla_resolve_minutes,
        killed=bool(row.killed) if row.killed is not None else None,
        daily_cap=row.daily_cap,
    )


class PolicyResolver:
    """
    Resolves the EffectivePolicy for one controller.

    `db` may be None, in which case the live operator layer is skipped.
    """

    def __init__(self, db: Optional[Session] = None):
        self.db = db

    def load_live_override(self, controller_id: str) -> Optional[PolicyOverride]:
        if self.db is None:
            return None
        try:
            row = self.db.get(ControllerOverrideDB, controller_id)
        except SQLAlchemyError as e:
            logger.warning(f"Live override lookup failed for {controller_id}: {e}")
            return None
        return override_from_row(row) if row else None

    def resolve(
        self,
        controller_id: Optional[str],
        region: Optional[str] = None,
        override: Optional[PolicyOverride] = None,
    ) -> EffectivePolicy:
        key = (controller_id or "").strip().lower() or "generic"
        region_code = (region or "").strip().upper() or None

        try:
            policy = default_policy(key, region_code)

            entry = get_capability(key)
            cap = entry or capability_for(key)
            apply_capability(policy, cap, "capability" if entry else "fallback")
            apply_region(policy, cap)

            apply_override(policy, self.load_live_override(key), "operator")
            apply_override(policy, override, "explicit")
            return policy
        except Exception as e:  # resolver must never raise
            logger.error(f"Policy resolution failed for {key}, using conservative fallback: {e}")
            policy = default_policy(key, region_code)
            return apply_capability(policy, CONSERVATIVE_FALLBACK, "fallback")


def channel_order(policy: EffectivePolicy, preferred: Optional[Channel]) -> list:
    """
    At most two channels: the drafted preferred one (if allowed), then one
    fallback. The fallback is the policy's designated fallback when allowed,
    otherwise the first allowed channel not already in the list.
    """
    order = []
    if policy.allows(preferred):
        order.append(preferred)

    fallback = policy.fallback_channel
    if not policy.allows(fallback) or fallback in order:
        fallback = next(
            (
                c for c in [policy.preferred_channel, *policy.allowed_channels]
                if policy.allows(c) and c not in order
            ),
            None,
        )
    if fallback is not None:
        order.append(fallback)
    return order
