"""
Auto-Candidate Selector

Filters scan hits down to the ones that may become actions without a human
click. Every rejection carries a reason string; accepted candidates record
the checks they passed.

Order of checks per hit:
1. controller id: explicit adapter tag, else URL inference, else "generic"
2. effective policy: can_auto_prepare and kill switch
3. confidence floor = max(global floor, resolved policy floor)
4. URL allow-list
5. ambiguity phrases in the hit rationale
6. operator daily cap
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import ActionDB, utcnow
from ...models.policy import AutoCandidate, Hit, RejectedHit, SelectionResult
from .allowlist import is_allowed
from .capability import adapter_priority, infer_controller_from_url
from .confidence import band_for, clamp01
from .resolver import PolicyResolver

logger = logging.getLogger(__name__)

# Rationale fragments that signal a low-trust match
AMBIGUITY_PHRASES = (
    "different city",
    "not your",
    "mismatch",
    "possible duplicate",
)

DEFAULT_MAX_COUNT = 10


def is_ambiguous(why: Iterable[str]) -> bool:
    text = " ".join(why or []).lower()
    return any(phrase in text for phrase in AMBIGUITY_PHRASES)


class AutoCandidateSelector:
    """Selects hits eligible for automatic action creation."""

    def __init__(self, db: Optional[Session] = None, resolver: Optional[PolicyResolver] = None):
        self.db = db
        self.resolver = resolver or PolicyResolver(db)

    def _prepared_today(self, controller_id: str, now: datetime) -> int:
        if self.db is None:
            return 0
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            return self.db.query(func.count(ActionDB.id)).filter(
                ActionDB.controller_key == controller_id,
                ActionDB.created_at >= day_start,
                ActionDB.created_at < day_start + timedelta(days=1),
            ).scalar() or 0
        except SQLAlchemyError as e:
            logger.warning(f"Daily cap count failed for {controller_id}: {e}")
            return 0

    def select(
        self,
        hits: Iterable[Union[Hit, Dict]],
        max_count: int = DEFAULT_MAX_COUNT,
        region: Optional[str] = None,
        global_min_confidence: float = 0.82,
        now: Optional[datetime] = None,
    ) -> SelectionResult:
        now = now or utcnow()
        result = SelectionResult()
        accepted_per_controller: Counter = Counter()
        global_floor = clamp01(global_min_confidence)

        for raw in hits:
            hit = raw if isinstance(raw, Hit) else Hit.from_dict(raw)
            controller_id = (hit.adapter or infer_controller_from_url(hit.url)).strip().lower()
            hit_region = (hit.region or region or "").upper() or None

            policy = self.resolver.resolve(controller_id, hit_region)

            if not policy.can_auto_prepare:
                result.rejected.append(RejectedHit(hit, controller_id, "cannot-auto-prepare"))
                continue
            if policy.killed:
                result.rejected.append(RejectedHit(hit, controller_id, "killed"))
                continue

            score = clamp01(hit.confidence)
            floor = max(global_floor, policy.min_confidence)
            if score < floor:
                result.rejected.append(
                    RejectedHit(hit, controller_id, f"below-min:{score:.2f}<{floor:.2f}")
                )
                continue

            if not is_allowed(hit.url):
                result.rejected.append(RejectedHit(hit, controller_id, "url-not-allowlisted"))
                continue

            if is_ambiguous(hit.why):
                result.rejected.append(RejectedHit(hit, controller_id, "ambiguous-why"))
                continue

            if policy.daily_cap:
                used = self._prepared_today(controller_id, now) + accepted_per_controller[controller_id]
                if used >= policy.daily_cap:
                    result.rejected.append(RejectedHit(hit, controller_id, "daily-cap"))
                    continue

            reasons = ["confidence-ok", "adapter-capable", "url-allowlisted", "why-clear"]
            if any(layer.startswith("region:") for layer in policy.layers):
                reasons.append(f"region-floor:{hit_region}")

            accepted_per_controller[controller_id] += 1
            result.accepted.append(
                AutoCandidate(
                    hit=hit,
                    controller_id=controller_id,
                    band=band_for(score, controller_id),
                    min_confidence=floor,
                    reasons=reasons,
                )
            )

        # Highest confidence first, then fixed adapter priority
        result.accepted.sort(
            key=lambda c: (-clamp01(c.hit.confidence), adapter_priority(c.controller_id))
        )

        limit = max(0, int(max_count))
        for dropped in result.accepted[limit:]:
            result.rejected.append(RejectedHit(dropped.hit, dropped.controller_id, "over-max-count"))
        result.accepted = result.accepted[:limit]

        logger.info(
            f"Auto-candidate selection: {len(result.accepted)} accepted, {len(result.rejected)} rejected"
        )
        return result
