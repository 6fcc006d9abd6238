"""
Confidence Bander

Maps a numeric match score into high / medium / low using the controller's
thresholds. Pure functions, no I/O.
"""
import math
from typing import Optional

from ...models.db_models import ConfidenceBand
from .capability import capability_for, DEFAULT_THRESHOLD_HIGH, DEFAULT_THRESHOLD_MEDIUM


def clamp01(value) -> float:
    """Clamp to [0, 1]. Non-numeric and NaN become 0."""
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(n):
        return 0.0
    return max(0.0, min(1.0, n))


def band_for(score, controller_id: Optional[str] = None) -> ConfidenceBand:
    cap = capability_for(controller_id)
    s = clamp01(score)

    high = clamp01(cap.threshold_high if cap.threshold_high is not None else DEFAULT_THRESHOLD_HIGH)
    medium = clamp01(cap.threshold_medium if cap.threshold_medium is not None else DEFAULT_THRESHOLD_MEDIUM)

    if s >= high:
        return ConfidenceBand.HIGH
    if s >= medium:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


def can_auto_followup(band: ConfidenceBand, controller_id: Optional[str] = None) -> bool:
    """Automatic follow-ups need an enabled cadence, a quota, and a medium+ band."""
    cap = capability_for(controller_id)
    if not cap.auto_followups or cap.max_followups <= 0:
        return False
    return band in (ConfidenceBand.HIGH, ConfidenceBand.MEDIUM)
