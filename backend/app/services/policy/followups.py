"""
Follow-up Scheduling

Cadence comes from the capability table; region cadence overrides live in
their own table (region_followup_cadence_days), separate from region
confidence overrides.
"""
from datetime import datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ...models.db_models import ActionDB, ActionStatus, utcnow
from .capability import capability_for

MAX_FOLLOWUP_BATCH = 50


def next_followup_at(
    sent_at: datetime,
    controller_id: Optional[str],
    region: Optional[str] = None,
    followups_done: int = 0,
) -> Optional[datetime]:
    """When the next follow-up is due, or None if the quota is spent or disabled."""
    cap = capability_for(controller_id)
    if not cap.auto_followups or followups_done >= cap.max_followups:
        return None
    days = cap.cadence_days(region)
    if days <= 0:
        return None
    return sent_at + relativedelta(days=days)


def _last_touched(action: ActionDB) -> Optional[datetime]:
    return action.updated_at or action.created_at


def select_followup_candidates(
    actions: List[ActionDB],
    now: datetime,
    limit: int = 10,
    min_age: Optional[relativedelta] = None,
    email_only: bool = False,
) -> List[ActionDB]:
    """
    Pure selection over already-loaded rows.

    Eligible: status sent, not opted out, due (next_followup_at <= now),
    under the controller's follow-up quota, optionally old enough and on
    the email channel. Sorted by due time, then oldest touch first, then id.
    """
    limit = max(1, min(MAX_FOLLOWUP_BATCH, int(limit)))
    eligible = []

    for action in actions:
        if action.status != ActionStatus.SENT:
            continue
        info = action.verification_info or {}
        if info.get("no_followup") or info.get("block_followup"):
            continue
        if email_only and (action.reply_channel or "email").lower() != "email":
            continue
        if action.next_followup_at is None or action.next_followup_at > now:
            continue
        cap = capability_for(action.controller_key)
        if (action.followup_count or 0) >= cap.max_followups:
            continue
        if min_age is not None:
            touched = _last_touched(action)
            if touched is None or touched + min_age > now:
                continue
        eligible.append(action)

    eligible.sort(
        key=lambda a: (a.next_followup_at, _last_touched(a) or datetime.min, str(a.id))
    )
    return eligible[:limit]


class FollowupScheduler:
    """Persists follow-up due times on actions."""

    def __init__(self, db: Session):
        self.db = db

    def schedule_after_send(self, action: ActionDB) -> Optional[datetime]:
        sent_at = action.sent_at or utcnow()
        due = next_followup_at(sent_at, action.controller_key, action.region, action.followup_count or 0)
        action.next_followup_at = due
        return due

    def record_followup(self, action: ActionDB, now: Optional[datetime] = None) -> Optional[datetime]:
        """Count one follow-up as sent and schedule the next (if any)."""
        now = now or utcnow()
        action.followup_count = (action.followup_count or 0) + 1
        action.next_followup_at = next_followup_at(
            now, action.controller_key, action.region, action.followup_count
        )
        self.db.flush()
        return action.next_followup_at

    def due(self, now: Optional[datetime] = None, limit: int = 10, email_only: bool = False) -> List[ActionDB]:
        now = now or utcnow()
        rows = self.db.query(ActionDB).filter(
            ActionDB.status == ActionStatus.SENT,
            ActionDB.next_followup_at.isnot(None),
            ActionDB.next_followup_at <= now,
        ).order_by(ActionDB.next_followup_at).limit(MAX_FOLLOWUP_BATCH).all()
        return select_followup_candidates(rows, now, limit=limit, email_only=email_only)
