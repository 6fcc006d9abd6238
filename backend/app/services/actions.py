"""
Action Service

Creates ActionEnvelope rows and moves them through their lifecycle.

Principles:
- Only redacted previews and allow-listed evidence are stored
- Draft text is length-capped and scrubbed before storage
- (controller_key, proof_hash) is the idempotency key
- Status only moves forward; see ACTION_TRANSITIONS
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import EngineSettings, get_settings
from ..errors import InvalidInput, InvalidTransition
from ..models.db_models import ACTION_TRANSITIONS, ActionDB, ActionStatus, utcnow
from ..models.envelope import (
    BODY_MAX_CHARS,
    MAX_EVIDENCE_URLS,
    SUBJECT_MAX_CHARS,
    ActionCreateResult,
    CreateActionInput,
)
from .policy.allowlist import filter_allowed
from .policy.followups import FollowupScheduler
from .privacy import redact_text, scrub_text
from .proofs import ProofLedger, canonical_envelope

logger = logging.getLogger(__name__)

INITIAL_STATUSES = {ActionStatus.DRAFT, ActionStatus.PREPARED}


def _clean_identity(identity: Dict[str, Any]) -> Dict[str, Optional[str]]:
    out = {}
    for key in ("name", "email", "city"):
        value = identity.get(key)
        out[key] = redact_text(str(value).strip())[:120] if value else None
    return out


class ActionService:
    """Create and transition actions."""

    def __init__(self, db: Session, ledger: Optional[ProofLedger] = None, settings: Optional[EngineSettings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.ledger = ledger or ProofLedger(db, settings=self.settings)

    def get(self, action_id: str) -> Optional[ActionDB]:
        return self.db.get(ActionDB, action_id)

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_action(self, data: CreateActionInput) -> ActionCreateResult:
        controller_key = (data.controller_key or "").strip().lower()
        if not controller_key:
            raise InvalidInput("controller_key is required")
        if not isinstance(data.redacted_identity, dict):
            raise InvalidInput("redacted_identity must be an object of previews")
        if not (data.draft.subject or "").strip():
            raise InvalidInput("draft subject is required")

        status = ActionStatus(data.initial_status or ActionStatus.DRAFT.value)
        if status not in INITIAL_STATUSES:
            raise InvalidInput(f"actions cannot be created in status {status.value}")

        subject = scrub_text(data.draft.subject.strip())[:SUBJECT_MAX_CHARS]
        body = scrub_text(data.draft.body or "")[:BODY_MAX_CHARS]
        identity = _clean_identity(data.redacted_identity)
        evidence = filter_allowed(data.evidence_urls or [], MAX_EVIDENCE_URLS)

        envelope = canonical_envelope(controller_key, data.category, identity, evidence, subject)
        proof = self.ledger.sign(envelope)

        existing = self.ledger.find_existing(controller_key, proof.content_hash)
        if existing:
            logger.info(f"Idempotent create for {controller_key}: returning action {existing.id}")
            return ActionCreateResult(action=existing, idempotent=True, proof=proof)

        action = ActionDB(
            id=str(uuid.uuid4()),
            subject_id=data.subject_id,
            controller_key=controller_key,
            controller_name=data.controller_name,
            category=data.category or "directory",
            region=(data.region or "").upper() or None,
            confidence=data.confidence,
            status=status,
            redacted_identity=identity,
            evidence_urls=evidence,
            draft_subject=subject,
            draft_body=body,
            fields={k: v for k, v in (data.draft.fields or {}).items() if v is not None},
            reply_channel=data.reply_channel or "email",
            reply_email_preview=redact_text(data.reply_email_preview) if data.reply_email_preview else None,
            preferred_channel=data.preferred_channel,
            proof_hash=proof.content_hash,
            proof_sig=proof.signature,
            proof_key_id=proof.key_id,
            retry_count=0,
            followup_count=0,
        )
        self.db.add(action)
        self.ledger.record(proof, controller_key, action_id=action.id)

        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race on (controller_key, proof_hash)
            self.db.rollback()
            existing = self.ledger.find_existing(controller_key, proof.content_hash)
            if existing is None:
                raise
            return ActionCreateResult(action=existing, idempotent=True, proof=proof)

        self.db.refresh(action)
        logger.info(
            f"Action {action.id} created for {controller_key} "
            f"({status.value}, {len(evidence)} evidence urls)"
        )
        return ActionCreateResult(action=action, idempotent=False, proof=proof)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def transition(self, action: ActionDB, target: ActionStatus, **fields) -> bool:
        """
        Move `action` to `target`, setting any extra column values.

        Returns False (and changes nothing) when already in `target`.
        Raises InvalidTransition for backwards moves. Caller commits.
        """
        current = ActionStatus(action.status)
        if current == target:
            return False
        if target not in ACTION_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Action {action.id} cannot move {current.value} -> {target.value}"
            )
        action.status = target
        for name, value in fields.items():
            setattr(action, name, value)
        action.updated_at = utcnow()
        logger.info(f"Action {action.id}: {current.value} -> {target.value}")
        return True

    def mark_sent(self, action: ActionDB, channel, provider_id: Optional[str], now: Optional[datetime] = None) -> bool:
        changed = self.transition(
            action,
            ActionStatus.SENT,
            sent_channel=channel,
            provider_id=provider_id,
            sent_at=now or utcnow(),
            last_error=None,
        )
        if changed:
            FollowupScheduler(self.db).schedule_after_send(action)
        return changed
