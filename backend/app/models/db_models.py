"""
Unlist Dispatch Engine - SQLAlchemy ORM Models
Persistent storage for actions, webform jobs, operator controls and proofs
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Boolean,
    Enum as SQLEnum, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls):
    """Store enum values (not names) as portable VARCHAR."""
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda cls: [member.value for member in cls],
    )


# =============================================================================
# ENUMS
# =============================================================================

class Channel(str, Enum):
    """Communication channels a controller can be reached through."""
    EMAIL = "email"
    WEBFORM = "webform"
    API = "api"


class ActionStatus(str, Enum):
    """
    Lifecycle of one removal/correction attempt.

    draft -> prepared -> sent -> {escalate_pending | failed}
    Only forward moves are legal; see ACTION_TRANSITIONS.
    """
    DRAFT = "draft"
    PREPARED = "prepared"
    SENT = "sent"
    ESCALATE_PENDING = "escalate_pending"
    FAILED = "failed"


class JobStatus(str, Enum):
    """Webform job lifecycle. Retries return a job to QUEUED on the same row."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ConfidenceBand(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Allowed forward transitions for ActionDB.status.
# sent -> escalate_pending is the one explicit failure transition out of sent.
ACTION_TRANSITIONS = {
    ActionStatus.DRAFT: {ActionStatus.PREPARED, ActionStatus.SENT, ActionStatus.ESCALATE_PENDING, ActionStatus.FAILED},
    ActionStatus.PREPARED: {ActionStatus.SENT, ActionStatus.ESCALATE_PENDING, ActionStatus.FAILED},
    ActionStatus.SENT: {ActionStatus.ESCALATE_PENDING, ActionStatus.FAILED},
    ActionStatus.ESCALATE_PENDING: {ActionStatus.FAILED},
    ActionStatus.FAILED: set(),
}

TERMINAL_JOB_STATUSES = {JobStatus.SUCCEEDED, JobStatus.FAILED}


# =============================================================================
# ACTIONS
# =============================================================================

class ActionDB(Base):
    """
    One removal/correction attempt against a controller.

    Never deleted, only status-transitioned. Holds redacted identity previews
    and allow-listed evidence only; no raw PII.
    """
    __tablename__ = "actions"
    __table_args__ = (
        UniqueConstraint("controller_key", "proof_hash", name="uq_actions_controller_proof"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    subject_id = Column(String(36), nullable=True, index=True)

    controller_key = Column(String(64), nullable=False, index=True)
    controller_name = Column(String(255), nullable=True)
    category = Column(String(50), default="directory")
    region = Column(String(8), nullable=True)  # ISO state/region code, e.g. "MH"
    confidence = Column(Float, nullable=True)

    status = Column(_enum(ActionStatus), default=ActionStatus.DRAFT, nullable=False, index=True)

    # Redacted content only
    redacted_identity = Column(JSON, default=dict)  # {"name": "A•••", "email": "a•••@••••.com", "city": "Pune"}
    evidence_urls = Column(JSON, default=list)      # allow-listed, deduplicated, capped
    draft_subject = Column(String(140), nullable=True)
    draft_body = Column(Text, nullable=True)
    fields = Column(JSON, default=dict)             # {"action": ..., "data_categories": [...], "legal_basis": ...}
    reply_channel = Column(String(20), default="email")
    reply_email_preview = Column(String(255), nullable=True)

    # Dispatch state
    preferred_channel = Column(_enum(Channel), default=Channel.EMAIL)
    sent_channel = Column(_enum(Channel), nullable=True)
    provider_id = Column(String(255), nullable=True)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)
    retry_count = Column(Integer, default=0)
    verification_info = Column(JSON, nullable=True)

    # Follow-ups
    next_followup_at = Column(DateTime, nullable=True)
    followup_count = Column(Integer, default=0)

    # Proof of action
    proof_hash = Column(String(64), nullable=True)
    proof_sig = Column(Text, nullable=True)
    proof_key_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    sent_at = Column(DateTime, nullable=True)

    # Relationships
    webform_jobs = relationship("WebformJobDB", back_populates="action")


# =============================================================================
# WEBFORM QUEUE
# =============================================================================

class WebformJobDB(Base):
    """
    Durable browser-automation job.

    One row per attempt-cycle: retries bump `attempt` and move
    `scheduled_at` forward on this row instead of inserting new rows.
    """
    __tablename__ = "webform_jobs"
    __table_args__ = (
        Index("ix_webform_jobs_status_scheduled", "status", "scheduled_at"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    action_id = Column(String(36), ForeignKey("actions.id", ondelete="SET NULL"), nullable=True, index=True)
    subject_id = Column(String(36), nullable=True)
    controller_key = Column(String(64), nullable=True, index=True)

    url = Column(Text, nullable=True)  # explicit target form URL, may be empty
    payload = Column(JSON, default=dict)  # {"name", "email", "phone", "message"} minimal/redacted

    status = Column(_enum(JobStatus), default=JobStatus.QUEUED, nullable=False)
    attempt = Column(Integer, default=0, nullable=False)
    scheduled_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    result = Column(JSON, nullable=True)  # confirmation text, artifact hashes/paths, ticket id or error
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    action = relationship("ActionDB", back_populates="webform_jobs")


# =============================================================================
# OPERATOR CONTROLS
# =============================================================================

class ControllerOverrideDB(Base):
    """
    Live operator override for one controller.

    Merged above the capability table and region overrides, below an explicit
    caller override. NULL columns mean "no opinion".
    """
    __tablename__ = "controller_overrides"

    controller_key = Column(String(64), primary_key=True)

    preferred_channel = Column(String(20), nullable=True)
    fallback_channel = Column(String(20), nullable=True)
    allowed_channels = Column(JSON, nullable=True)  # ["email", "webform"]
    min_confidence = Column(Float, nullable=True)   # honoured only inside 0.50..0.99

    killed = Column(Boolean, default=False)         # kill switch for auto-preparation
    daily_cap = Column(Integer, nullable=True)      # 0 or NULL = unlimited

    sla_ack_minutes = Column(Integer, nullable=True)
    sla_resolve_minutes = Column(Integer, nullable=True)

    updated_by = Column(String(255), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ControllerProfileDB(Base):
    """Automation hints for a controller's web form."""
    __tablename__ = "controller_profiles"

    id = Column(String(36), primary_key=True)  # UUID
    controller_key = Column(String(64), unique=True, nullable=False, index=True)
    domain = Column(String(255), nullable=True, index=True)  # "truecaller.com"
    form_url = Column(Text, nullable=True)

    field_selectors = Column(JSON, nullable=True)   # {"name": ["input#name", ...], "email": [...]}
    submit_selectors = Column(JSON, nullable=True)  # ["button[type=submit]", ...]
    captcha = Column(JSON, nullable=True)           # {"kind": "recaptcha", "selector": "..."}
    throttle_ms = Column(Integer, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# PROOF LEDGER / AUDIT
# =============================================================================

class ProofRecordDB(Base):
    """Signed proof of one action envelope. Append-only."""
    __tablename__ = "proof_ledger"

    id = Column(String(36), primary_key=True)  # UUID
    action_id = Column(String(36), ForeignKey("actions.id", ondelete="SET NULL"), nullable=True, index=True)
    controller_key = Column(String(64), nullable=False, index=True)

    content_hash = Column(String(64), nullable=False, index=True)  # sha256 hex of canonical envelope
    signature = Column(Text, nullable=False)
    algorithm = Column(String(32), nullable=False)  # hmac-sha256 | ed25519 | unsigned
    key_id = Column(String(255), nullable=False)
    evidence_count = Column(Integer, default=0)

    signed_at = Column(DateTime, default=utcnow, nullable=False)


class DispatchLogDB(Base):
    """One row per channel attempt made by the Dispatch Router."""
    __tablename__ = "dispatch_log"

    id = Column(String(36), primary_key=True)  # UUID
    action_id = Column(String(36), ForeignKey("actions.id", ondelete="SET NULL"), nullable=True, index=True)
    controller_key = Column(String(64), nullable=False, index=True)

    channel = Column(_enum(Channel), nullable=True)
    ok = Column(Boolean, default=False)
    provider_id = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)
    note = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow)
