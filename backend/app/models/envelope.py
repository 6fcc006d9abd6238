"""
Action Envelope Contracts

Input shapes for action creation and the outcomes of dispatch and signing.
Draft content is opaque text from the draft-generation collaborator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .db_models import ActionDB, Channel


SUBJECT_MAX_CHARS = 140
BODY_MAX_CHARS = 1800
MAX_EVIDENCE_URLS = 20


@dataclass
class DraftContent:
    """Draft from the generation collaborator. Treated as opaque text."""
    subject: str = ""
    body: str = ""
    fields: Dict[str, Any] = field(default_factory=dict)  # action, data_categories, legal_basis, reply_to_hint
    attachments: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DraftContent":
        data = data or {}
        return cls(
            subject=str(data.get("subject") or ""),
            body=str(data.get("body") or ""),
            fields=dict(data.get("fields") or {}),
            attachments=list(data.get("attachments") or []),
        )


@dataclass
class CreateActionInput:
    """Everything needed to persist one ActionEnvelope."""
    controller_key: str
    redacted_identity: Dict[str, Optional[str]]
    controller_name: Optional[str] = None
    category: str = "directory"
    evidence_urls: List[str] = field(default_factory=list)
    draft: DraftContent = field(default_factory=DraftContent)
    preferred_channel: Channel = Channel.EMAIL
    reply_channel: str = "email"
    reply_email_preview: Optional[str] = None
    subject_id: Optional[str] = None
    region: Optional[str] = None
    confidence: Optional[float] = None
    initial_status: Optional[str] = None  # "draft" (default) or "prepared"


@dataclass
class ProofResult:
    """Output of ProofLedger.sign()."""
    content_hash: str
    signature: str
    algorithm: str
    key_id: str
    signed_at: datetime
    evidence_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.content_hash,
            "signature": self.signature,
            "algorithm": self.algorithm,
            "key_id": self.key_id,
            "signed_at": self.signed_at.isoformat(),
            "evidence_count": self.evidence_count,
        }


@dataclass
class ActionCreateResult:
    action: ActionDB
    idempotent: bool = False
    proof: Optional[ProofResult] = None


@dataclass
class DispatchResult:
    """
    Outcome of one Dispatch Router run.

    For the webform channel, ok=True means the job was enqueued; completion
    is tracked on the job row.
    """
    ok: bool
    channel: Optional[Channel] = None
    provider_id: Optional[str] = None
    job_id: Optional[str] = None
    error: Optional[str] = None
    hint: Optional[str] = None
    attempted: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "channel": self.channel.value if self.channel else None,
            "provider_id": self.provider_id,
            "job_id": self.job_id,
            "error": self.error,
            "hint": self.hint,
            "attempted": list(self.attempted),
        }
