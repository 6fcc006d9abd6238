"""
Proof Ledger

Canonical envelope (non-PII fields only, sorted keys, compact separators):
    controller, category, redacted identity previews, evidence URLs,
    sha256 of the draft subject

The signing timestamp is ledger metadata and is NOT part of the hashed
content, so the same logical envelope always produces the same hash. That
hash plus the controller key is the idempotency key for actions.

The signature covers the content hash, so a (hash, signature) pair can be
verified without the envelope itself.
"""
import hashlib
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ...config import EngineSettings, get_settings
from ...models.db_models import ActionDB, ProofRecordDB, utcnow
from ...models.envelope import ProofResult
from .signer import Signer, get_signer

logger = logging.getLogger(__name__)

IDENTITY_PREVIEW_KEYS = ("name", "email", "city")


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_envelope(
    controller_key: str,
    category: Optional[str],
    redacted_identity: Optional[Dict[str, Any]],
    evidence_urls: Iterable[str],
    draft_subject: Optional[str],
) -> Dict[str, Any]:
    identity = redacted_identity or {}
    return {
        "controller": (controller_key or "").strip().lower(),
        "category": (category or "").strip().lower(),
        "redacted_identity": {
            k: (identity.get(k) or None) for k in IDENTITY_PREVIEW_KEYS
        },
        # order-insensitive: the same evidence set hashes the same
        "evidence_urls": sorted(evidence_urls or []),
        "draft_subject_hash": sha256_hex(draft_subject) if draft_subject else None,
    }


def canonical_bytes(envelope: Dict[str, Any]) -> bytes:
    return json.dumps(envelope, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class ProofLedger:
    """Hashes, signs and records action envelopes."""

    def __init__(self, db: Session, signer: Optional[Signer] = None, settings: Optional[EngineSettings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self._signer = signer

    @property
    def signer(self) -> Signer:
        # Resolved lazily so a misconfigured backend fails at first use, closed
        if self._signer is None:
            self._signer = get_signer(self.settings)
        return self._signer

    def content_hash(self, envelope: Dict[str, Any]) -> str:
        return hashlib.sha256(canonical_bytes(envelope)).hexdigest()

    def sign(self, envelope: Dict[str, Any], now: Optional[datetime] = None) -> ProofResult:
        digest = self.content_hash(envelope)
        signature = self.signer.sign(digest.encode("ascii"))
        return ProofResult(
            content_hash=digest,
            signature=signature,
            algorithm=self.signer.algorithm,
            key_id=self.signer.key_id,
            signed_at=now or utcnow(),
            evidence_count=len(envelope.get("evidence_urls") or []),
        )

    def verify(self, content_hash: str, signature: str) -> bool:
        if not content_hash or not signature:
            return False
        return self.signer.verify(content_hash.strip().encode("ascii"), signature)

    def find_existing(self, controller_key: str, content_hash: str) -> Optional[ActionDB]:
        return self.db.query(ActionDB).filter(
            ActionDB.controller_key == controller_key,
            ActionDB.proof_hash == content_hash,
        ).first()

    def record(self, proof: ProofResult, controller_key: str, action_id: Optional[str] = None) -> ProofRecordDB:
        """Append one proof record. Caller commits."""
        row = ProofRecordDB(
            id=str(uuid.uuid4()),
            action_id=action_id,
            controller_key=controller_key,
            content_hash=proof.content_hash,
            signature=proof.signature,
            algorithm=proof.algorithm,
            key_id=proof.key_id,
            evidence_count=proof.evidence_count,
            signed_at=proof.signed_at,
        )
        self.db.add(row)
        logger.info(f"Proof recorded for {controller_key}: {proof.content_hash[:12]} ({proof.algorithm})")
        return row
