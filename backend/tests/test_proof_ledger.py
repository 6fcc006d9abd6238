"""
Tests for the Proof Ledger and action creation.

1. Hash is stable across signing times (timestamp not hashed)
2. Signing backends and fail-closed behaviour
3. Idempotent action creation on (controller, hash)
4. Scrubbing, caps and allow-listing before storage
5. Forward-only status transitions
"""
from datetime import datetime

import pytest

from app.config import EngineSettings
from app.errors import InvalidInput, InvalidTransition, SigningUnavailable
from app.models.db_models import ActionDB, ActionStatus, Channel, ProofRecordDB
from app.models.envelope import DraftContent
from app.services.actions import ActionService
from app.services.privacy import redact_for_logs, scrub_text
from app.services.proofs import (
    Ed25519Signer,
    HmacSigner,
    ProofLedger,
    UnsignedSigner,
    canonical_envelope,
    get_signer,
)

from conftest import make_action_input


def envelope(**overrides):
    data = dict(
        controller_key="justdial",
        category="directory",
        redacted_identity={"name": "A•••", "email": None, "city": "Pune"},
        evidence_urls=["https://www.justdial.com/listing/1"],
        draft_subject="Remove my listing",
    )
    data.update(overrides)
    return canonical_envelope(**data)


# =============================================================================
# TEST: HASHING / SIGNING
# =============================================================================

class TestProofLedgerSigning:

    def test_hash_ignores_signing_time(self, db, settings):
        ledger = ProofLedger(db, settings=settings)
        first = ledger.sign(envelope(), now=datetime(2026, 1, 1))
        second = ledger.sign(envelope(), now=datetime(2026, 6, 1))

        assert first.content_hash == second.content_hash
        assert first.signature == second.signature
        assert first.signed_at != second.signed_at

    def test_hash_changes_with_content(self, db, settings):
        ledger = ProofLedger(db, settings=settings)
        a = ledger.sign(envelope())
        b = ledger.sign(envelope(draft_subject="Different subject"))
        assert a.content_hash != b.content_hash

    def test_envelope_holds_subject_hash_not_subject(self):
        env = envelope()
        assert "Remove my listing" not in str(env)
        assert len(env["draft_subject_hash"]) == 64

    def test_verify(self, db, settings):
        ledger = ProofLedger(db, settings=settings)
        proof = ledger.sign(envelope())

        assert ledger.verify(proof.content_hash, proof.signature) is True
        assert ledger.verify(proof.content_hash, "0" * 64) is False
        assert ledger.verify("", proof.signature) is False

    def test_ed25519_backend(self, db, settings):
        ledger = ProofLedger(db, signer=Ed25519Signer.generate("k1"), settings=settings)
        proof = ledger.sign(envelope())

        assert proof.algorithm == "ed25519"
        assert ledger.verify(proof.content_hash, proof.signature) is True
        other = ledger.signer.sign(b"something else")
        assert ledger.verify(proof.content_hash, other) is False


class TestSignerSelection:

    def test_hmac_without_key_fails_closed(self):
        with pytest.raises(SigningUnavailable):
            get_signer(EngineSettings(signing_backend="hmac", ledger_hmac_key=""))

    def test_ed25519_without_key_fails_closed(self):
        with pytest.raises(SigningUnavailable):
            get_signer(EngineSettings(signing_backend="ed25519"))

    def test_unsigned_refused_in_production(self):
        with pytest.raises(SigningUnavailable):
            get_signer(EngineSettings(signing_backend="unsigned", app_env="production"))

    def test_unsigned_is_explicit_dev_mode(self, caplog):
        signer = get_signer(EngineSettings(signing_backend="unsigned", app_env="development"))
        assert isinstance(signer, UnsignedSigner)
        with caplog.at_level("WARNING"):
            signer.sign(b"abc")
        assert "UNSIGNED" in caplog.text

    def test_hmac_selected(self):
        signer = get_signer(EngineSettings(ledger_hmac_key="k"))
        assert isinstance(signer, HmacSigner)


# =============================================================================
# TEST: ACTION CREATION
# =============================================================================

class TestActionCreation:

    def test_identical_envelopes_stored_once(self, db, settings):
        service = ActionService(db, settings=settings)

        first = service.create_action(make_action_input())
        second = service.create_action(make_action_input())

        assert first.idempotent is False
        assert second.idempotent is True
        assert second.action.id == first.action.id
        assert db.query(ActionDB).count() == 1
        assert db.query(ProofRecordDB).count() == 1

    def test_evidence_order_does_not_change_identity(self, db, settings):
        service = ActionService(db, settings=settings)
        urls = ["https://www.justdial.com/listing/1", "https://www.justdial.com/listing/2"]

        first = service.create_action(make_action_input(evidence_urls=urls))
        second = service.create_action(make_action_input(evidence_urls=list(reversed(urls))))

        assert second.idempotent is True
        assert second.proof.content_hash == first.proof.content_hash
        assert db.query(ActionDB).count() == 1

    def test_same_envelope_other_controller_is_new(self, db, settings):
        service = ActionService(db, settings=settings)
        service.create_action(make_action_input("justdial"))
        other = service.create_action(make_action_input(
            "sulekha", evidence_urls=["https://www.justdial.com/listing/1"]
        ))
        assert other.idempotent is False

    def test_proof_stored_on_action(self, db, settings):
        result = ActionService(db, settings=settings).create_action(make_action_input())
        assert result.action.proof_hash == result.proof.content_hash
        assert result.action.proof_sig == result.proof.signature
        assert result.action.status == ActionStatus.PREPARED

    def test_draft_scrubbed_and_capped(self, db, settings):
        draft = DraftContent(
            subject="S" * 300,
            body="Call me on 98765 43210, password=hunter2. " + "x" * 3000,
        )
        action = ActionService(db, settings=settings).create_action(
            make_action_input(draft=draft)
        ).action

        assert len(action.draft_subject) == 140
        assert len(action.draft_body) == 1800
        assert "98765" not in action.draft_body
        assert "hunter2" not in action.draft_body

    def test_evidence_allowlisted_deduplicated_capped(self, db, settings):
        urls = ["https://www.justdial.com/a", "https://www.justdial.com/a", "https://evil.example/x"]
        urls += [f"https://www.justdial.com/p{i}" for i in range(30)]
        action = ActionService(db, settings=settings).create_action(
            make_action_input(evidence_urls=urls)
        ).action

        assert len(action.evidence_urls) == 20
        assert action.evidence_urls[0] == "https://www.justdial.com/a"
        assert "https://evil.example/x" not in action.evidence_urls

    def test_raw_email_in_identity_is_masked(self, db, settings):
        action = ActionService(db, settings=settings).create_action(
            make_action_input(redacted_identity={"name": "A•••", "email": "alice@example.com"})
        ).action
        assert "alice@example.com" not in action.redacted_identity["email"]

    @pytest.mark.parametrize("field,value", [
        ("controller_key", ""),
        ("redacted_identity", None),
        ("draft", DraftContent(subject="   ")),
    ])
    def test_missing_required_fields(self, db, settings, field, value):
        with pytest.raises(InvalidInput):
            ActionService(db, settings=settings).create_action(make_action_input(**{field: value}))

    def test_signing_unavailable_blocks_creation(self, db):
        service = ActionService(db, settings=EngineSettings(ledger_hmac_key=""))
        with pytest.raises(SigningUnavailable):
            service.create_action(make_action_input())
        assert db.query(ActionDB).count() == 0


class TestActionTransitions:

    def test_forward_only(self, db, settings):
        service = ActionService(db, settings=settings)
        action = service.create_action(make_action_input()).action

        assert service.mark_sent(action, Channel.EMAIL, "em_1") is True
        assert action.next_followup_at is not None
        with pytest.raises(InvalidTransition):
            service.transition(action, ActionStatus.DRAFT)

    def test_sent_to_escalate_pending_allowed(self, db, settings):
        service = ActionService(db, settings=settings)
        action = service.create_action(make_action_input()).action
        service.mark_sent(action, Channel.EMAIL, "em_1")

        assert service.transition(action, ActionStatus.ESCALATE_PENDING) is True
        assert service.transition(action, ActionStatus.ESCALATE_PENDING) is False

    def test_escalated_action_never_returns_to_sent(self, db, settings):
        service = ActionService(db, settings=settings)
        action = service.create_action(make_action_input()).action
        service.mark_sent(action, Channel.EMAIL, "em_1")
        service.transition(action, ActionStatus.ESCALATE_PENDING)

        with pytest.raises(InvalidTransition):
            service.mark_sent(action, Channel.WEBFORM, "TC-1")
        assert action.status == ActionStatus.ESCALATE_PENDING

    def test_failed_is_terminal(self, db, settings):
        service = ActionService(db, settings=settings)
        action = service.create_action(make_action_input()).action
        service.transition(action, ActionStatus.FAILED)
        with pytest.raises(InvalidTransition):
            service.transition(action, ActionStatus.SENT)


# =============================================================================
# TEST: PII SCRUBBING
# =============================================================================

class TestScrubbing:

    def test_scrub_text(self):
        out = scrub_text("token: abc123 and account 1234567890 ok 2026")
        assert "abc123" not in out
        assert "1234567890" not in out
        assert "2026" in out

    def test_redact_for_logs(self):
        out = redact_for_logs({"to": "bob@example.com", "text": "secret body", "n": 3})
        assert out["to"].startswith("b") and "bob@" not in out["to"]
        assert out["text"] == "[11 chars]"
        assert out["n"] == 3
