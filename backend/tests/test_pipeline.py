"""Tests for the auto-from-scan pipeline."""
from app.models.db_models import ActionDB, ActionStatus
from app.services.dispatch import DispatchRouter
from app.services.pipeline import AutoPipeline

from conftest import FakeEmailSender


HITS = [
    {
        "broker": "Justdial",
        "confidence": 0.95,
        "url": "https://www.justdial.com/Pune/listing-1",
        "preview": {"name": "A•••", "city": "Pune"},
        "why": ["Name and phone match"],
    },
    {
        "broker": "Truecaller",
        "confidence": 0.97,
        "url": "https://www.truecaller.com/search/in/x",
        "preview": {"name": "A•••"},
    },
    {"broker": "Naukri", "confidence": 0.99, "url": "https://www.naukri.com/profile/1"},
]


def pipeline(db, settings, sender=None):
    router = DispatchRouter(db, settings, email_sender=sender or FakeEmailSender())
    return AutoPipeline(db, settings, router=router)


class TestAutoPipeline:

    def test_prepares_actions_for_accepted_hits(self, db, settings):
        outcome = pipeline(db, settings).run(HITS, subject_id="subject-1")

        assert {c["controller_id"] for c in outcome.created} == {"justdial", "truecaller"}
        assert [r["reason"] for r in outcome.rejected] == ["cannot-auto-prepare"]

        actions = db.query(ActionDB).all()
        assert {a.status for a in actions} == {ActionStatus.PREPARED}
        assert all(a.subject_id == "subject-1" for a in actions)
        assert all(a.proof_hash for a in actions)

    def test_dispatch_respects_auto_submit(self, db, settings):
        sender = FakeEmailSender()
        outcome = pipeline(db, settings, sender).run(HITS, dispatch=True)
        by_controller = {c["controller_id"]: c for c in outcome.created}

        assert by_controller["justdial"]["dispatch"]["ok"] is True
        assert by_controller["justdial"]["dispatch"]["channel"] == "email"
        assert by_controller["truecaller"]["dispatch"]["error"] == "manual-submit-required"
        assert len(sender.sent) == 1

    def test_rerun_is_idempotent_and_not_redispatched(self, db, settings):
        sender = FakeEmailSender()
        pipeline(db, settings, sender).run(HITS, dispatch=True)
        again = pipeline(db, settings, sender).run(HITS, dispatch=True)

        assert all(c["idempotent"] for c in again.created)
        assert all(c["dispatch"] is None for c in again.created)
        assert len(sender.sent) == 1
        assert db.query(ActionDB).count() == 2
