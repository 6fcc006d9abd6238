"""
Tests for the Auto-Candidate Selector.

Covers confidence gating, capability gating, allow-list, ambiguity phrases,
operator kill switch / daily cap, and ranking + truncation.
"""
import pytest

from app.models.db_models import ConfidenceBand, ControllerOverrideDB
from app.services.actions import ActionService
from app.services.policy import AutoCandidateSelector

from conftest import make_action_input


def justdial_hit(confidence, **extra):
    hit = {"broker": "Justdial", "confidence": confidence, "url": "https://justdial.com/x"}
    hit.update(extra)
    return hit


# =============================================================================
# TEST: GATING
# =============================================================================

class TestSelectorGating:

    def test_justdial_above_floor_accepted(self):
        result = AutoCandidateSelector().select([justdial_hit(0.90)])

        assert len(result.accepted) == 1
        candidate = result.accepted[0]
        assert candidate.controller_id == "justdial"
        assert "confidence-ok" in candidate.reasons
        assert candidate.band == ConfidenceBand.HIGH
        assert candidate.min_confidence == 0.84

    def test_justdial_below_floor_rejected(self):
        result = AutoCandidateSelector().select([justdial_hit(0.80)])

        assert result.accepted == []
        assert result.rejected[0].reason == "below-min:0.80<0.84"

    def test_global_floor_wins_when_higher(self):
        result = AutoCandidateSelector().select([justdial_hit(0.86)], global_min_confidence=0.9)
        assert result.rejected[0].reason == "below-min:0.86<0.90"

    def test_region_floor_applies(self):
        result = AutoCandidateSelector().select([justdial_hit(0.85, region="MH")])
        assert result.rejected[0].reason == "below-min:0.85<0.86"

    @pytest.mark.parametrize("score", [0.5, 0.99, 1.0])
    def test_cannot_auto_prepare_always_rejected(self, score):
        hit = {"broker": "Naukri", "confidence": score, "url": "https://www.naukri.com/profile/1"}
        result = AutoCandidateSelector().select([hit])
        assert result.rejected[0].reason == "cannot-auto-prepare"

    def test_url_not_allowlisted(self):
        hit = {"broker": "Justdial", "adapter": "justdial", "confidence": 0.95,
               "url": "https://justdial.evil.example/x"}
        result = AutoCandidateSelector().select([hit])
        assert result.rejected[0].reason == "url-not-allowlisted"

    def test_ambiguous_rationale_rejected(self):
        hit = justdial_hit(0.95, why=["Name matches", "Different city listed"])
        result = AutoCandidateSelector().select([hit])
        assert result.rejected[0].reason == "ambiguous-why"


# =============================================================================
# TEST: OPERATOR CONTROLS
# =============================================================================

class TestSelectorOperatorControls:

    def test_killed_controller(self, db):
        db.add(ControllerOverrideDB(controller_key="justdial", killed=True))
        db.commit()

        result = AutoCandidateSelector(db).select([justdial_hit(0.95)])
        assert result.rejected[0].reason == "killed"

    def test_daily_cap_counts_existing_and_batch(self, db, settings):
        db.add(ControllerOverrideDB(controller_key="justdial", daily_cap=2))
        db.commit()
        ActionService(db, settings=settings).create_action(make_action_input("justdial"))

        hits = [
            justdial_hit(0.95, url="https://justdial.com/a"),
            justdial_hit(0.93, url="https://justdial.com/b"),
        ]
        result = AutoCandidateSelector(db).select(hits)

        assert len(result.accepted) == 1
        assert [r.reason for r in result.rejected] == ["daily-cap"]


# =============================================================================
# TEST: RANKING
# =============================================================================

class TestSelectorRanking:

    def test_sorted_by_confidence_then_adapter_priority(self):
        hits = [
            {"broker": "Sulekha", "confidence": 0.90, "url": "https://www.sulekha.com/a"},
            {"broker": "Justdial", "confidence": 0.90, "url": "https://www.justdial.com/a"},
            {"broker": "Indiamart", "confidence": 0.97, "url": "https://www.indiamart.com/a"},
        ]
        result = AutoCandidateSelector().select(hits)
        assert [c.controller_id for c in result.accepted] == ["indiamart", "justdial", "sulekha"]

    def test_truncated_to_max_count(self):
        hits = [justdial_hit(0.90 + i / 100, url=f"https://justdial.com/{i}") for i in range(5)]
        result = AutoCandidateSelector().select(hits, max_count=2)

        assert len(result.accepted) == 2
        assert result.accepted[0].hit.confidence == pytest.approx(0.94)
        assert [r.reason for r in result.rejected].count("over-max-count") == 3

    def test_adapter_tag_beats_url_inference(self):
        hit = {"broker": "X", "adapter": "sulekha", "confidence": 0.9, "url": "https://justdial.com/x"}
        result = AutoCandidateSelector().select([hit])
        assert result.accepted[0].controller_id == "sulekha"
