"""
Tests for the controller policy layer.

1. Capability table lookups and the conservative fallback
2. Policy Resolver merge order (default → capability → region → operator → explicit)
3. Channel order with one fallback
4. Confidence bands
"""
import pytest
from unittest.mock import MagicMock

from sqlalchemy.exc import SQLAlchemyError

from app.models.db_models import Channel, ConfidenceBand, ControllerOverrideDB
from app.models.policy import PolicyOverride
from app.services.policy import (
    CONSERVATIVE_FALLBACK,
    PolicyResolver,
    band_for,
    can_auto_followup,
    capability_for,
    channel_order,
    clamp01,
    get_capability,
    infer_controller_from_url,
)


# =============================================================================
# TEST: CAPABILITY TABLE
# =============================================================================

class TestCapabilityTable:

    def test_known_entry(self):
        cap = get_capability("Justdial")
        assert cap is not None
        assert cap.default_min_confidence == 0.84

    def test_unknown_controller_gets_conservative_fallback(self):
        assert get_capability("unheard-of") is None
        cap = capability_for("unheard-of")
        assert cap.controller_id == "unheard-of"
        assert cap.allowed_channels == (Channel.EMAIL,)
        assert cap.can_auto_submit is False
        assert cap.default_min_confidence == CONSERVATIVE_FALLBACK.default_min_confidence

    def test_blank_id_is_generic(self):
        assert capability_for("").controller_id == "generic"
        assert capability_for(None).controller_id == "generic"

    def test_infer_controller_from_url(self):
        assert infer_controller_from_url("https://www.justdial.com/Pune/x") == "justdial"
        assert infer_controller_from_url("https://example.org/x") == "generic"
        assert infer_controller_from_url(None) == "generic"

    def test_region_tables_are_separate(self):
        cap = capability_for("justdial")
        assert cap.region_min_confidence("mh") == 0.86
        assert cap.cadence_days("MH") == 5
        # A region with a confidence override but no cadence override keeps the default cadence
        assert cap.cadence_days("DL") == cap.followup_cadence_days


# =============================================================================
# TEST: POLICY RESOLVER
# =============================================================================

class TestPolicyResolver:

    def test_capability_layer_applied(self):
        policy = PolicyResolver().resolve("truecaller")
        assert policy.preferred_channel == Channel.WEBFORM
        assert policy.min_confidence == 0.94
        assert policy.can_auto_submit is False
        assert policy.layers == ["default", "capability"]
        assert policy.sla_minutes["acknowledge"] == 60

    def test_unknown_controller_uses_fallback_layer(self):
        policy = PolicyResolver().resolve("mystery-site")
        assert policy.layers == ["default", "fallback"]
        assert policy.allowed_channels == [Channel.EMAIL]

    def test_region_override_only_raises_floor(self):
        policy = PolicyResolver().resolve("justdial", region="mh")
        assert policy.min_confidence == 0.86
        assert "region:MH" in policy.layers

        policy = PolicyResolver().resolve("justdial", region="KA")
        assert policy.min_confidence == 0.84

    def test_live_operator_override(self, db):
        db.add(ControllerOverrideDB(
            controller_key="justdial",
            allowed_channels=["email"],
            min_confidence=0.9,
            killed=True,
            daily_cap=5,
        ))
        db.commit()

        policy = PolicyResolver(db).resolve("justdial")
        assert policy.allowed_channels == [Channel.EMAIL]
        assert policy.min_confidence == 0.9
        assert policy.killed is True
        assert policy.daily_cap == 5
        assert policy.layers[-1] == "operator"

    def test_out_of_range_operator_confidence_ignored(self, db):
        db.add(ControllerOverrideDB(controller_key="sulekha", min_confidence=0.2))
        db.commit()

        policy = PolicyResolver(db).resolve("sulekha")
        assert policy.min_confidence == 0.84

    def test_explicit_override_beats_operator(self, db):
        db.add(ControllerOverrideDB(controller_key="spokeo", preferred_channel="email"))
        db.commit()

        explicit = PolicyOverride(preferred_channel=Channel.WEBFORM, daily_cap=0)
        policy = PolicyResolver(db).resolve("spokeo", override=explicit)
        assert policy.preferred_channel == Channel.WEBFORM
        assert policy.daily_cap is None
        assert policy.layers[-2:] == ["operator", "explicit"]

    def test_database_error_degrades_to_static_policy(self):
        mock_db = MagicMock()
        mock_db.get.side_effect = SQLAlchemyError("connection lost")

        policy = PolicyResolver(mock_db).resolve("justdial")
        assert policy.min_confidence == 0.84
        assert "operator" not in policy.layers

    def test_override_from_dict_ignores_unknown_channels(self):
        override = PolicyOverride.from_dict({"allowed_channels": ["email", "fax"], "preferred_channel": "pigeon"})
        assert override.allowed_channels == [Channel.EMAIL]
        assert override.preferred_channel is None


# =============================================================================
# TEST: CHANNEL ORDER
# =============================================================================

class TestChannelOrder:

    def test_preferred_then_designated_fallback(self):
        policy = PolicyResolver().resolve("justdial")
        assert channel_order(policy, Channel.EMAIL) == [Channel.EMAIL, Channel.WEBFORM]

    def test_disallowed_preferred_routes_to_allowed_channel(self):
        policy = PolicyResolver().resolve(
            "justdial", override=PolicyOverride(allowed_channels=[Channel.EMAIL])
        )
        assert channel_order(policy, Channel.WEBFORM) == [Channel.EMAIL]

    def test_fallback_never_repeats_preferred(self):
        policy = PolicyResolver().resolve("mystery-site")
        assert channel_order(policy, Channel.EMAIL) == [Channel.EMAIL]

    def test_nothing_allowed(self):
        policy = PolicyResolver().resolve("justdial", override=PolicyOverride(allowed_channels=[]))
        assert channel_order(policy, Channel.EMAIL) == []


# =============================================================================
# TEST: CONFIDENCE BANDS
# =============================================================================

class TestConfidenceBander:

    @pytest.mark.parametrize("score,band", [
        (0.95, ConfidenceBand.HIGH),
        (0.88, ConfidenceBand.HIGH),
        (0.85, ConfidenceBand.MEDIUM),
        (0.80, ConfidenceBand.MEDIUM),
        (0.5, ConfidenceBand.LOW),
        (7, ConfidenceBand.HIGH),
        (-1, ConfidenceBand.LOW),
        ("garbage", ConfidenceBand.LOW),
    ])
    def test_band_for(self, score, band):
        assert band_for(score, "justdial") == band

    def test_clamp_handles_nan(self):
        assert clamp01(float("nan")) == 0.0

    def test_can_auto_followup(self):
        assert can_auto_followup(ConfidenceBand.HIGH, "justdial") is True
        assert can_auto_followup(ConfidenceBand.LOW, "justdial") is False
        # conservative fallback disables follow-ups entirely
        assert can_auto_followup(ConfidenceBand.HIGH, "mystery-site") is False
