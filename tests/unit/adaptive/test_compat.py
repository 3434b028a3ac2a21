"""
Unit tests for the legacy FSRS facade
"""

from datetime import timedelta

import pytest

from fsrs_engine.adaptive.fsrs.cards import CardState, FSRSCard, Rating
from fsrs_engine.adaptive.fsrs.compat import FSRS, LegacyCard, from_fsrs6_card, to_fsrs6_card
from fsrs_engine.adaptive.fsrs.parameters import DEFAULT_WEIGHTS, FSRS6_VERSION


@pytest.fixture
def facade(rng, now):
    return FSRS({"enable_fuzz": False}, rng=rng, clock=lambda: now)


class TestCardConversion:

    def test_legacy_card_has_no_fsrs6_fields(self, facade):
        card = facade.create_card()

        assert isinstance(card, LegacyCard)
        assert not hasattr(card, "version")
        assert not hasattr(card, "short_term_memory_factor")
        assert not hasattr(card, "long_term_stability_factor")

    def test_upgrade_resets_factors(self, now):
        upgraded = to_fsrs6_card(LegacyCard(due=now, stability=3.0, reps=2, state=CardState.REVIEW))

        assert isinstance(upgraded, FSRSCard)
        assert upgraded.version == FSRS6_VERSION
        assert upgraded.short_term_memory_factor == 1.0
        assert upgraded.long_term_stability_factor == 1.0
        assert upgraded.stability == 3.0

    def test_strip_keeps_shared_fields(self, now):
        card = FSRSCard(due=now, stability=4.0, reps=3, lapses=1, short_term_memory_factor=1.5)
        legacy = from_fsrs6_card(card)

        assert legacy.stability == 4.0
        assert legacy.reps == 3
        assert legacy.lapses == 1


class TestFacadeScheduling:

    def test_review_matches_core(self, facade, now):
        card, log = facade.review(facade.create_card(), Rating.GOOD)

        assert card.state == CardState.REVIEW
        assert card.scheduled_days == 2
        assert card.due == now + timedelta(days=2)
        assert log.rating == Rating.GOOD

    def test_memory_effects_forced_on(self):
        facade = FSRS({"short_term_memory_enabled": False, "long_term_stability_enabled": False})
        params = facade.core.get_parameters()

        assert params.short_term_memory_enabled is True
        assert params.long_term_stability_enabled is True

    def test_get_parameters_shape(self, facade):
        params = facade.get_parameters()

        assert set(params) == {"w", "request_retention", "maximum_interval", "enable_fuzz"}
        assert params["w"] == list(DEFAULT_WEIGHTS)

    def test_get_parameters_idempotent(self, facade):
        assert facade.get_parameters() == facade.get_parameters()

    def test_update_parameters(self, facade):
        updated = facade.update_parameters({"maximum_interval": 90, "short_term_memory_enabled": False})

        assert updated["maximum_interval"] == 90
        assert facade.core.get_parameters().short_term_memory_enabled is True

    def test_version_info(self, facade):
        assert facade.get_version_info()["version"] == FSRS6_VERSION


class TestPredictions:
    """Tests for the static helpers"""

    def test_predict_memory_state_monotonic(self, now):
        card = LegacyCard(due=now, stability=8.0, elapsed_days=2, reps=3, state=CardState.REVIEW)
        values = [FSRS.predict_memory_state(card, day) for day in range(0, 60, 3)]

        assert values == sorted(values, reverse=True)
        assert all(0 < v <= 1 for v in values)

    def test_predict_memory_state_unlearned(self, now):
        assert FSRS.predict_memory_state(LegacyCard(due=now), 5) == 0.0

    def test_predict_does_not_mutate(self, now):
        card = LegacyCard(due=now, stability=8.0, elapsed_days=2)
        FSRS.predict_memory_state(card, 10)
        assert card.elapsed_days == 2

    def test_progress_new_card(self, now):
        assert FSRS.calculate_progress(LegacyCard(due=now)) == 0.0

    def test_progress_mature_card(self, now):
        card = LegacyCard(due=now, stability=150.0, reps=12, state=CardState.REVIEW)
        assert FSRS.calculate_progress(card) == 1.0

    def test_progress_blend(self, now):
        card = LegacyCard(due=now, stability=50.0, reps=5, state=CardState.LEARNING)
        assert FSRS.calculate_progress(card) == pytest.approx(0.5)

    @pytest.mark.parametrize("total,target,expected", [
        (0, 20, 0),
        (10, 20, 5),
        (50, 20, 10),
        (3, 20, 2),
    ])
    def test_recommended_study_time(self, total, target, expected):
        assert FSRS.get_recommended_study_time(total, target) == expected
