"""
Unit tests for the Personalization Service

Tests cover:
- History ingestion and recomputation
- Weight adjustment gating and nudges
- Learning pattern analysis
- Memory curve generation
- Insight generation
"""

import math
from datetime import datetime, timedelta

import pytest

from fsrs_engine.adaptive.fsrs.cards import CardState, FSRSCard, Rating
from fsrs_engine.adaptive.fsrs.fsrs_algorithm import FSRSAlgorithm
from fsrs_engine.adaptive.fsrs.parameters import DEFAULT_WEIGHTS
from fsrs_engine.services.personalization import (
    InsightPriority,
    InsightType,
    IntervalPreference,
    PersonalizationEngine,
    RetentionTrend,
)


@pytest.fixture
def engine():
    return PersonalizationEngine()


@pytest.fixture
def strong_history(history_builder):
    """60 daily reviews at 19:00, all recalled after one day"""
    return history_builder([Rating.GOOD] * 60)


def _card(stability=10.0, difficulty=5.0, reps=3):
    return FSRSCard(
        due=datetime(2024, 3, 1),
        stability=stability,
        difficulty=difficulty,
        reps=reps,
        state=CardState.REVIEW if reps else CardState.NEW,
    )


class TestHistory:

    def test_history_sorted_by_review_time(self, engine, history_builder):
        history = history_builder([Rating.GOOD, Rating.AGAIN, Rating.EASY])
        engine.set_history(list(reversed(history)))

        assert [e.review for e in engine.history] == [e.review for e in history]

    def test_input_list_untouched(self, engine, history_builder):
        history = list(reversed(history_builder([Rating.GOOD, Rating.HARD])))
        original = list(history)
        engine.set_history(history)

        assert history == original

    def test_profile_recomputed_on_replace(self, engine, history_builder):
        engine.set_history(history_builder([Rating.AGAIN] * 10))
        assert engine.profile.recent_accuracy == 0.0

        engine.set_history(history_builder([Rating.GOOD] * 10))
        assert engine.profile.recent_accuracy == 1.0

    def test_empty_profile_defaults(self, engine):
        profile = engine.set_history([])

        assert profile.total_reviews == 0
        assert profile.recent_accuracy == 0.8
        assert profile.short_term_performance == 0.8
        assert profile.long_term_stability == 0.75
        assert profile.interval_preference == IntervalPreference.NORMAL
        assert profile.weight_adjustments == [0.0] * 21


class TestWeightAdjustment:
    """Tests for personalized weights"""

    def test_no_op_below_minimum(self, engine, history_builder):
        engine.set_history(history_builder([Rating.GOOD] * 49))

        assert engine.personalized_weights is None

    def test_strong_learner_nudges(self, engine, strong_history):
        engine.set_history(strong_history)
        weights = engine.personalized_weights

        assert weights[6] == pytest.approx(DEFAULT_WEIGHTS[6] * 1.1)
        assert weights[0] == pytest.approx(DEFAULT_WEIGHTS[0] * 0.95)
        assert weights[1] == pytest.approx(DEFAULT_WEIGHTS[1] * 0.97)
        assert weights[17] == pytest.approx(DEFAULT_WEIGHTS[17] * 1.02)
        assert weights[18] == pytest.approx(DEFAULT_WEIGHTS[18] * 1.01)
        # No reviews after 30+ days: long-term weights untouched
        assert weights[19] == DEFAULT_WEIGHTS[19]
        assert weights[20] == DEFAULT_WEIGHTS[20]

    def test_weak_learner_long_intervals(self, engine, history_builder):
        engine.set_history(history_builder([Rating.AGAIN] * 60, elapsed_days=40))
        weights = engine.personalized_weights

        assert engine.profile.interval_preference == IntervalPreference.LONGER
        assert weights[6] == pytest.approx(DEFAULT_WEIGHTS[6] * 0.9)
        assert weights[0] == pytest.approx(DEFAULT_WEIGHTS[0] * 1.05)
        assert weights[19] == DEFAULT_WEIGHTS[19]

    def test_long_term_nudge(self, engine, history_builder):
        engine.set_history(history_builder([Rating.GOOD] * 60, elapsed_days=35))
        weights = engine.personalized_weights

        assert weights[19] == pytest.approx(DEFAULT_WEIGHTS[19] * 1.015)
        assert weights[20] == pytest.approx(DEFAULT_WEIGHTS[20] * 1.01)
        assert weights[17] == DEFAULT_WEIGHTS[17]

    def test_weights_stay_valid_length(self, engine, strong_history):
        engine.set_history(strong_history)
        assert len(engine.personalized_weights) == 21

    def test_apply_to_scheduler(self, engine, strong_history):
        scheduler = FSRSAlgorithm({"enable_fuzz": False})
        engine.set_history(strong_history)
        engine.apply_to(scheduler)

        state = scheduler.get_state()
        assert state["personalization_enabled"] is True
        assert state["current_weights"][6] == pytest.approx(DEFAULT_WEIGHTS[6] * 1.1)

    def test_shared_store_recomputes_same_weights(self, strong_history):
        """Applying weights to a scheduler must not compound on the next recompute"""
        scheduler = FSRSAlgorithm({"enable_fuzz": False})
        engine = PersonalizationEngine(store=scheduler.store)

        applied = []
        for _ in range(3):
            engine.set_history(strong_history)
            engine.apply_to(scheduler)
            applied.append(scheduler.get_state()["current_weights"])

        assert applied[0] == applied[1] == applied[2]
        assert applied[2][6] == pytest.approx(DEFAULT_WEIGHTS[6] * 1.1)

    def test_apply_defaults_when_too_short(self, engine, history_builder):
        scheduler = FSRSAlgorithm()
        engine.set_history(history_builder([Rating.GOOD] * 10))
        engine.apply_to(scheduler)

        assert scheduler.get_parameters().w == DEFAULT_WEIGHTS
        assert scheduler.get_state()["personalization_enabled"] is False


class TestLearningPattern:
    """Tests for analyze_learning_pattern"""

    def test_empty_history_defaults(self, engine):
        pattern = engine.analyze_learning_pattern()

        assert pattern.to_dict() == {
            "optimal_study_time": "19:00",
            "average_session_length": 20,
            "preferred_difficulty": 5,
            "retention_trend": "stable",
            "consistency_score": 0.5,
        }

    def test_optimal_hour_is_mode(self, engine, history_builder):
        morning = history_builder([Rating.GOOD] * 5, start=datetime(2024, 3, 1, 7, 30))
        evening = history_builder([Rating.GOOD] * 3, start=datetime(2024, 4, 1, 21, 0))
        engine.set_history(morning + evening)

        assert engine.analyze_learning_pattern().optimal_study_time == "07:00"

    def test_session_lengths(self, engine, history_builder):
        # Two bursts: 0-20 minutes and 0-40 minutes
        first = history_builder([Rating.GOOD] * 3, start=datetime(2024, 3, 1, 9), spacing=timedelta(minutes=10))
        second = history_builder([Rating.GOOD] * 5, start=datetime(2024, 3, 2, 9), spacing=timedelta(minutes=10))
        engine.set_history(first + second)

        assert engine.analyze_learning_pattern().average_session_length == pytest.approx(30)

    def test_single_review_sessions_fall_back(self, engine, strong_history):
        engine.set_history(strong_history)
        assert engine.analyze_learning_pattern().average_session_length == 20

    def test_preferred_difficulty_is_mean_rating(self, engine, history_builder):
        engine.set_history(history_builder([Rating.AGAIN, Rating.EASY, Rating.GOOD, Rating.GOOD]))
        assert engine.analyze_learning_pattern().preferred_difficulty == pytest.approx(2.75)

    def test_trend_requires_twenty_reviews(self, engine, history_builder):
        engine.set_history(history_builder([Rating.AGAIN] * 9 + [Rating.GOOD] * 10))
        assert engine.analyze_learning_pattern().retention_trend == RetentionTrend.STABLE

    def test_improving_trend(self, engine, history_builder):
        engine.set_history(history_builder([Rating.AGAIN] * 10 + [Rating.GOOD] * 10))
        assert engine.analyze_learning_pattern().retention_trend == RetentionTrend.IMPROVING

    def test_declining_trend(self, engine, history_builder):
        engine.set_history(history_builder([Rating.GOOD] * 10 + [Rating.AGAIN] * 10))
        assert engine.analyze_learning_pattern().retention_trend == RetentionTrend.DECLINING

    def test_consistency_same_hour(self, engine, strong_history):
        engine.set_history(strong_history)
        assert engine.analyze_learning_pattern().consistency_score == 1.0

    def test_consistency_scattered_hours(self, engine, history_builder):
        engine.set_history(history_builder(
            [Rating.GOOD] * 12, start=datetime(2024, 3, 1, 6), spacing=timedelta(hours=12)
        ))
        assert engine.analyze_learning_pattern().consistency_score == 0.0

    def test_consistency_needs_ten_reviews(self, engine, history_builder):
        engine.set_history(history_builder(
            [Rating.GOOD] * 9, start=datetime(2024, 3, 1, 6), spacing=timedelta(hours=12)
        ))
        assert engine.analyze_learning_pattern().consistency_score == 0.5


class TestMemoryCurve:
    """Tests for generate_memory_curve"""

    def test_default_curve_without_cards(self, engine):
        curve = engine.generate_memory_curve([], 30, 90)

        assert len(curve) == 30
        assert curve[0].day == 1
        assert curve[0].fsrs_predicted == pytest.approx(85 * math.exp(-1 / 12))
        assert curve[0].actual_predicted == pytest.approx(88 * math.exp(-1 / 14))
        assert curve[0].confidence_interval.upper == pytest.approx(88 * math.exp(-1 / 14) + 10)
        assert curve[-1].fsrs_predicted >= 5
        assert curve[-1].actual_predicted >= 8

    def test_unreviewed_cards_ignored(self, engine):
        curve = engine.generate_memory_curve([_card(reps=0)], 5, 90)
        assert curve[0].fsrs_predicted == pytest.approx(85 * math.exp(-1 / 12))

    def test_personalized_curve(self, engine):
        curve = engine.generate_memory_curve([_card(stability=10.0, difficulty=5.0)], 10, 100)
        first = curve[0]

        # No history: personal factor 1.0, difficulty factor 0.5
        adjusted = 10.0 * 1.0 * (0.8 + 0.5 * 0.2)
        assert first.fsrs_predicted == pytest.approx(100 * math.exp(-1 / 10))
        assert first.actual_predicted == pytest.approx(100 * math.exp(-1 / adjusted))
        assert first.retention_gap == pytest.approx(
            100 * math.exp(-1 / adjusted) - 100 * math.exp(-1 / 10)
        )
        assert first.confidence_interval.lower == pytest.approx(first.actual_predicted - 5.5)

    def test_missing_session_accuracy_uses_eighty(self, engine):
        with_default = engine.generate_memory_curve([_card()], 3, None)
        explicit = engine.generate_memory_curve([_card()], 3, 80)

        assert [p.actual_predicted for p in with_default] == [p.actual_predicted for p in explicit]

    def test_low_session_accuracy_floor(self, engine):
        floored = engine.generate_memory_curve([_card()], 3, 10)
        at_floor = engine.generate_memory_curve([_card()], 3, 40)

        assert [p.actual_predicted for p in floored] == [p.actual_predicted for p in at_floor]

    def test_values_clamped(self, engine):
        curve = engine.generate_memory_curve([_card(stability=0.5)], 60, 100)

        for point in curve:
            assert 5 <= point.fsrs_predicted <= 100
            assert 8 <= point.actual_predicted <= 100
            assert 0 <= point.confidence_interval.lower <= point.confidence_interval.upper <= 100

    def test_band_widens_then_caps(self, engine):
        curve = engine.generate_memory_curve([_card(stability=1000.0)], 40, 100)
        widths = [p.confidence_interval.upper - p.confidence_interval.lower for p in curve]

        assert widths[0] < widths[10]
        assert max(widths) <= 40 + 1e-9

    def test_personal_factor_with_history(self, engine, strong_history):
        engine.set_history(strong_history)
        curve = engine.generate_memory_curve([_card(stability=10.0, difficulty=5.0)], 1, 100)

        # recent accuracy 1.0 and consistency 1.0 -> factor 1.3
        adjusted = 10.0 * (0.8 + 0.5 * 0.2) * 1.3
        assert curve[0].actual_predicted == pytest.approx(100 * math.exp(-1 / adjusted))


class TestInsights:
    """Tests for generate_personalized_insights"""

    def test_defaults_for_empty_history(self, engine):
        insights = engine.generate_personalized_insights([], 80)

        assert [(i.type, i.priority) for i in insights] == [
            (InsightType.SCHEDULE, InsightPriority.MEDIUM),
            (InsightType.METHOD, InsightPriority.LOW),
        ]
        assert [i.confidence for i in insights] == [0.8, 0.7]

    def test_low_accuracy_is_high_priority(self, engine, history_builder):
        engine.set_history(history_builder([Rating.AGAIN] * 30))
        insights = engine.generate_personalized_insights([_card(difficulty=8.5)], 50)

        assert insights[0].type == InsightType.PERFORMANCE
        assert insights[0].priority == InsightPriority.HIGH
        assert insights[0].confidence == 0.85
        assert "0.0%" in insights[0].description
        assert any(i.type == InsightType.DIFFICULTY for i in insights)

    def test_high_accuracy_is_medium(self, engine, strong_history):
        engine.set_history(strong_history)
        insights = engine.generate_personalized_insights([_card()], 95)

        assert len(insights) == 1
        assert insights[0].priority == InsightPriority.MEDIUM
        assert insights[0].confidence == 0.9

    def test_schedule_insight_for_scattered_hours(self, engine, history_builder):
        ratings = [Rating.GOOD] * 10 + [Rating.AGAIN] * 2
        engine.set_history(history_builder(ratings, start=datetime(2024, 3, 1, 6), spacing=timedelta(hours=12)))
        insights = engine.generate_personalized_insights([], 80)

        assert [i.type for i in insights] == [InsightType.SCHEDULE]
        assert insights[0].confidence == 0.75

    def test_no_method_insight_without_response_times(self, engine, history_builder):
        engine.set_history(history_builder([Rating.GOOD, Rating.AGAIN] * 10))
        insights = engine.generate_personalized_insights([], 80)

        assert all(i.type != InsightType.METHOD for i in insights)

    def test_method_insight_for_slow_responses(self, engine, history_builder):
        engine.set_history(history_builder([Rating.GOOD, Rating.AGAIN] * 10, response_time_ms=20000))
        insights = engine.generate_personalized_insights([], 80)

        method = [i for i in insights if i.type == InsightType.METHOD]
        assert len(method) == 1
        assert method[0].priority == InsightPriority.LOW
        assert insights[-1] is method[0]

    def test_sorted_by_priority(self, engine, history_builder):
        ratings = [Rating.AGAIN] * 12
        engine.set_history(history_builder(
            ratings, start=datetime(2024, 3, 1, 6), spacing=timedelta(hours=12), response_time_ms=30000
        ))
        insights = engine.generate_personalized_insights([_card(difficulty=9.0)], 20)

        order = {InsightPriority.HIGH: 3, InsightPriority.MEDIUM: 2, InsightPriority.LOW: 1}
        priorities = [order[i.priority] for i in insights]
        assert priorities == sorted(priorities, reverse=True)
        assert len(insights) == 4

    def test_insight_serialization(self, engine):
        data = engine.generate_personalized_insights([], 80)[0].to_dict()

        assert data["type"] == "schedule"
        assert data["priority"] == "medium"
        assert data["actionable"] is True
