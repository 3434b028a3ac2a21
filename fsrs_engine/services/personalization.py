"""
Personalization Service

Derives a per-learner view from the full review history:
- Weight adjustments for the scheduler (gated on history size)
- Predicted retention curves (standard vs. personalized)
- Learning pattern analysis (study time, session length, trend)
- Actionable insights sorted by priority

Everything is recomputed from scratch whenever the history is replaced;
there is no incremental path and no staleness detection.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from fsrs_engine.adaptive.fsrs.cards import FSRSCard, Rating, ReviewLogEntry
from fsrs_engine.adaptive.fsrs.parameters import PARAMETER_COUNT, ParameterStore
from fsrs_engine.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


# ==================== Enums ====================

class IntervalPreference(str, Enum):
    """Bucketed average gap between reviews"""
    SHORTER = "shorter"   # < 5 days
    NORMAL = "normal"
    LONGER = "longer"     # > 15 days


class RetentionTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class InsightType(str, Enum):
    PERFORMANCE = "performance"
    SCHEDULE = "schedule"
    DIFFICULTY = "difficulty"
    METHOD = "method"
    FOCUS = "focus"


class InsightPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_PRIORITY_ORDER = {InsightPriority.HIGH: 3, InsightPriority.MEDIUM: 2, InsightPriority.LOW: 1}


# ==================== Thresholds ====================

SHORTER_INTERVAL_DAYS = 5
LONGER_INTERVAL_DAYS = 15
SHORT_TERM_DAYS = 3
LONG_TERM_DAYS = 30

DEFAULT_RECENT_ACCURACY = 0.8
DEFAULT_SHORT_TERM_ACCURACY = 0.8
DEFAULT_LONG_TERM_ACCURACY = 0.75
DEFAULT_CONSISTENCY = 0.5
DEFAULT_SESSION_MINUTES = 20
DEFAULT_SESSION_ACCURACY = 80
SLOW_RESPONSE_MS = 15000


# ==================== Data Models ====================

@dataclass
class LearningPattern:
    """When and how a learner studies"""
    optimal_study_time: str = "19:00"
    average_session_length: float = DEFAULT_SESSION_MINUTES  # minutes
    preferred_difficulty: float = 5
    retention_trend: RetentionTrend = RetentionTrend.STABLE
    consistency_score: float = DEFAULT_CONSISTENCY

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["retention_trend"] = self.retention_trend.value
        return data


@dataclass
class PersonalizationProfile:
    """Derived statistics for one history; rebuilt on every set_history()"""
    total_reviews: int = 0
    recent_accuracy: float = DEFAULT_RECENT_ACCURACY
    interval_preference: IntervalPreference = IntervalPreference.NORMAL
    short_term_performance: float = DEFAULT_SHORT_TERM_ACCURACY
    long_term_stability: float = DEFAULT_LONG_TERM_ACCURACY
    consistency_score: float = DEFAULT_CONSISTENCY
    optimal_study_time: str = "19:00"
    preferred_difficulty: float = 5
    retention_trend: RetentionTrend = RetentionTrend.STABLE
    weight_adjustments: List[float] = field(default_factory=lambda: [0.0] * PARAMETER_COUNT)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["interval_preference"] = self.interval_preference.value
        data["retention_trend"] = self.retention_trend.value
        return data


@dataclass
class ConfidenceInterval:
    lower: float
    upper: float


@dataclass
class MemoryCurvePoint:
    """Predicted retention (percent) on one day"""
    day: int
    fsrs_predicted: float
    actual_predicted: float
    retention_gap: float
    confidence_interval: ConfidenceInterval

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PersonalizedInsight:
    type: InsightType
    priority: InsightPriority
    title: str
    description: str
    actionable: bool
    expected_improvement: str
    confidence: float  # 0-1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["priority"] = self.priority.value
        return data


# ==================== Helpers ====================

def _accuracy(entries: Sequence[ReviewLogEntry], default: float) -> float:
    if not entries:
        return default
    return sum(1 for e in entries if e.rating >= Rating.GOOD) / len(entries)


def _elapsed(entry: ReviewLogEntry) -> int:
    return entry.elapsed_days or 0


# ==================== Service ====================

class PersonalizationEngine:
    """
    Consumes review history and produces personalization output.

    Args:
        store: ParameterStore whose default weights are the base for
            adjustment; a fresh default store when omitted. Sharing a
            scheduler's store is safe: applied weights never feed back in
        config: Settings providing thresholds (minimum history, recent
            window, session gap)
    """

    def __init__(
        self,
        store: Optional[ParameterStore] = None,
        config: Optional[Settings] = None,
    ):
        self.store = store or ParameterStore()
        self.config = config or default_settings
        self.min_reviews = self.config.PERSONALIZATION_MIN_REVIEWS
        self.recent_window = self.config.PERSONALIZATION_RECENT_WINDOW
        self.session_gap = timedelta(minutes=self.config.SESSION_GAP_MINUTES)

        self._history: List[ReviewLogEntry] = []
        self._profile = PersonalizationProfile()
        self._personalized_weights: Optional[List[float]] = None

    # ---- history ----------------------------------------------------

    def set_history(self, history: Sequence[ReviewLogEntry]) -> PersonalizationProfile:
        """Replace the history and recompute everything derived from it"""
        self._history = sorted(history, key=lambda entry: entry.review)
        self._profile = self._build_profile()
        self._personalized_weights = self._calculate_personalized_weights()

        logger.info(
            f"Personalization recomputed: {len(self._history)} reviews, "
            f"recent accuracy {self._profile.recent_accuracy:.2f}, "
            f"weights {'personalized' if self._personalized_weights else 'default'}"
        )
        return self._profile

    @property
    def history(self) -> List[ReviewLogEntry]:
        return list(self._history)

    @property
    def profile(self) -> PersonalizationProfile:
        return self._profile

    @property
    def personalized_weights(self) -> Optional[List[float]]:
        """Adjusted weights, or None while history is too short"""
        if self._personalized_weights is None:
            return None
        return list(self._personalized_weights)

    def apply_to(self, scheduler) -> None:
        """Push the current weights (or the defaults) into a scheduler"""
        scheduler.apply_personalized_weights(self.personalized_weights)

    # ---- weights ----------------------------------------------------

    def _calculate_personalized_weights(self) -> Optional[List[float]]:
        if len(self._history) < self.min_reviews:
            return None

        base = self.store.defaults.w
        adjusted = [w * (1 + adj) for w, adj in zip(base, self._profile.weight_adjustments)]

        # Out-of-range results fall back to defaults like any other input
        validated = ParameterStore({"w": adjusted}, defaults=self.store.defaults)
        return list(validated.weights)

    def _weight_adjustments(self, profile: PersonalizationProfile) -> List[float]:
        adjustments = [0.0] * PARAMETER_COUNT
        if not self._history:
            return adjustments

        # Difficulty sensitivity
        if profile.recent_accuracy > 0.9:
            adjustments[6] = 0.1
        elif profile.recent_accuracy < 0.7:
            adjustments[6] = -0.1

        # Initial stability
        if profile.interval_preference == IntervalPreference.SHORTER:
            adjustments[0] = -0.05
            adjustments[1] = -0.03
        elif profile.interval_preference == IntervalPreference.LONGER:
            adjustments[0] = 0.05
            adjustments[1] = 0.03

        # Short-term memory effect
        if profile.short_term_performance > 0.85:
            adjustments[17] = 0.02
            adjustments[18] = 0.01

        # Long-term stability
        if profile.long_term_stability > 0.8:
            adjustments[19] = 0.015
            adjustments[20] = 0.01

        return adjustments

    # ---- profile ----------------------------------------------------

    def _build_profile(self) -> PersonalizationProfile:
        pattern = self.analyze_learning_pattern()
        profile = PersonalizationProfile(
            total_reviews=len(self._history),
            recent_accuracy=self._recent_accuracy(),
            interval_preference=self._interval_preference(),
            short_term_performance=_accuracy(
                [e for e in self._history if _elapsed(e) <= SHORT_TERM_DAYS],
                DEFAULT_SHORT_TERM_ACCURACY,
            ),
            long_term_stability=_accuracy(
                [e for e in self._history if _elapsed(e) >= LONG_TERM_DAYS],
                DEFAULT_LONG_TERM_ACCURACY,
            ),
            consistency_score=pattern.consistency_score,
            optimal_study_time=pattern.optimal_study_time,
            preferred_difficulty=pattern.preferred_difficulty,
            retention_trend=pattern.retention_trend,
        )
        profile.weight_adjustments = self._weight_adjustments(profile)
        return profile

    def _recent_accuracy(self) -> float:
        return _accuracy(self._history[-self.recent_window:], DEFAULT_RECENT_ACCURACY)

    def _interval_preference(self) -> IntervalPreference:
        if not self._history:
            return IntervalPreference.NORMAL
        average = float(np.mean([_elapsed(e) for e in self._history]))
        if average < SHORTER_INTERVAL_DAYS:
            return IntervalPreference.SHORTER
        if average > LONGER_INTERVAL_DAYS:
            return IntervalPreference.LONGER
        return IntervalPreference.NORMAL

    def _consistency_score(self) -> float:
        """1 minus the variance of review hour-of-day over 24, floored at 0"""
        if len(self._history) < 10:
            return DEFAULT_CONSISTENCY
        hours = np.array([e.review.hour for e in self._history], dtype=float)
        return max(0.0, 1 - float(np.var(hours)) / 24)

    def _personal_factor(self) -> float:
        if len(self._history) < 20:
            return 1.0
        return 0.8 + self._recent_accuracy() * 0.3 + self._consistency_score() * 0.2

    # ---- learning pattern -------------------------------------------

    def analyze_learning_pattern(self) -> LearningPattern:
        """
        Analyze when and how the learner studies

        Returns:
            LearningPattern; fixed defaults for an empty history
        """
        if not self._history:
            return LearningPattern()

        counts = np.bincount([e.review.hour for e in self._history], minlength=24)
        optimal_hour = int(np.argmax(counts))

        average_session = float(np.mean(self._session_lengths()))

        return LearningPattern(
            optimal_study_time=f"{optimal_hour:02d}:00",
            average_session_length=average_session or DEFAULT_SESSION_MINUTES,
            preferred_difficulty=float(np.mean([int(e.rating) for e in self._history])),
            retention_trend=self._retention_trend(),
            consistency_score=self._consistency_score(),
        )

    def _session_lengths(self) -> List[float]:
        """Minutes per burst of reviews separated by more than the session gap"""
        sessions = []
        start = end = None
        for entry in self._history:
            if start is None or entry.review - end > self.session_gap:
                if start is not None:
                    sessions.append((end - start).total_seconds() / 60)
                start = entry.review
            end = entry.review

        if start is not None:
            sessions.append((end - start).total_seconds() / 60)

        return sessions or [DEFAULT_SESSION_MINUTES]

    def _retention_trend(self) -> RetentionTrend:
        if len(self._history) < 20:
            return RetentionTrend.STABLE

        half = len(self._history) // 2
        earlier = _accuracy(self._history[:half], 0.0)
        recent = _accuracy(self._history[-half:], 0.0)
        difference = recent - earlier

        if difference > 0.05:
            return RetentionTrend.IMPROVING
        if difference < -0.05:
            return RetentionTrend.DECLINING
        return RetentionTrend.STABLE

    # ---- memory curve -----------------------------------------------

    def generate_memory_curve(
        self,
        cards: Sequence[FSRSCard],
        days: int,
        session_accuracy: Optional[float] = None,
    ) -> List[MemoryCurvePoint]:
        """
        Predict retention for days 1..N

        Args:
            cards: Cards to average over; only reviewed cards (reps > 0) count
            days: Number of days to predict
            session_accuracy: Latest session accuracy in percent (0-100)

        Returns:
            One MemoryCurvePoint per day
        """
        usable = [card for card in (cards or []) if card.reps > 0]
        if not usable:
            return self._default_curve(days)

        avg_stability = float(np.mean([card.stability or 1 for card in usable]))
        avg_difficulty = float(np.mean([card.difficulty or 5 for card in usable]))

        performance_multiplier = max((session_accuracy or DEFAULT_SESSION_ACCURACY) / 100, 0.4)
        difficulty_factor = max(10 - avg_difficulty, 1) / 10
        adjusted_stability = (
            avg_stability
            * performance_multiplier
            * (0.8 + difficulty_factor * 0.2)
            * self._personal_factor()
        )

        curve = []
        for day in range(1, days + 1):
            fsrs_predicted = float(np.exp(-day / avg_stability)) * 100
            actual_predicted = float(np.exp(-day / adjusted_stability)) * 100
            uncertainty = min(20, 5 + day * 0.5)

            curve.append(MemoryCurvePoint(
                day=day,
                fsrs_predicted=max(5, min(100, fsrs_predicted)),
                actual_predicted=max(8, min(100, actual_predicted)),
                retention_gap=actual_predicted - fsrs_predicted,
                confidence_interval=ConfidenceInterval(
                    lower=max(0, actual_predicted - uncertainty),
                    upper=min(100, actual_predicted + uncertainty),
                ),
            ))
        return curve

    @staticmethod
    def _default_curve(days: int) -> List[MemoryCurvePoint]:
        curve = []
        for day in range(1, days + 1):
            fsrs_predicted = 85 * float(np.exp(-day / 12))
            actual_predicted = 88 * float(np.exp(-day / 14))
            curve.append(MemoryCurvePoint(
                day=day,
                fsrs_predicted=max(5, fsrs_predicted),
                actual_predicted=max(8, actual_predicted),
                retention_gap=actual_predicted - fsrs_predicted,
                confidence_interval=ConfidenceInterval(
                    lower=max(0, actual_predicted - 10),
                    upper=min(100, actual_predicted + 10),
                ),
            ))
        return curve

    # ---- insights ---------------------------------------------------

    def generate_personalized_insights(
        self,
        cards: Sequence[FSRSCard],
        session_accuracy: Optional[float] = None,
    ) -> List[PersonalizedInsight]:
        """Run each rule check and return the emitted insights, highest priority first"""
        if not self._history:
            return self._default_insights()

        checks = (
            self._performance_insight(),
            self._schedule_insight(),
            self._difficulty_insight(cards or []),
            self._method_insight(),
        )
        insights = [insight for insight in checks if insight is not None]
        return sorted(insights, key=lambda i: _PRIORITY_ORDER[i.priority], reverse=True)

    def _performance_insight(self) -> Optional[PersonalizedInsight]:
        accuracy = self._recent_accuracy()

        if accuracy < 0.7:
            return PersonalizedInsight(
                type=InsightType.PERFORMANCE,
                priority=InsightPriority.HIGH,
                title="Recall needs attention",
                description=f"Recent accuracy is {accuracy * 100:.1f}%, consider adjusting your study strategy",
                actionable=True,
                expected_improvement="15-20% better retention",
                confidence=0.85,
            )
        if accuracy > 0.9:
            return PersonalizedInsight(
                type=InsightType.PERFORMANCE,
                priority=InsightPriority.MEDIUM,
                title="Excellent performance",
                description=f"Accuracy is {accuracy * 100:.1f}%, you could take on harder material",
                actionable=True,
                expected_improvement="20% higher study efficiency",
                confidence=0.9,
            )
        return None

    def _schedule_insight(self) -> Optional[PersonalizedInsight]:
        pattern = self.analyze_learning_pattern()
        if pattern.consistency_score >= 0.6:
            return None

        return PersonalizedInsight(
            type=InsightType.SCHEDULE,
            priority=InsightPriority.MEDIUM,
            title="Build a regular study time",
            description=f"Study times vary a lot; try reviewing around {pattern.optimal_study_time} each day",
            actionable=True,
            expected_improvement="25% better memory effect",
            confidence=0.75,
        )

    @staticmethod
    def _difficulty_insight(cards: Sequence[FSRSCard]) -> Optional[PersonalizedInsight]:
        if not cards:
            return None

        avg_difficulty = float(np.mean([card.difficulty or 5 for card in cards]))
        if avg_difficulty <= 7:
            return None

        return PersonalizedInsight(
            type=InsightType.DIFFICULTY,
            priority=InsightPriority.MEDIUM,
            title="Material is difficult",
            description="Average card difficulty is high; consider a lighter daily load",
            actionable=True,
            expected_improvement="Less pressure, better consistency",
            confidence=0.8,
        )

    def _method_insight(self) -> Optional[PersonalizedInsight]:
        # Only real response times count; entries without one are skipped
        times = [e.response_time_ms for e in self._history if e.response_time_ms is not None]
        if not times or float(np.mean(times)) <= SLOW_RESPONSE_MS:
            return None

        return PersonalizedInsight(
            type=InsightType.METHOD,
            priority=InsightPriority.LOW,
            title="Speed up recall",
            description="Average thinking time is long; practice quick recall drills",
            actionable=True,
            expected_improvement="30% faster responses",
            confidence=0.7,
        )

    @staticmethod
    def _default_insights() -> List[PersonalizedInsight]:
        return [
            PersonalizedInsight(
                type=InsightType.SCHEDULE,
                priority=InsightPriority.MEDIUM,
                title="Build a study habit",
                description="Review at the same time every day to improve results",
                actionable=True,
                expected_improvement="20% better retention",
                confidence=0.8,
            ),
            PersonalizedInsight(
                type=InsightType.METHOD,
                priority=InsightPriority.LOW,
                title="Try active recall",
                description="Try to recall the answer before revealing it",
                actionable=True,
                expected_improvement="15% higher study efficiency",
                confidence=0.7,
            ),
        ]
