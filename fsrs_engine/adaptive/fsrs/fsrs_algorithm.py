"""
FSRS6 (Free Spaced Repetition Scheduler v6.1.1) Algorithm

Orchestrates one review: validates input, computes elapsed days, applies the
state machine, derives the due date (optionally fuzzed) and returns the
updated card together with an immutable review log entry.

The scheduler owns only observability counters (review count, running
accuracy, execution time); they never influence scheduling decisions.
A single instance is not safe for concurrent writers.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union
import logging
import random
import time

from fsrs_engine.core import metrics
from fsrs_engine.core.exceptions import ComputationError, FSRSError, ParameterError, VersionError

from . import memory_model as mm
from . import state_machine
from .cards import CardState, FSRSCard, Rating, ReviewLogEntry
from .parameters import FSRS6_VERSION, PARAMETER_COUNT, ModelParameters, ParameterStore

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


def coerce_rating(rating: Union[Rating, int]) -> Rating:
    """Convert an int-like rating, rejecting anything outside 1..4"""
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ParameterError("Rating must be 1, 2, 3, or 4", "rating", rating)
    try:
        return Rating(rating)
    except ValueError:
        raise ParameterError("Rating must be 1, 2, 3, or 4", "rating", rating) from None


def calculate_elapsed_days(last_review: Optional[datetime], review_time: datetime) -> int:
    """Whole days between two reviews; out-of-order timestamps are folded via abs()"""
    if last_review is None:
        return 0
    delta = (review_time - last_review).total_seconds()
    if delta < 0:
        logger.warning(
            f"Review time {review_time.isoformat()} precedes last review "
            f"{last_review.isoformat()}; using absolute gap"
        )
    return int(abs(delta) // SECONDS_PER_DAY)


class FSRSAlgorithm:
    """
    FSRS6 core scheduler

    Args:
        params: Optional overrides merged over the defaults (weights ``w``,
            ``request_retention``, ``maximum_interval``, ``enable_fuzz``,
            ``short_term_memory_enabled``, ``long_term_stability_enabled``)
        rng: Random source for fuzz; inject a seeded ``random.Random`` for
            reproducible schedules
        clock: Returns "now" when no review time is supplied
        defaults: Base configuration the overrides are merged onto
    """

    def __init__(
        self,
        params: Optional[Mapping[str, Any]] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
        defaults: Optional[ModelParameters] = None,
    ):
        self.store = ParameterStore(params, defaults=defaults)
        self.rng = rng or random.Random()
        self.clock = clock

        self._state = self._initialize_state()
        self._performance = self._initialize_metrics()

    # ---- parameters -------------------------------------------------

    @property
    def params(self) -> ModelParameters:
        return self.store.parameters

    def get_parameters(self) -> ModelParameters:
        """Current parameters (immutable snapshot)"""
        return self.store.parameters

    def update_parameters(self, new_params: Mapping[str, Any]) -> ModelParameters:
        """Merge new values into the current parameters and re-validate"""
        updated = self.store.update(new_params)
        self._state["current_weights"] = list(updated.w)
        logger.info(f"FSRS parameters updated: {sorted(new_params.keys())}")
        return updated

    def apply_personalized_weights(self, weights: Optional[Sequence[float]]) -> ModelParameters:
        """Switch to personalized weights, or back to the defaults when None"""
        if weights is None:
            updated = self.update_parameters({"w": self.store.defaults.w})
            self._state["personalization_enabled"] = False
        else:
            updated = self.update_parameters({"w": weights})
            self._state["personalization_enabled"] = True
        return updated

    # ---- info -------------------------------------------------------

    def get_version_info(self) -> Dict[str, Any]:
        return {
            "version": FSRS6_VERSION,
            "algorithm_name": "FSRS6",
            "parameter_count": PARAMETER_COUNT,
            "implementation_date": self.clock().isoformat(),
            "compatibility_level": "standard",
        }

    def get_state(self) -> Dict[str, Any]:
        state = dict(self._state)
        state["current_weights"] = list(self._state["current_weights"])
        return state

    def get_performance_metrics(self) -> Dict[str, Any]:
        return dict(self._performance)

    # ---- scheduling -------------------------------------------------

    def create_card(self, now: Optional[datetime] = None) -> FSRSCard:
        """Create a NEW card due immediately"""
        started = time.perf_counter()
        now = now or self.clock()
        params = self.params

        try:
            card = FSRSCard(
                due=now,
                stability=0.0,
                difficulty=mm.initial_difficulty(params.w),
                state=CardState.NEW,
                retrievability=1.0,
                short_term_memory_factor=1.0 if params.short_term_memory_enabled else None,
                long_term_stability_factor=1.0 if params.long_term_stability_enabled else None,
            )
        except Exception as e:
            metrics.increment_counter("fsrs_errors_total", {"operation": "create_card"})
            raise ComputationError(
                f"Failed to create FSRS6 card: {e}", "create_card", {"params": params.to_dict()}
            ) from e

        metrics.increment_counter("fsrs_cards_created_total")
        self._record_timing(started, "fsrs_create_duration_ms")
        return card

    def review(
        self,
        card: FSRSCard,
        rating: Union[Rating, int],
        review_time: Optional[datetime] = None,
        response_time_ms: Optional[float] = None,
    ) -> Tuple[FSRSCard, ReviewLogEntry]:
        """
        Process a card review and return (updated card, review log)

        The input card is not modified.

        Raises:
            ParameterError: rating outside 1..4 or card is not an FSRSCard
            VersionError: card was produced by a different engine version
            ComputationError: any unexpected failure, wrapping the cause
        """
        started = time.perf_counter()
        try:
            self._validate_card(card)
            rating = coerce_rating(rating)
            now = review_time or self.clock()

            updated, log = self._schedule(
                card, rating, now, fuzz=self.params.enable_fuzz, response_time_ms=response_time_ms
            )
        except FSRSError:
            raise
        except Exception as e:
            metrics.increment_counter("fsrs_errors_total", {"operation": "review"})
            raise ComputationError(
                f"Failed to review card: {e}",
                "review",
                {"card": card, "rating": rating, "review_time": review_time},
            ) from e

        self._update_state(rating)
        metrics.increment_counter("fsrs_reviews_total", {"rating": rating.name.lower()})
        self._record_timing(started, "fsrs_review_duration_ms")

        logger.debug(
            f"Reviewed card: {card.state.value} -> {updated.state.value}, "
            f"rating={rating.name}, interval={updated.scheduled_days}d"
        )
        return updated, log

    def preview(
        self, card: FSRSCard, review_time: Optional[datetime] = None
    ) -> Dict[Rating, Dict[str, Any]]:
        """
        Preview what would happen for each rating
        Useful for showing users predicted intervals

        Unfuzzed, and leaves counters and the random source untouched.
        """
        self._validate_card(card)
        now = review_time or self.clock()

        predictions = {}
        for rating in Rating:
            updated, _ = self._schedule(card, rating, now, fuzz=False)
            predictions[rating] = {
                "interval": updated.scheduled_days,
                "due": updated.due,
                "stability": updated.stability,
                "difficulty": updated.difficulty,
                "state": updated.state,
            }
        return predictions

    def _schedule(
        self,
        card: FSRSCard,
        rating: Rating,
        now: datetime,
        fuzz: bool,
        response_time_ms: Optional[float] = None,
    ) -> Tuple[FSRSCard, ReviewLogEntry]:
        params = self.params
        elapsed_days = calculate_elapsed_days(card.last_review, now)

        working = card.copy(
            last_review=now,
            elapsed_days=elapsed_days,
            reps=card.reps + 1,
        )
        step = state_machine.transition(working, rating, params)

        due = now + timedelta(days=step.scheduled_days)
        if fuzz:
            due = mm.fuzz_due(due, step.scheduled_days, self.rng)

        updated = working.copy(
            state=step.state,
            stability=step.stability,
            difficulty=step.difficulty,
            scheduled_days=step.scheduled_days,
            lapses=working.lapses + (1 if step.lapsed else 0),
            due=due,
            retrievability=mm.retrievability(elapsed_days, step.stability),
        )

        if params.short_term_memory_enabled:
            updated.short_term_memory_factor = state_machine.short_term_memory_factor(working, rating, params)
        if params.long_term_stability_enabled:
            updated.long_term_stability_factor = state_machine.long_term_stability_factor(working, rating, params)

        log = ReviewLogEntry(
            rating=rating,
            state=card.state,
            due=card.due,
            stability=card.stability,
            difficulty=card.difficulty,
            elapsed_days=elapsed_days,
            previous_elapsed_days=card.elapsed_days,
            scheduled_days=step.scheduled_days,
            review=now,
            response_time_ms=response_time_ms,
        )
        return updated, log

    # ---- validation & bookkeeping -----------------------------------

    @staticmethod
    def _validate_card(card: FSRSCard) -> None:
        if not isinstance(card, FSRSCard):
            raise ParameterError("Invalid card data", "card", card)
        if card.version != FSRS6_VERSION:
            raise VersionError(FSRS6_VERSION, card.version)

    def _initialize_state(self) -> Dict[str, Any]:
        return {
            "is_initialized": True,
            "parameters_loaded": True,
            "personalization_enabled": False,
            "total_reviews": 0,
            "average_accuracy": 0.0,
            "current_weights": list(self.params.w),
        }

    @staticmethod
    def _initialize_metrics() -> Dict[str, Any]:
        return {
            "algorithm_version": FSRS6_VERSION,
            "execution_time": 0.0,  # ms, moving average
            "operations": 0,
        }

    def _update_state(self, rating: Rating) -> None:
        self._state["total_reviews"] += 1
        total = self._state["total_reviews"]
        is_correct = 1 if rating >= Rating.GOOD else 0
        self._state["average_accuracy"] = (
            self._state["average_accuracy"] * (total - 1) + is_correct
        ) / total

    def _record_timing(self, started: float, histogram: str) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000
        self._performance["execution_time"] = (self._performance["execution_time"] + elapsed_ms) / 2
        self._performance["operations"] += 1
        metrics.observe_histogram(histogram, elapsed_ms)
