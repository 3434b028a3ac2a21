"""
Scheduling state machine

Every (state, rating) pair maps to exactly one transition function in
TRANSITIONS, so the table can be checked exhaustively:

    NEW        -> LEARNING (AGAIN, HARD) | REVIEW (GOOD, EASY)
    LEARNING   -> RELEARNING (AGAIN)     | REVIEW (otherwise)
    REVIEW     -> RELEARNING (AGAIN)     | REVIEW (otherwise)
    RELEARNING -> RELEARNING (AGAIN)     | REVIEW (otherwise)
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from . import memory_model as mm
from .cards import CardState, FSRSCard, Rating
from .parameters import ModelParameters

HARD_INTERVAL_PENALTY = 0.85
EASY_INTERVAL_BONUS = 1.15
FACTOR_BOUNDS = (0.5, 2.0)


@dataclass(frozen=True)
class Transition:
    """Result of applying one rating to one card"""
    state: CardState
    stability: float
    difficulty: float
    scheduled_days: int
    lapsed: bool = False


TransitionFn = Callable[[FSRSCard, Rating, ModelParameters], Transition]


def _interval(stability: float, params: ModelParameters) -> int:
    return mm.next_interval_days(stability, params.request_retention, params.maximum_interval)


def _forget(card: FSRSCard, rating: Rating, params: ModelParameters) -> Transition:
    next_state = CardState.LEARNING if card.state == CardState.NEW else CardState.RELEARNING
    return Transition(
        state=next_state,
        stability=mm.forget_stability(card.stability, card.difficulty, card.elapsed_days, params.w),
        difficulty=mm.next_difficulty(card.difficulty, rating, params.w),
        scheduled_days=0,
        lapsed=True,
    )


def _first_recall(card: FSRSCard, rating: Rating, params: ModelParameters) -> Transition:
    stability = mm.initial_stability(rating, params.w)
    return Transition(
        state=CardState.LEARNING if rating == Rating.HARD else CardState.REVIEW,
        stability=stability,
        difficulty=mm.next_difficulty(card.difficulty, rating, params.w),
        scheduled_days=_interval(stability, params),
    )


def _recall(card: FSRSCard, rating: Rating, params: ModelParameters) -> Transition:
    stability = mm.recall_stability(
        card.stability,
        card.difficulty,
        card.elapsed_days,
        rating,
        params.w,
        short_term_memory_enabled=params.short_term_memory_enabled,
        long_term_stability_enabled=params.long_term_stability_enabled,
    )
    # Interval-level adjustment stacked on top of w15/w16
    interval_input = stability
    if rating == Rating.HARD:
        interval_input *= HARD_INTERVAL_PENALTY
    elif rating == Rating.EASY:
        interval_input *= EASY_INTERVAL_BONUS

    return Transition(
        state=CardState.REVIEW,
        stability=stability,
        difficulty=mm.next_difficulty(card.difficulty, rating, params.w),
        scheduled_days=_interval(interval_input, params),
    )


def _build_table() -> Dict[Tuple[CardState, Rating], TransitionFn]:
    table = {}
    for state in CardState:
        for rating in Rating:
            if rating == Rating.AGAIN:
                table[(state, rating)] = _forget
            elif state == CardState.NEW:
                table[(state, rating)] = _first_recall
            else:
                table[(state, rating)] = _recall
    return table


TRANSITIONS: Dict[Tuple[CardState, Rating], TransitionFn] = _build_table()


def transition(card: FSRSCard, rating: Rating, params: ModelParameters) -> Transition:
    """Look up and apply the transition for card.state x rating"""
    return TRANSITIONS[(card.state, rating)](card, rating, params)


def _nudge_factor(
    factor: Optional[float],
    rating: Rating,
    step: float,
    applies: bool,
) -> float:
    base = factor if factor else 1.0
    if not applies:
        return base
    change = step if rating >= Rating.GOOD else -step
    low, high = FACTOR_BOUNDS
    return max(low, min(high, base + change))


def short_term_memory_factor(card: FSRSCard, rating: Rating, params: ModelParameters) -> float:
    """Move the short-term factor by +/-w17 for reviews inside the 3-day window"""
    return _nudge_factor(
        card.short_term_memory_factor,
        rating,
        params.w[17],
        card.elapsed_days <= mm.SHORT_TERM_WINDOW_DAYS,
    )


def long_term_stability_factor(card: FSRSCard, rating: Rating, params: ModelParameters) -> float:
    """Move the long-term factor by +/-w19 for reviews after 30+ days"""
    return _nudge_factor(
        card.long_term_stability_factor,
        rating,
        params.w[19],
        card.elapsed_days >= mm.LONG_TERM_THRESHOLD_DAYS,
    )
