"""
FSRS6 Memory Model

Pure functions computing difficulty, stability, retrievability and
intervals. None of them touch scheduler state; weights are always passed in.

Core formulas:
- Retrievability R = exp(-t / S)
- Initial difficulty D0 = clamp(w4 - 3 * w5, 1, 10)
- Next difficulty D' = clamp(D - w6 * (G - 3) + w4 * (D0 - D), 1, 10)
- Forget stability S' = w10 * S^w12 * max(t, 1)^w13 * exp(w11 * (D - w4))
- Recall stability S' = S * exp(w8 * (G - 3 + w9 * (1 - R))) * penalties/bonuses
- Interval I = round(max(1, round(S)) * |ln(R_req) / ln(0.9)|)
"""
from datetime import datetime, timedelta
from typing import Optional, Sequence
import math
import random

from .cards import Rating

MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
MIN_STABILITY = 0.01
MAX_STABILITY = 36500.0  # 100 years
MIN_INITIAL_STABILITY = 0.1

SHORT_TERM_WINDOW_DAYS = 3
LONG_TERM_THRESHOLD_DAYS = 30

FUZZ_MIN_DAYS = 2.5
FUZZ_RATIO = 0.05
FUZZ_MAX_DAYS = 1.0


def round_half_up(value: float) -> int:
    """Round .5 away from negative infinity, as schedulers conventionally do"""
    return int(math.floor(value + 0.5))


def clamp_stability(stability: float) -> float:
    return max(MIN_STABILITY, min(MAX_STABILITY, stability))


def clamp_difficulty(difficulty: float) -> float:
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, difficulty))


def initial_difficulty(w: Sequence[float]) -> float:
    return clamp_difficulty(w[4] - 3 * w[5])


def next_difficulty(difficulty: float, rating: Rating, w: Sequence[float]) -> float:
    """Mean-reverting difficulty update, always within [1, 10]"""
    delta = -w[6] * (int(rating) - 3)
    mean_reversion = w[4] * (initial_difficulty(w) - difficulty)
    return clamp_difficulty(difficulty + delta + mean_reversion)


def retrievability(elapsed_days: float, stability: float) -> float:
    """Probability of recall after elapsed_days; 1.0 for fresh or unlearned cards"""
    if elapsed_days <= 0 or stability <= 0:
        return 1.0
    return math.exp(-elapsed_days / stability)


def forget_stability(
    stability: float,
    difficulty: float,
    elapsed_days: float,
    w: Sequence[float],
) -> float:
    """Stability after a lapse (AGAIN)"""
    difficulty_response = math.exp(w[11] * (difficulty - w[4]))
    decay = math.pow(stability, w[12]) * math.pow(max(elapsed_days, 1), w[13])
    return clamp_stability(w[10] * decay * difficulty_response)


def recall_stability(
    stability: float,
    difficulty: float,
    elapsed_days: float,
    rating: Rating,
    w: Sequence[float],
    short_term_memory_enabled: bool = True,
    long_term_stability_enabled: bool = True,
) -> float:
    """Stability after a successful recall (HARD, GOOD or EASY)"""
    hard_penalty = w[15] if rating == Rating.HARD else 1.0
    easy_bonus = w[16] if rating == Rating.EASY else 1.0

    r = retrievability(elapsed_days, stability)
    success_recall = math.exp(w[8] * (int(rating) - 3 + w[9] * (1 - r)))

    new_stability = stability * success_recall * hard_penalty * easy_bonus

    if short_term_memory_enabled and elapsed_days <= SHORT_TERM_WINDOW_DAYS:
        new_stability *= 1 + w[17] * math.exp(-w[18] * elapsed_days)

    if long_term_stability_enabled and elapsed_days >= LONG_TERM_THRESHOLD_DAYS:
        new_stability *= 1 + w[19] * math.log(1 + w[20] * elapsed_days / LONG_TERM_THRESHOLD_DAYS)

    return clamp_stability(new_stability)


def initial_stability(rating: Rating, w: Sequence[float]) -> float:
    return max(w[int(rating) - 1], MIN_INITIAL_STABILITY)


def next_interval_days(stability: float, request_retention: float, maximum_interval: int) -> int:
    """
    Interval in whole days that keeps recall near request_retention.

    Always within [1, maximum_interval]; non-finite stability maps to the maximum.
    """
    if not math.isfinite(stability):
        return max(1, int(maximum_interval))
    base = max(1, round_half_up(stability))
    request = min(max(request_retention, 0.5), 0.99)
    scaling = math.log(request) / math.log(0.9)
    interval = max(1, round_half_up(base * abs(scaling)))
    return max(1, min(interval, int(maximum_interval)))


def fuzz_due(due: datetime, scheduled_days: float, rng: Optional[random.Random] = None) -> datetime:
    """
    Shift a due date by a bounded random number of days.

    Intervals under 2.5 days are left alone; otherwise the shift is drawn
    uniformly from +/-5% of the interval, capped at one day, and rounded.
    """
    if scheduled_days < FUZZ_MIN_DAYS:
        return due

    rng = rng or random.Random()
    fuzz_range = min(FUZZ_RATIO * scheduled_days, FUZZ_MAX_DAYS)
    fuzz = (rng.random() - 0.5) * 2 * fuzz_range
    return due + timedelta(days=round_half_up(fuzz))
