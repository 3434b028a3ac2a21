"""
Legacy FSRS interface

Wraps FSRSAlgorithm for callers that still use the pre-FSRS6 card shape:
no version tag and no short/long-term memory factors. Cards are upgraded on
the way in (factors reset to 1.0) and stripped on the way out.
"""
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple, Union
import math
import random

from .cards import CardState, FSRSCard, Rating, ReviewLogEntry
from .fsrs_algorithm import FSRSAlgorithm
from .parameters import FSRS6_VERSION

SECONDS_PER_CARD = 30

_LEGACY_PARAM_KEYS = ("w", "request_retention", "maximum_interval", "enable_fuzz")


@dataclass
class LegacyCard:
    """Card shape exposed to legacy callers"""
    due: datetime
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: int = 0
    scheduled_days: int = 0
    reps: int = 0
    lapses: int = 0
    state: CardState = CardState.NEW
    last_review: Optional[datetime] = None
    retrievability: float = 1.0


_LEGACY_FIELDS = tuple(f.name for f in fields(LegacyCard))


def to_fsrs6_card(card: LegacyCard) -> FSRSCard:
    return FSRSCard(
        **asdict(card),
        version=FSRS6_VERSION,
        short_term_memory_factor=1.0,
        long_term_stability_factor=1.0,
    )


def from_fsrs6_card(card: FSRSCard) -> LegacyCard:
    return LegacyCard(**{name: getattr(card, name) for name in _LEGACY_FIELDS})


class FSRS:
    """
    Backward-compatible scheduler facade

    Short-term and long-term memory effects are always on underneath.
    """

    def __init__(
        self,
        params: Optional[Mapping[str, Any]] = None,
        rng: Optional[random.Random] = None,
        **kwargs,
    ):
        overrides = {k: v for k, v in (params or {}).items() if k in _LEGACY_PARAM_KEYS}
        overrides["short_term_memory_enabled"] = True
        overrides["long_term_stability_enabled"] = True
        self.core = FSRSAlgorithm(overrides, rng=rng, **kwargs)

    def create_card(self, now: Optional[datetime] = None) -> LegacyCard:
        return from_fsrs6_card(self.core.create_card(now))

    def review(
        self,
        card: LegacyCard,
        rating: Union[Rating, int],
        review_time: Optional[datetime] = None,
    ) -> Tuple[LegacyCard, ReviewLogEntry]:
        updated, log = self.core.review(to_fsrs6_card(card), rating, review_time)
        return from_fsrs6_card(updated), log

    def get_parameters(self) -> Dict[str, Any]:
        params = self.core.get_parameters().to_dict()
        return {key: params[key] for key in _LEGACY_PARAM_KEYS}

    def update_parameters(self, new_params: Mapping[str, Any]) -> Dict[str, Any]:
        self.core.update_parameters(
            {k: v for k, v in new_params.items() if k in _LEGACY_PARAM_KEYS}
        )
        return self.get_parameters()

    def get_version_info(self) -> Dict[str, Any]:
        return self.core.get_version_info()

    def get_performance_metrics(self) -> Dict[str, Any]:
        return self.core.get_performance_metrics()

    @staticmethod
    def predict_memory_state(card: LegacyCard, future_days: float) -> float:
        """Retrievability future_days from now; 0 for unlearned cards"""
        if card.stability <= 0:
            return 0.0
        return math.exp(-(card.elapsed_days + future_days) / card.stability)

    @staticmethod
    def calculate_progress(card: LegacyCard) -> float:
        """
        Coarse 0-1 progress heuristic blending stability and repetitions.
        Not derived from the memory model.
        """
        if card.state == CardState.NEW:
            return 0.0
        if card.state == CardState.REVIEW and card.stability > 100:
            return 1.0

        stability_progress = min(card.stability / 100, 1.0)
        reps_progress = min(card.reps / 10, 1.0)
        return (stability_progress + reps_progress) / 2

    @staticmethod
    def get_recommended_study_time(total_cards: int, target_cards: int) -> int:
        """Estimated minutes to get through min(total, target) cards"""
        effective_cards = max(0, min(total_cards, target_cards))
        return math.ceil(effective_cards * SECONDS_PER_CARD / 60)
