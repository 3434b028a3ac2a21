"""
Card memory state and review log records
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from .parameters import FSRS6_VERSION


class Rating(IntEnum):
    """Review rating options"""
    AGAIN = 1  # Completely forgot
    HARD = 2   # Difficult to recall
    GOOD = 3   # Recalled correctly
    EASY = 4   # Recalled easily


class CardState(str, Enum):
    """Scheduling states"""
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class FSRSCard:
    """
    Memory state of one learning item.

    A card is only ever changed by FSRSAlgorithm.review(), which returns a
    new instance and leaves the input untouched.
    """
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
    short_term_memory_factor: Optional[float] = None
    long_term_stability_factor: Optional[float] = None
    version: str = FSRS6_VERSION

    def copy(self, **changes) -> "FSRSCard":
        return replace(self, **changes)

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            "version": self.version,
            "due": _iso(self.due),
            "stability": self.stability,
            "difficulty": self.difficulty,
            "elapsed_days": self.elapsed_days,
            "scheduled_days": self.scheduled_days,
            "reps": self.reps,
            "lapses": self.lapses,
            "state": self.state.value,
            "last_review": _iso(self.last_review),
            "retrievability": self.retrievability,
            "short_term_memory_factor": self.short_term_memory_factor,
            "long_term_stability_factor": self.long_term_stability_factor,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "FSRSCard":
        return cls(
            due=_parse(d["due"]),
            stability=d.get("stability", 0.0),
            difficulty=d.get("difficulty", 0.0),
            elapsed_days=d.get("elapsed_days", 0),
            scheduled_days=d.get("scheduled_days", 0),
            reps=d.get("reps", 0),
            lapses=d.get("lapses", 0),
            state=CardState(d.get("state", CardState.NEW.value)),
            last_review=_parse(d.get("last_review")),
            retrievability=d.get("retrievability", 1.0),
            short_term_memory_factor=d.get("short_term_memory_factor"),
            long_term_stability_factor=d.get("long_term_stability_factor"),
            version=d.get("version", FSRS6_VERSION),
        )


@dataclass(frozen=True)
class ReviewLogEntry:
    """
    Immutable record of a single review.

    stability/difficulty/state/due hold the values *before* the review;
    elapsed_days is the gap since the previous review and scheduled_days
    the interval just assigned.
    """
    rating: Rating
    state: CardState
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: int
    scheduled_days: int
    review: datetime
    previous_elapsed_days: int = 0
    response_time_ms: Optional[float] = field(default=None, compare=False)

    def to_dict(self) -> Dict:
        return {
            "rating": int(self.rating),
            "state": self.state.value,
            "due": _iso(self.due),
            "stability": self.stability,
            "difficulty": self.difficulty,
            "elapsed_days": self.elapsed_days,
            "previous_elapsed_days": self.previous_elapsed_days,
            "scheduled_days": self.scheduled_days,
            "review": _iso(self.review),
            "response_time_ms": self.response_time_ms,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "ReviewLogEntry":
        return cls(
            rating=Rating(d["rating"]),
            state=CardState(d.get("state", CardState.REVIEW.value)),
            due=_parse(d.get("due") or d["review"]),
            stability=d.get("stability", 0.0),
            difficulty=d.get("difficulty", 0.0),
            elapsed_days=d.get("elapsed_days", 0),
            scheduled_days=d.get("scheduled_days", 0),
            review=_parse(d["review"]),
            previous_elapsed_days=d.get("previous_elapsed_days", 0),
            response_time_ms=d.get("response_time_ms"),
        )
