"""
Adaptive Scheduling Engine
Implements FSRS6 scheduling with per-user weight personalization

- FSRS6 (Free Spaced Repetition Scheduler v6.1.1) - 21-weight memory model with
  short-term memory and long-term stability effects
- Staged weight optimisation - baseline, targeted and full gradient phases with
  checkpoint backtracking
"""

from .fsrs import (
    FSRSAlgorithm,
    FSRSCard,
    Rating,
    CardState,
    ReviewLogEntry,
    FSRS,
    PersonalizationManager,
    RobustPersonalizationManager,
)

__all__ = [
    "FSRSAlgorithm",
    "FSRSCard",
    "Rating",
    "CardState",
    "ReviewLogEntry",
    "FSRS",
    "PersonalizationManager",
    "RobustPersonalizationManager",
]
