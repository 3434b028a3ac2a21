"""
FSRS6 spaced repetition engine
"""
from .adaptive.fsrs import FSRS, FSRSAlgorithm, FSRSCard, Rating
from .adaptive.fsrs.parameters import FSRS6_VERSION
from .services.personalization import PersonalizationEngine

__version__ = FSRS6_VERSION

__all__ = [
    "FSRS",
    "FSRSAlgorithm",
    "FSRSCard",
    "Rating",
    "PersonalizationEngine",
    "__version__",
]
