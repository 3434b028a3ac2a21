"""
FSRS6 Spaced Repetition System

Includes:
- FSRSAlgorithm: Core FSRS6 scheduler
- FSRSCard / ReviewLogEntry: Card memory state and immutable review records
- Rating: Review rating enum (AGAIN, HARD, GOOD, EASY)
- ParameterStore: Validated 21-weight configuration
- FSRS: Backward-compatible facade over the legacy card shape
- Parameter Learning: Staged gradient optimisation with backtracking
"""
from .cards import CardState, FSRSCard, Rating, ReviewLogEntry
from .compat import FSRS, LegacyCard
from .fsrs_algorithm import FSRSAlgorithm
from .parameters import (
    DEFAULT_WEIGHTS,
    FSRS6_VERSION,
    PARAMETER_COUNT,
    PARAMETER_RANGES,
    ModelParameters,
    ParameterRepair,
    ParameterStore,
    ValidationReport,
)

from .parameter_learning import (
    # Data models
    BaselineMetrics,
    PerformanceMetrics,
    WeightCheckpoint,
    OptimizationState,
    # Optimisation
    GradientWeightOptimizer,
    MemoryBacktrackingStrategy,
    # Managers
    PersonalizationManager,
    RobustPersonalizationManager,
)

__all__ = [
    # Core algorithm
    "FSRSAlgorithm",
    "FSRSCard",
    "CardState",
    "Rating",
    "ReviewLogEntry",
    # Parameters
    "DEFAULT_WEIGHTS",
    "FSRS6_VERSION",
    "PARAMETER_COUNT",
    "PARAMETER_RANGES",
    "ModelParameters",
    "ParameterRepair",
    "ParameterStore",
    "ValidationReport",
    # Legacy facade
    "FSRS",
    "LegacyCard",
    # Parameter learning
    "BaselineMetrics",
    "PerformanceMetrics",
    "WeightCheckpoint",
    "OptimizationState",
    "GradientWeightOptimizer",
    "MemoryBacktrackingStrategy",
    "PersonalizationManager",
    "RobustPersonalizationManager",
]
