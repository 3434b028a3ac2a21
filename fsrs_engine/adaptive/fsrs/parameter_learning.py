"""
FSRS6 Parameter Learning

Progressive, data-driven adjustment of the 21 weights from a user's review
history.

Stages:
1. baseline  (< 50 reviews)   collect reference metrics only
2. phase1    (>= 100 reviews) one small gradient step on w0-w3 and w17-w20,
                              kept only when it improves loss by more than 5%
3. phase2    (>= 200 reviews) full-vector gradient descent with early stopping
4. optimized                  weights applied, checkpoints monitored

Loss is the mean squared error between predicted retention and the observed
recall outcome (rating >= GOOD). Gradients are central differences.

A backtracking strategy keeps a few weight checkpoints and rolls back
(blended with the current weights) when prediction accuracy degrades.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np

from fsrs_engine.core.config import settings
from fsrs_engine.core.exceptions import ParameterError

from .cards import Rating, ReviewLogEntry
from .fsrs_algorithm import FSRSAlgorithm
from .memory_model import round_half_up
from .parameters import DEFAULT_WEIGHTS, PARAMETER_COUNT, PARAMETER_RANGES

logger = logging.getLogger(__name__)

PHASE1_INDICES = (0, 1, 2, 3, 17, 18, 19, 20)
_LOWER = np.array([r[0] for r in PARAMETER_RANGES])
_UPPER = np.array([r[1] for r in PARAMETER_RANGES])


def _history_arrays(history: Sequence[ReviewLogEntry]):
    """(elapsed_days, stability, recalled) as numpy arrays"""
    elapsed = np.array([max(entry.elapsed_days or 0, 0) for entry in history], dtype=float)
    stability = np.array([entry.stability or 1.0 for entry in history], dtype=float)
    stability[stability <= 0] = 1.0
    recalled = np.array([1.0 if entry.rating >= Rating.GOOD else 0.0 for entry in history])
    return elapsed, stability, recalled


def predict_retention(history: Sequence[ReviewLogEntry], weights: Sequence[float]) -> np.ndarray:
    """Predicted retention per review under the given weights"""
    elapsed, stability, _ = _history_arrays(history)
    retention = np.exp(-elapsed / stability)
    adjustment = 1 + weights[17] * 0.1  # w17: short-term memory factor
    return np.clip(retention * adjustment, 0.0, 1.0)


def retention_rate(history: Sequence[ReviewLogEntry]) -> float:
    if not history:
        return 0.0
    return sum(1 for entry in history if entry.rating >= Rating.GOOD) / len(history)


@dataclass
class BaselineMetrics:
    """Reference metrics collected before any optimisation"""
    accuracy: float
    avg_interval: float
    retention_rate: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "avg_interval": self.avg_interval,
            "retention_rate": self.retention_rate,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PerformanceMetrics:
    """Snapshot used to compare weight checkpoints"""
    prediction_accuracy: float
    retention_rate: float
    review_count: int
    avg_response_time: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def stability_score(self) -> float:
        # 70% prediction accuracy + 30% retention
        return self.prediction_accuracy * 0.7 + self.retention_rate * 0.3


@dataclass
class WeightCheckpoint:
    weights: List[float]
    performance: PerformanceMetrics
    review_count: int
    timestamp: datetime = field(default_factory=datetime.now)


class GradientWeightOptimizer:
    """
    Small-step gradient optimiser for the FSRS6 weights

    Args:
        learning_rate: Step size for weight updates
        min_data_points: Minimum history length for a baseline
        epsilon: Central-difference step
    """

    def __init__(
        self,
        learning_rate: float = 0.05,
        min_data_points: int = None,
        epsilon: float = 0.01,
    ):
        self.learning_rate = learning_rate
        self.min_data_points = min_data_points or settings.PERSONALIZATION_MIN_REVIEWS
        self.epsilon = epsilon

    def calculate_loss(self, history: Sequence[ReviewLogEntry], weights: Sequence[float]) -> float:
        """Mean squared error of predicted retention vs. actual recall"""
        if not history:
            return 0.0
        _, _, recalled = _history_arrays(history)
        predicted = predict_retention(history, weights)
        return float(np.mean((predicted - recalled) ** 2))

    def calculate_gradient(
        self, history: Sequence[ReviewLogEntry], weights: Sequence[float], index: int
    ) -> float:
        """Descent direction for one weight (negative loss slope)"""
        plus = np.array(weights, dtype=float)
        minus = np.array(weights, dtype=float)
        plus[index] += self.epsilon
        minus[index] -= self.epsilon

        loss_plus = self.calculate_loss(history, plus)
        loss_minus = self.calculate_loss(history, minus)
        return -(loss_plus - loss_minus) / (2 * self.epsilon)

    def collect_baseline(self, history: Sequence[ReviewLogEntry]) -> BaselineMetrics:
        """
        Measure how well the default weights describe this history

        Raises:
            ParameterError: fewer than min_data_points entries
        """
        if len(history) < self.min_data_points:
            raise ParameterError(
                f"At least {self.min_data_points} reviews are required to build a baseline",
                "history",
                len(history),
            )

        predicted = predict_retention(history, DEFAULT_WEIGHTS)
        _, _, recalled = _history_arrays(history)
        correct = sum(
            1 for p, actual in zip(predicted, recalled) if round_half_up(p) == int(actual)
        )

        intervals = [entry.scheduled_days for entry in history if entry.scheduled_days and entry.scheduled_days > 0]

        baseline = BaselineMetrics(
            accuracy=correct / len(history),
            avg_interval=float(np.mean(intervals)) if intervals else 0.0,
            retention_rate=retention_rate(history),
        )
        logger.info(f"Baseline collected: {baseline.to_dict()}")
        return baseline

    def optimize_phase1(
        self, history: Sequence[ReviewLogEntry], baseline: BaselineMetrics
    ) -> List[float]:
        """
        One gradient step on the initial-stability and FSRS6-specific weights.
        Returns the defaults unless the loss improves by more than 5%.
        """
        current = np.array(DEFAULT_WEIGHTS, dtype=float)
        optimized = current.copy()

        for index in PHASE1_INDICES:
            gradient = self.calculate_gradient(history, optimized, index)
            optimized[index] += self.learning_rate * gradient
            optimized[index] = np.clip(optimized[index], _LOWER[index], _UPPER[index])

        improvement = self.validate_improvement(history, current, optimized)
        if improvement > 0.05:
            logger.info(
                f"Phase 1 optimisation improved loss by {improvement * 100:.1f}% "
                f"(baseline accuracy {baseline.accuracy:.3f})"
            )
            return optimized.tolist()

        logger.info("Phase 1 optimisation gave no clear improvement, keeping default weights")
        return current.tolist()

    def optimize_phase2(
        self,
        history: Sequence[ReviewLogEntry],
        initial_weights: Sequence[float],
        max_iterations: int = 10,
        patience: int = 3,
    ) -> List[float]:
        """Full-vector gradient descent with early stopping; returns the best vector seen"""
        learning_rate = self.learning_rate * 0.8
        weights = np.array(initial_weights, dtype=float)
        best_weights = weights.copy()
        best_loss = self.calculate_loss(history, weights)
        no_improvement = 0

        for iteration in range(max_iterations):
            gradients = np.array(
                [self.calculate_gradient(history, weights, i) for i in range(PARAMETER_COUNT)]
            )
            weights = np.clip(weights + learning_rate * gradients, _LOWER, _UPPER)

            loss = self.calculate_loss(history, weights)
            if loss < best_loss:
                best_loss = loss
                best_weights = weights.copy()
                no_improvement = 0
                logger.debug(f"Phase 2 iteration {iteration + 1}: loss {loss:.4f}")
            else:
                no_improvement += 1

            if no_improvement >= patience:
                logger.debug(f"Phase 2 stopped early at iteration {iteration + 1}")
                break

        logger.info(f"Phase 2 optimisation finished, final loss {best_loss:.4f}")
        return best_weights.tolist()

    def validate_improvement(
        self,
        history: Sequence[ReviewLogEntry],
        old_weights: Sequence[float],
        new_weights: Sequence[float],
    ) -> float:
        """Relative loss reduction of new_weights over old_weights"""
        old_loss = self.calculate_loss(history, old_weights)
        if old_loss <= 0:
            return 0.0
        new_loss = self.calculate_loss(history, new_weights)
        return (old_loss - new_loss) / old_loss


class MemoryBacktrackingStrategy:
    """
    Keeps recent weight checkpoints and suggests a rollback when
    performance degrades
    """

    def __init__(self, max_checkpoints: int = 5, performance_threshold: float = 0.1):
        self.max_checkpoints = max_checkpoints
        self.performance_threshold = performance_threshold
        self._checkpoints: Dict[int, WeightCheckpoint] = {}

    def create_checkpoint(
        self, review_count: int, weights: Sequence[float], performance: PerformanceMetrics
    ) -> None:
        self._checkpoints[review_count] = WeightCheckpoint(
            weights=list(weights),
            performance=performance,
            review_count=review_count,
        )
        logger.info(
            f"Checkpoint #{review_count}: accuracy={performance.prediction_accuracy:.3f}, "
            f"retention={performance.retention_rate:.3f}"
        )

        if len(self._checkpoints) > self.max_checkpoints:
            oldest = min(self._checkpoints)
            del self._checkpoints[oldest]

    def detect_and_backtrack(self, current: PerformanceMetrics) -> Optional[List[float]]:
        """Weights to roll back to, or None when current performance is acceptable"""
        checkpoints = sorted(self._checkpoints.values(), key=lambda c: c.review_count, reverse=True)
        if len(checkpoints) < 2:
            return None

        previous = checkpoints[1]
        drop = previous.performance.prediction_accuracy - current.prediction_accuracy
        if drop > self.performance_threshold:
            logger.warning(f"Prediction accuracy dropped by {drop * 100:.1f}%, backtracking")
            return list(previous.weights)

        stable = self._find_most_stable_checkpoint(current)
        if stable is not None and stable is not previous:
            logger.info(f"Found more stable checkpoint #{stable.review_count}")
            return list(stable.weights)

        return None

    def _find_most_stable_checkpoint(self, current: PerformanceMetrics) -> Optional[WeightCheckpoint]:
        if not self._checkpoints:
            return None

        best = max(self._checkpoints.values(), key=lambda c: c.performance.stability_score)
        if best.performance.stability_score > current.stability_score + self.performance_threshold:
            return best
        return None

    @staticmethod
    def apply_decay_to_checkpoint(
        old_weights: Sequence[float], current_weights: Sequence[float], decay_factor: float = 0.7
    ) -> List[float]:
        """Blend old and current weights; decay_factor is the share of the old weights"""
        old = np.array(old_weights, dtype=float)
        current = np.array(current_weights, dtype=float)
        return (old * decay_factor + current * (1 - decay_factor)).tolist()

    @staticmethod
    def calculate_adaptive_decay_factor(
        old_performance: PerformanceMetrics, current_performance: PerformanceMetrics
    ) -> float:
        """The larger the drop, the more the old weights are trusted"""
        drop = old_performance.stability_score - current_performance.stability_score
        if drop > 0.2:
            return 0.9
        if drop > 0.15:
            return 0.8
        if drop > 0.1:
            return 0.7
        return 0.5

    def get_checkpoint_history(self) -> List[WeightCheckpoint]:
        return sorted(self._checkpoints.values(), key=lambda c: c.review_count)

    def clear_checkpoints(self) -> None:
        self._checkpoints.clear()

    def get_statistics(self) -> Dict[str, Any]:
        checkpoints = list(self._checkpoints.values())
        if not checkpoints:
            return {
                "total_checkpoints": 0,
                "oldest_checkpoint": 0,
                "newest_checkpoint": 0,
                "avg_accuracy": 0.0,
                "avg_retention": 0.0,
            }

        return {
            "total_checkpoints": len(checkpoints),
            "oldest_checkpoint": min(c.review_count for c in checkpoints),
            "newest_checkpoint": max(c.review_count for c in checkpoints),
            "avg_accuracy": float(np.mean([c.performance.prediction_accuracy for c in checkpoints])),
            "avg_retention": float(np.mean([c.performance.retention_rate for c in checkpoints])),
        }


class OptimizationState(str, Enum):
    BASELINE = "baseline"
    PHASE1 = "phase1"
    PHASE2 = "phase2"
    OPTIMIZED = "optimized"


class PersonalizationManager:
    """
    Drives the staged optimisation from the growing review history

    Weights are kept in memory only. When a scheduler is supplied, newly
    optimised weights are applied to it immediately.
    """

    BASELINE_MILESTONE = 50
    PHASE1_MILESTONE = 100
    PHASE2_MILESTONE = 200

    def __init__(
        self,
        scheduler: Optional[FSRSAlgorithm] = None,
        optimizer: Optional[GradientWeightOptimizer] = None,
    ):
        self.scheduler = scheduler
        self.optimizer = optimizer or GradientWeightOptimizer()
        self._clear_progress()

    def reset(self) -> None:
        """Forget all progress and put the scheduler back on default weights"""
        self._clear_progress()
        if self.scheduler is not None:
            self.scheduler.apply_personalized_weights(None)

    def _clear_progress(self) -> None:
        self.state = OptimizationState.BASELINE
        self.baseline: Optional[BaselineMetrics] = None
        self.phase1_weights: Optional[List[float]] = None
        self.phase2_weights: Optional[List[float]] = None
        self.optimized_weights: Optional[List[float]] = None
        self.total_reviews = 0
        self.last_update = datetime.now()

    def update_after_review(self, history: Sequence[ReviewLogEntry]) -> Optional[List[float]]:
        """
        Advance at most one stage for the given full history

        Returns:
            The weights applied by this call, or None
        """
        self.total_reviews = len(history)

        if self.state == OptimizationState.BASELINE and self.total_reviews >= self.BASELINE_MILESTONE:
            self.baseline = self.optimizer.collect_baseline(history)
            self._advance(OptimizationState.PHASE1)
            return None

        if self.state == OptimizationState.PHASE1 and self.total_reviews >= self.PHASE1_MILESTONE:
            self.phase1_weights = self.optimizer.optimize_phase1(history, self.baseline)
            self._advance(OptimizationState.PHASE2)
            return self.apply_optimized_weights(self.phase1_weights)

        if self.state == OptimizationState.PHASE2 and self.total_reviews >= self.PHASE2_MILESTONE:
            start = self.phase1_weights or list(DEFAULT_WEIGHTS)
            self.phase2_weights = self.optimizer.optimize_phase2(history, start)
            self._advance(OptimizationState.OPTIMIZED)
            return self.apply_optimized_weights(self.phase2_weights)

        return None

    def apply_optimized_weights(self, weights: Sequence[float]) -> List[float]:
        self.optimized_weights = list(weights)
        if self.scheduler is not None:
            self.scheduler.apply_personalized_weights(self.optimized_weights)
        return self.optimized_weights

    def current_weights(self) -> List[float]:
        return list(self.optimized_weights or DEFAULT_WEIGHTS)

    def get_optimization_progress(self) -> Dict[str, Any]:
        total = self.total_reviews
        if self.state == OptimizationState.BASELINE:
            progress = min(total / 50, 1) * 25
            next_milestone = self.BASELINE_MILESTONE
        elif self.state == OptimizationState.PHASE1:
            progress = 25 + min(max(total - 50, 0) / 50, 1) * 25
            next_milestone = self.PHASE1_MILESTONE
        elif self.state == OptimizationState.PHASE2:
            progress = 50 + min(max(total - 100, 0) / 100, 1) * 25
            next_milestone = self.PHASE2_MILESTONE
        else:
            progress = 100.0
            next_milestone = self.PHASE2_MILESTONE

        return {"state": self.state.value, "progress": progress, "next_milestone": next_milestone}

    def _advance(self, state: OptimizationState) -> None:
        logger.info(f"Personalization stage {self.state.value} -> {state.value} at {self.total_reviews} reviews")
        self.state = state
        self.last_update = datetime.now()


class RobustPersonalizationManager(PersonalizationManager):
    """
    PersonalizationManager with periodic checkpoints and automatic rollback
    """

    def __init__(
        self,
        scheduler: Optional[FSRSAlgorithm] = None,
        optimizer: Optional[GradientWeightOptimizer] = None,
        backtracking: Optional[MemoryBacktrackingStrategy] = None,
        checkpoint_interval: int = 50,
        performance_window: int = 50,
    ):
        self.backtracking = backtracking or MemoryBacktrackingStrategy()
        self.checkpoint_interval = checkpoint_interval
        self.performance_window = performance_window
        self.last_checkpoint_review_count = 0
        super().__init__(scheduler=scheduler, optimizer=optimizer)

    def update_after_review(self, history: Sequence[ReviewLogEntry]) -> Optional[List[float]]:
        applied = super().update_after_review(history)
        count = len(history)

        if count - self.last_checkpoint_review_count >= self.checkpoint_interval:
            self.backtracking.create_checkpoint(
                count, self.current_weights(), self.calculate_performance(history)
            )
            self.last_checkpoint_review_count = count

        current = self.calculate_performance(history)
        rollback = self.backtracking.detect_and_backtrack(current)
        if rollback is None:
            return applied

        checkpoints = self.backtracking.get_checkpoint_history()
        decay = (
            self.backtracking.calculate_adaptive_decay_factor(checkpoints[-1].performance, current)
            if checkpoints
            else 0.8
        )
        stabilized = MemoryBacktrackingStrategy.apply_decay_to_checkpoint(
            rollback, self.current_weights(), decay
        )
        stabilized = np.clip(stabilized, _LOWER, _UPPER).tolist()
        logger.warning(f"Rolled back weights with decay factor {decay:.2f}")
        return self.apply_optimized_weights(stabilized)

    def calculate_performance(self, history: Sequence[ReviewLogEntry]) -> PerformanceMetrics:
        recent = list(history)[-self.performance_window:]

        if recent:
            predicted = predict_retention(recent, self.current_weights())
            _, _, recalled = _history_arrays(recent)
            hits = ((predicted > 0.5) & (recalled == 1)) | ((predicted <= 0.5) & (recalled == 0))
            accuracy = float(np.mean(hits))
        else:
            accuracy = 0.0

        response_times = [e.response_time_ms for e in recent if e.response_time_ms is not None]

        return PerformanceMetrics(
            prediction_accuracy=accuracy,
            retention_rate=retention_rate(recent),
            review_count=len(history),
            avg_response_time=float(np.mean(response_times)) if response_times else None,
        )

    def reset(self) -> None:
        super().reset()
        self.backtracking.clear_checkpoints()
        self.last_checkpoint_review_count = 0
