"""
Root pytest configuration and shared fixtures.

Provides a seeded random source, a fixed reference clock and builders for
review histories so scheduling results are reproducible.
"""

import random
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import pytest

from fsrs_engine.adaptive.fsrs.cards import CardState, Rating, ReviewLogEntry
from fsrs_engine.adaptive.fsrs.fsrs_algorithm import FSRSAlgorithm
from fsrs_engine.core import metrics


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: unit tests for isolated components"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# ============================================================================
# Core fixtures
# ============================================================================

REFERENCE_TIME = datetime(2024, 3, 1, 19, 0, 0)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time"""
    return REFERENCE_TIME


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source for fuzz"""
    return random.Random(42)


@pytest.fixture
def scheduler(rng, now) -> FSRSAlgorithm:
    """Scheduler with fuzz disabled and a frozen clock"""
    return FSRSAlgorithm({"enable_fuzz": False}, rng=rng, clock=lambda: now)


@pytest.fixture
def fuzzy_scheduler(rng, now) -> FSRSAlgorithm:
    """Scheduler with fuzz enabled and a seeded random source"""
    return FSRSAlgorithm({"enable_fuzz": True}, rng=rng, clock=lambda: now)


@pytest.fixture(autouse=True)
def clean_metrics():
    """Each test starts with empty process-wide metrics"""
    metrics.reset_metrics()
    yield
    metrics.reset_metrics()


# ============================================================================
# History builders
# ============================================================================

def make_log(
    rating: int = Rating.GOOD,
    review: Optional[datetime] = None,
    elapsed_days: int = 1,
    stability: float = 5.0,
    difficulty: float = 5.0,
    scheduled_days: int = 3,
    response_time_ms: Optional[float] = None,
) -> ReviewLogEntry:
    review = review or REFERENCE_TIME
    return ReviewLogEntry(
        rating=Rating(rating),
        state=CardState.REVIEW,
        due=review,
        stability=stability,
        difficulty=difficulty,
        elapsed_days=elapsed_days,
        scheduled_days=scheduled_days,
        review=review,
        response_time_ms=response_time_ms,
    )


def build_history(
    ratings: Sequence[int],
    start: datetime = REFERENCE_TIME,
    spacing: timedelta = timedelta(days=1),
    **kwargs,
) -> List[ReviewLogEntry]:
    """One entry per rating, spaced evenly from start"""
    return [
        make_log(rating, review=start + spacing * i, **kwargs)
        for i, rating in enumerate(ratings)
    ]


@pytest.fixture
def history_builder() -> Callable[..., List[ReviewLogEntry]]:
    return build_history


@pytest.fixture
def log_builder() -> Callable[..., ReviewLogEntry]:
    return make_log
