"""Shared fixtures for the insights test suite."""

import numpy as np
import pytest

from society_insights.ml.models.base import TrainingConfig


@pytest.fixture
def seasonal_series():
    """Three years of monthly expenses: upward trend, yearly cycle, a little noise."""
    rng = np.random.default_rng(7)
    months = np.arange(36)
    return 5000 + 25 * months + 400 * np.sin(2 * np.pi * months / 12) + rng.normal(0, 20, 36)


@pytest.fixture
def clustered_records():
    """Tight 2-D cluster around (0.5, 0.5) followed by one far-off record."""
    offsets = np.arange(-0.02, 0.021, 0.01)
    cluster = [[0.5 + dx, 0.5 + dy] for dx in offsets for dy in offsets]
    return np.array(cluster + cluster + [[0.99, 0.01]])


@pytest.fixture
def quick_training():
    """Small, fast training config for tests that only check plumbing."""
    return TrainingConfig(epochs=5, learning_rate=0.01, validation_split=0.2)


@pytest.fixture
def lag_data():
    """Regression rows with 12 lag features and a smooth target."""
    rng = np.random.default_rng(3)
    X = rng.uniform(0, 1, size=(40, 12))
    y = X[:, 0] * 2 + X[:, 1]
    return X, y
