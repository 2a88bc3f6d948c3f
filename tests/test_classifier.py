import numpy as np
import pytest

from society_insights.ml.exceptions import (
    DimensionMismatchError,
    InvalidInputError,
    ModelNotTrainedError,
)
from society_insights.ml.models.base import TrainingConfig
from society_insights.ml.models.neural_models import EngagementClassifier


@pytest.fixture
def engagement_data():
    """Engaged members score high on every feature, disengaged ones low."""
    rng = np.random.default_rng(5)
    engaged = rng.uniform(0.75, 1.0, size=(30, 4))
    disengaged = rng.uniform(0.0, 0.25, size=(30, 4))
    # interleave so the validation tail holds both classes
    X = np.empty((60, 4))
    X[0::2] = engaged
    X[1::2] = disengaged
    y = np.tile([1.0, 0.0], 30)
    return X, y


def test_learns_separable_engagement(engagement_data):
    X, y = engagement_data
    classifier = EngagementClassifier()

    metrics = classifier.train(X, y, TrainingConfig(epochs=100, learning_rate=0.01))

    assert metrics.accuracy is not None and metrics.accuracy >= 0.9
    assert metrics.validation_accuracy is not None and metrics.validation_accuracy >= 0.9
    probabilities = classifier.predict(X)
    assert np.all((probabilities >= 0) & (probabilities <= 1))
    np.testing.assert_array_equal(classifier.predict_labels(X[:2]), [1, 0])
    print("✓ test_learns_separable_engagement")


def test_input_width_is_fixed_at_four():
    classifier = EngagementClassifier()

    with pytest.raises(DimensionMismatchError):
        classifier.train(np.ones((4, 5)), [1, 0, 1, 0])
    with pytest.raises(DimensionMismatchError):
        classifier.initialize(3)


def test_labels_must_be_binary():
    with pytest.raises(InvalidInputError):
        EngagementClassifier().train(np.ones((3, 4)), [1.0, 0.5, 0.0])


def test_predict_before_training_fails():
    classifier = EngagementClassifier()
    classifier.initialize(4)

    with pytest.raises(ModelNotTrainedError):
        classifier.predict(np.ones((1, 4)))


def test_predict_with_wrong_width_after_training(engagement_data):
    X, y = engagement_data
    classifier = EngagementClassifier()
    classifier.train(X, y, TrainingConfig(epochs=2, learning_rate=0.01))

    with pytest.raises(DimensionMismatchError):
        classifier.predict(np.ones((1, 3)))
