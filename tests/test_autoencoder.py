import asyncio

import numpy as np
import pytest

from society_insights.ml.exceptions import (
    DimensionMismatchError,
    InvalidInputError,
    ModelNotTrainedError,
    ModelReleasedError,
    TrainingFailedError,
)
from society_insights.ml.models.autoencoder import (
    AutoencoderAnomalyDetector,
    layer_widths,
    outlier_fence,
    quartiles,
)
from society_insights.ml.models.base import ModelState, TrainingConfig

SCENARIO_TRAINING = TrainingConfig(epochs=100, learning_rate=0.01, validation_split=0.2, seed=42)


def test_flags_only_the_outlier(clustered_records):
    """Cluster around (0.5, 0.5) plus (0.99, 0.01): only the last record is flagged."""
    detector = AutoencoderAnomalyDetector()
    detector.train(clustered_records, SCENARIO_TRAINING)

    flags = detector.detect(clustered_records)

    assert flags.dtype == bool
    assert np.flatnonzero(flags).tolist() == [len(clustered_records) - 1]
    print("✓ test_flags_only_the_outlier")


def test_scores_are_non_negative_and_cached_threshold_is_used(clustered_records):
    detector = AutoencoderAnomalyDetector()
    detector.train(clustered_records, SCENARIO_TRAINING)

    scores = detector.scores(clustered_records)

    assert scores.shape == (len(clustered_records),)
    assert np.all(scores >= 0)
    threshold = detector.threshold
    np.testing.assert_array_equal(detector.detect(clustered_records), scores > threshold)
    # scoring never moves the threshold
    detector.scores(clustered_records[:5])
    assert detector.threshold == threshold


def test_threshold_is_the_iqr_fence_of_training_errors(clustered_records):
    detector = AutoencoderAnomalyDetector(fence_multiplier=1.5)
    detector.train(clustered_records, SCENARIO_TRAINING)

    errors = detector.scores(clustered_records)

    assert detector.threshold == pytest.approx(outlier_fence(errors, 1.5))


def test_larger_multiplier_never_flags_more(clustered_records):
    detector = AutoencoderAnomalyDetector()
    detector.train(clustered_records, TrainingConfig(epochs=10, learning_rate=0.01))

    counts = [
        int(detector.detect_with_multiplier(clustered_records, m).sum())
        for m in (0.0, 0.5, 1.0, 1.5, 3.0, 10.0)
    ]

    assert counts == sorted(counts, reverse=True)


def test_outlier_fence_grows_with_multiplier():
    errors = np.random.default_rng(0).exponential(1.0, 200)

    fences = [outlier_fence(errors, m) for m in (0.0, 0.5, 1.5, 3.0)]

    assert fences == sorted(fences)
    with pytest.raises(InvalidInputError):
        outlier_fence(errors, -1.0)


def test_quartiles_use_lower_nearest_rank():
    q1, q3 = quartiles(np.array([7.0, 1.0, 5.0, 3.0, 9.0, 11.0, 13.0, 15.0]))

    # sorted: 1 3 5 7 9 11 13 15 -> indexes 2 and 6
    assert q1 == 5.0
    assert q3 == 13.0
    assert outlier_fence(np.array([2.0, 2.0, 2.0])) == 2.0


def test_layer_widths_never_reach_zero():
    assert layer_widths(8) == (4, 2)
    assert layer_widths(2) == (1, 1)
    assert layer_widths(1) == (1, 1)


def test_detect_before_training_fails(clustered_records):
    detector = AutoencoderAnomalyDetector()

    with pytest.raises(ModelNotTrainedError):
        detector.detect(clustered_records)
    with pytest.raises(ModelNotTrainedError):
        detector.scores(clustered_records)

    detector.initialize(2)
    with pytest.raises(ModelNotTrainedError):
        detector.detect(clustered_records)


def test_width_mismatch(clustered_records):
    detector = AutoencoderAnomalyDetector()
    detector.train(clustered_records, TrainingConfig(epochs=2, learning_rate=0.01))

    with pytest.raises(DimensionMismatchError):
        detector.detect(np.full((3, 3), 0.5))


def test_save_and_load_keep_threshold(tmp_path, clustered_records):
    detector = AutoencoderAnomalyDetector()
    detector.train(clustered_records, TrainingConfig(epochs=5, learning_rate=0.01))
    location = str(tmp_path / "autoencoder.joblib")

    detector.save(location)
    restored = AutoencoderAnomalyDetector()
    restored.load(location)

    assert restored.threshold == detector.threshold
    np.testing.assert_array_equal(
        restored.detect(clustered_records), detector.detect(clustered_records)
    )


def test_release(clustered_records):
    detector = AutoencoderAnomalyDetector()
    detector.train(clustered_records, TrainingConfig(epochs=2, learning_rate=0.01))

    detector.release()

    with pytest.raises(ModelReleasedError):
        detector.detect(clustered_records)


def test_async_train_and_detect(clustered_records):
    detector = AutoencoderAnomalyDetector()

    async def run():
        await detector.train_async(clustered_records, TrainingConfig(epochs=3, learning_rate=0.01))
        return await detector.detect_async(clustered_records)

    flags = asyncio.run(run())

    assert flags.shape == (len(clustered_records),)


def test_negative_multiplier_rejected():
    with pytest.raises(InvalidInputError):
        AutoencoderAnomalyDetector(fence_multiplier=-0.5)


def test_failed_retrain_keeps_threshold_and_weights(clustered_records):
    """The loss turns NaN after a few updates; the first fit must survive intact."""
    detector = AutoencoderAnomalyDetector()
    detector.train(clustered_records, SCENARIO_TRAINING)
    threshold = detector.threshold
    scores = detector.scores(clustered_records)
    flags = detector.detect(clustered_records)

    original = detector.criterion
    calls = {"count": 0}

    def failing_criterion(output, target):
        calls["count"] += 1
        loss = original(output, target)
        return loss * float("nan") if calls["count"] > 3 else loss

    detector.criterion = failing_criterion
    with pytest.raises(TrainingFailedError):
        detector.train(
            clustered_records,
            TrainingConfig(epochs=5, learning_rate=0.5, batch_size=4, validation_split=0.0),
        )

    assert detector.state is ModelState.TRAINED
    assert detector.threshold == threshold
    np.testing.assert_allclose(detector.scores(clustered_records), scores)
    np.testing.assert_array_equal(detector.detect(clustered_records), flags)
    print("✓ test_failed_retrain_keeps_threshold_and_weights")


def test_detect_agrees_with_fence_at_own_multiplier(clustered_records):
    detector = AutoencoderAnomalyDetector(fence_multiplier=1.5)
    detector.train(clustered_records, SCENARIO_TRAINING)
    detector.train(clustered_records, TrainingConfig(epochs=20, learning_rate=0.01, seed=7))

    flags = detector.detect(clustered_records)

    np.testing.assert_array_equal(
        detector.detect_with_multiplier(clustered_records, detector.fence_multiplier), flags
    )
    np.testing.assert_array_equal(
        flags, detector.scores(clustered_records) > detector.threshold
    )
