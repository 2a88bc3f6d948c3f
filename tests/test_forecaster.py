import asyncio

import numpy as np
import pytest

from society_insights.ml.exceptions import (
    DimensionMismatchError,
    InvalidInputError,
    ModelFileError,
    ModelNotTrainedError,
    ModelReleasedError,
    TrainingFailedError,
)
from society_insights.ml.models.base import ModelState, TrainingConfig, split_validation
from society_insights.ml.models.neural_models import EngagementClassifier, RegressionForecaster


def test_training_is_deterministic_for_fixed_seed(lag_data):
    """Two fresh models, same data and config: same loss curve."""
    X, y = lag_data
    config = TrainingConfig(epochs=15, learning_rate=0.01, validation_split=0.2, seed=123)

    first = RegressionForecaster().train(X, y, config)
    second = RegressionForecaster().train(X, y, config)

    np.testing.assert_allclose(first.loss_history, second.loss_history, rtol=1e-5)
    np.testing.assert_allclose(
        first.validation_loss_history, second.validation_loss_history, rtol=1e-5
    )
    print("✓ test_training_is_deterministic_for_fixed_seed")


def test_metrics_describe_the_run(lag_data, quick_training):
    X, y = lag_data
    forecaster = RegressionForecaster()

    metrics = forecaster.train(X, y, quick_training)

    assert forecaster.state is ModelState.TRAINED
    assert metrics.epochs_run == 5
    assert len(metrics.loss_history) == 5
    assert metrics.training_samples == 32
    assert metrics.validation_samples == 8
    assert metrics.loss >= 0
    assert metrics.validation_loss is not None and metrics.validation_loss >= 0
    assert metrics.accuracy is None


def test_no_validation_rows_reports_no_validation_loss(lag_data):
    X, y = lag_data

    metrics = RegressionForecaster().train(
        X, y, TrainingConfig(epochs=2, learning_rate=0.01, validation_split=0.0)
    )

    assert metrics.validation_loss is None
    assert metrics.validation_samples == 0
    assert metrics.training_samples == 40


def test_split_keeps_at_least_one_training_row():
    X = np.ones((1, 3))
    y = np.ones(1)

    X_train, _, X_val, _ = split_validation(X, y, 0.9)

    assert len(X_train) == 1
    assert len(X_val) == 0


def test_predict_before_training_fails(lag_data):
    X, _ = lag_data
    forecaster = RegressionForecaster()

    with pytest.raises(ModelNotTrainedError):
        forecaster.predict(X)

    forecaster.initialize(12)
    assert forecaster.state is ModelState.INITIALIZED
    with pytest.raises(ModelNotTrainedError):
        forecaster.predict(X)


def test_predict_with_wrong_width_fails(lag_data, quick_training):
    """Trained on 12-wide rows, asked about a 10-wide row."""
    X, y = lag_data
    forecaster = RegressionForecaster()
    forecaster.train(X, y, quick_training)

    with pytest.raises(DimensionMismatchError):
        forecaster.predict(np.ones((1, 10)))


def test_retrain_reuses_architecture_and_checks_width(lag_data, quick_training):
    X, y = lag_data
    forecaster = RegressionForecaster()
    forecaster.train(X, y, quick_training)
    network = forecaster.network

    forecaster.train(X * 2, y * 2, quick_training)
    assert forecaster.network is network

    with pytest.raises(DimensionMismatchError):
        forecaster.train(X[:, :10], y, quick_training)
    with pytest.raises(DimensionMismatchError):
        forecaster.initialize(8)


def test_predictions_have_one_value_per_row(lag_data, quick_training):
    X, y = lag_data
    forecaster = RegressionForecaster()
    forecaster.train(X, y, quick_training)

    predictions = forecaster.predict(X[:7])

    assert predictions.shape == (7,)
    assert predictions.dtype == np.float64
    assert np.all(np.isfinite(predictions))
    # inference is deterministic once trained (dropout off)
    np.testing.assert_array_equal(predictions, forecaster.predict(X[:7]))


def test_non_finite_loss_raises_training_failed():
    """Labels this large overflow float32 once squared."""
    X = np.ones((8, 3))
    y = np.full(8, 1e20)

    with pytest.raises(TrainingFailedError):
        RegressionForecaster().train(X, y, TrainingConfig(epochs=3, validation_split=0.0))


def test_invalid_inputs_rejected(lag_data):
    X, y = lag_data
    forecaster = RegressionForecaster()

    with pytest.raises(InvalidInputError):
        forecaster.train(X, y[:-1])
    with pytest.raises(InvalidInputError):
        forecaster.train([[1.0, 2.0], [3.0]], [1.0, 2.0])
    with pytest.raises(InvalidInputError):
        forecaster.train(np.empty((0, 12)), [])


@pytest.mark.parametrize(
    "kwargs",
    [
        {"epochs": 0},
        {"learning_rate": 0.0},
        {"validation_split": 1.0},
        {"validation_split": -0.1},
        {"batch_size": 0},
    ],
)
def test_training_config_validation(kwargs):
    with pytest.raises(InvalidInputError):
        TrainingConfig(**kwargs)


def test_release_frees_model(lag_data, quick_training):
    X, y = lag_data
    with RegressionForecaster() as forecaster:
        forecaster.train(X, y, quick_training)

    assert forecaster.is_released
    assert forecaster.network is None
    with pytest.raises(ModelReleasedError):
        forecaster.predict(X)
    with pytest.raises(ModelNotTrainedError):
        forecaster.train(X, y, quick_training)
    forecaster.release()


def test_save_and_load_round_trip(tmp_path, lag_data, quick_training):
    X, y = lag_data
    location = str(tmp_path / "forecaster.joblib")
    forecaster = RegressionForecaster()
    forecaster.train(X, y, quick_training)
    expected = forecaster.predict(X)

    forecaster.save(location)
    restored = RegressionForecaster()
    restored.load(location)

    assert restored.is_trained
    assert restored.input_dim == 12
    np.testing.assert_allclose(restored.predict(X), expected, rtol=1e-6)
    assert restored.last_metrics.loss_history == forecaster.last_metrics.loss_history


def test_load_errors(tmp_path, lag_data, quick_training):
    X, y = lag_data
    with pytest.raises(ModelFileError):
        RegressionForecaster().load(str(tmp_path / "missing.joblib"))

    location = str(tmp_path / "forecaster.joblib")
    forecaster = RegressionForecaster()
    forecaster.train(X, y, quick_training)
    forecaster.save(location)
    with pytest.raises(ModelFileError):
        EngagementClassifier().load(location)

    with pytest.raises(ModelNotTrainedError):
        RegressionForecaster().save(str(tmp_path / "untrained.joblib"))


def test_failed_retrain_restores_previous_weights(lag_data, quick_training):
    """A learning rate this large blows the weights up after the first step."""
    X, y = lag_data
    forecaster = RegressionForecaster()
    forecaster.train(X, y, quick_training)
    before = forecaster.predict(X)

    with pytest.raises(TrainingFailedError):
        forecaster.train(
            X, y, TrainingConfig(epochs=3, learning_rate=1e30, batch_size=4, validation_split=0.0)
        )

    assert forecaster.state is ModelState.TRAINED
    after = forecaster.predict(X)
    assert np.all(np.isfinite(after))
    np.testing.assert_allclose(after, before)
    print("✓ test_failed_retrain_restores_previous_weights")


def test_failed_first_fit_stays_untrained():
    X = np.ones((8, 3))
    y = np.full(8, 1e20)
    forecaster = RegressionForecaster()

    with pytest.raises(TrainingFailedError):
        forecaster.train(X, y, TrainingConfig(epochs=3, validation_split=0.0))

    assert forecaster.state is ModelState.INITIALIZED
    with pytest.raises(ModelNotTrainedError):
        forecaster.predict(X)


def test_corrupt_model_files_raise_model_file_error(tmp_path, lag_data, quick_training):
    X, y = lag_data
    garbage = tmp_path / "garbage.joblib"
    garbage.write_bytes(b"not a model")
    with pytest.raises(ModelFileError):
        RegressionForecaster().load(str(garbage))

    location = tmp_path / "forecaster.joblib"
    forecaster = RegressionForecaster()
    forecaster.train(X, y, quick_training)
    forecaster.save(str(location))
    blob = location.read_bytes()
    location.write_bytes(blob[: len(blob) // 2])

    with pytest.raises(ModelFileError):
        RegressionForecaster().load(str(location))


def test_async_train_and_predict(lag_data, quick_training):
    X, y = lag_data
    forecaster = RegressionForecaster()

    async def run():
        metrics = await forecaster.train_async(X, y, quick_training)
        predictions = await forecaster.predict_async(X)
        return metrics, predictions

    metrics, predictions = asyncio.run(run())

    assert metrics.epochs_run == 5
    assert predictions.shape == (40,)


def test_async_failure_surfaces_from_await():
    forecaster = RegressionForecaster()

    with pytest.raises(ModelNotTrainedError):
        asyncio.run(forecaster.predict_async(np.ones((1, 12))))
