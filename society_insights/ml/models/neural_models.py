"""PyTorch feed-forward models for expense forecasting and engagement prediction.

Two supervised models share the same lifecycle and training loop from
:class:`BaseNeuralModel`:

- RegressionForecaster: predicts the next value of a series from a lag window of
  prior observations. Linear output, mean squared error, Adam.
- EngagementClassifier: predicts the probability that a member stays engaged from a
  fixed set of four behavioural features. Sigmoid output, binary cross-entropy, Adam.

Both build their network lazily from the first feature matrix they are trained on
and refuse to predict until a training call has succeeded.
"""

import logging
from dataclasses import replace

import numpy as np
import torch
import torch.nn as nn
from sklearn.metrics import accuracy_score

from ..exceptions import InvalidInputError
from ..validation import ArrayLike, as_feature_matrix, as_label_vector
from .base import BaseNeuralModel, ModelMetrics, TrainingConfig

logger = logging.getLogger(__name__)

FORECAST_TRAINING = TrainingConfig(epochs=100, learning_rate=0.001, validation_split=0.2)
ENGAGEMENT_TRAINING = TrainingConfig(epochs=50, learning_rate=0.01, validation_split=0.2)


class ForecastNetwork(nn.Module):
    """Lag-window regression network.

    The dropout layer after the first hidden layer regularizes the small datasets
    typical of monthly ledgers (a few dozen rows).
    """

    def __init__(self, input_size: int, dropout: float = 0.2):
        super().__init__()

        self.layers = nn.Sequential(
            nn.Linear(input_size, 64),
            nn.ReLU(),
            nn.Dropout(dropout),
            nn.Linear(64, 32),
            nn.ReLU(),
        )
        self.output = nn.Linear(32, 1)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.output(self.layers(x))


class EngagementNetwork(nn.Module):
    """Two hidden ReLU layers feeding a single sigmoid unit."""

    def __init__(self, input_size: int = 4):
        super().__init__()

        self.layers = nn.Sequential(
            nn.Linear(input_size, 16),
            nn.ReLU(),
            nn.Linear(16, 8),
            nn.ReLU(),
            nn.Linear(8, 1),
            nn.Sigmoid(),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.layers(x)


class SupervisedNeuralModel(BaseNeuralModel):
    """Shared train/predict surface for models with one scalar output per row."""

    default_training = FORECAST_TRAINING

    def _forward(self, inputs: torch.Tensor) -> torch.Tensor:
        predictions = self.network(inputs)
        # (batch, 1) -> (batch,) to line up with the label vector
        if predictions.dim() > 1 and predictions.size(1) == 1:
            predictions = predictions.squeeze(1)
        return predictions

    def _validate_labels(self, y: np.ndarray) -> None:
        """Hook for subclasses that restrict label values."""

    def train(
        self, features: ArrayLike, labels: ArrayLike, config: TrainingConfig | None = None
    ) -> ModelMetrics:
        """Fit the network to ``features``/``labels``.

        The first call fixes the architecture from the width of the feature rows;
        later calls retrain the same weights in place and must use the same width.

        Args:
            features: Matrix of shape (n_samples, n_features)
            labels: Target for each row, shape (n_samples,)
            config: Hyperparameters for this call (class defaults when omitted)

        Returns:
            ModelMetrics from the final epoch

        Raises:
            DimensionMismatchError: feature width differs from the initialized width
            TrainingFailedError: the optimization produced a non-finite loss
        """
        config = config or self.default_training
        X = as_feature_matrix(features)
        y = as_label_vector(labels, len(X))
        self._validate_labels(y)

        with self._lock:
            return self._fit(X, y, config)

    def predict(self, features: ArrayLike) -> np.ndarray:
        """Predict one value per feature row."""
        X = as_feature_matrix(features)
        with self._lock:
            self._ensure_trained()
            self._check_width(X.shape[1])
            return self._infer(X)

    async def train_async(
        self, features: ArrayLike, labels: ArrayLike, config: TrainingConfig | None = None
    ) -> ModelMetrics:
        return await self._run_async(self.train, features, labels, config)

    async def predict_async(self, features: ArrayLike) -> np.ndarray:
        return await self._run_async(self.predict, features)


class RegressionForecaster(SupervisedNeuralModel):
    """Next-value forecaster over lag-window features.

    Architecture: input -> 64 (ReLU) -> dropout -> 32 (ReLU) -> 1 (linear). The output
    is unconstrained, so predictions can fall outside the range seen in training.
    """

    model_kind = "regression_forecaster"
    default_training = FORECAST_TRAINING

    def __init__(self, dropout: float = 0.2):
        self.dropout = dropout
        super().__init__()

    def build_network(self, input_dim: int) -> nn.Module:
        return ForecastNetwork(input_dim, dropout=self.dropout)

    def build_criterion(self) -> nn.Module:
        return nn.MSELoss()


class EngagementClassifier(SupervisedNeuralModel):
    """Binary engagement-likelihood classifier.

    The four inputs are, in order: payment reliability, notice read ratio, profile
    completeness and activity recency (see ``features.engagement``). Labels are 1
    for engaged members and 0 otherwise.
    """

    model_kind = "engagement_classifier"
    fixed_input_dim = 4
    default_training = ENGAGEMENT_TRAINING
    decision_threshold = 0.5

    def build_network(self, input_dim: int) -> nn.Module:
        return EngagementNetwork(input_dim)

    def build_criterion(self) -> nn.Module:
        return nn.BCELoss()

    def _validate_labels(self, y: np.ndarray) -> None:
        if not np.all((y == 0) | (y == 1)):
            raise InvalidInputError("engagement labels must be 0 or 1")

    def _accuracy(self, X: np.ndarray, y: np.ndarray) -> float | None:
        if len(X) == 0:
            return None
        predicted = (self._infer(X) >= self.decision_threshold).astype(int)
        return float(accuracy_score(y.astype(int), predicted))

    def _build_metrics(self, X_train, y_train, X_val, y_val, **kwargs) -> ModelMetrics:
        metrics = super()._build_metrics(X_train, y_train, X_val, y_val, **kwargs)
        return replace(
            metrics,
            accuracy=self._accuracy(X_train, y_train),
            validation_accuracy=self._accuracy(X_val, y_val),
        )

    def predict_labels(self, features: ArrayLike, threshold: float | None = None) -> np.ndarray:
        """Predict 0/1 engagement labels by thresholding the probabilities."""
        cutoff = self.decision_threshold if threshold is None else threshold
        return (self.predict(features) >= cutoff).astype(int)
