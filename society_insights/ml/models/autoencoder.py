"""Reconstruction-error anomaly detection with a dense autoencoder.

The autoencoder learns to compress each multivariate record and rebuild it. Records
that look like the training data come back almost unchanged; unusual records do not.
The per-record reconstruction error is the anomaly score, and the anomaly threshold
is an outlier fence over the training errors:

    threshold = Q3 + fence_multiplier * (Q3 - Q1)

Records must already be scaled to [0, 1] (see ``features.feature_builder.MinMaxScaling``);
the decoder ends in a sigmoid, so it cannot reproduce values outside that range.
"""

import logging
from typing import Any

import numpy as np
import torch
import torch.nn as nn

from ..exceptions import InvalidInputError
from ..validation import ArrayLike, as_feature_matrix
from .base import BaseNeuralModel, TrainingConfig

logger = logging.getLogger(__name__)

ANOMALY_TRAINING = TrainingConfig(epochs=50, learning_rate=0.001, validation_split=0.2)
DEFAULT_FENCE_MULTIPLIER = 1.5


def layer_widths(input_dim: int) -> tuple[int, int]:
    """Hidden widths of the encoder: half and quarter of the input, at least 1."""
    return max(1, input_dim // 2), max(1, input_dim // 4)


class Encoder(nn.Module):
    def __init__(self, input_dim: int):
        super().__init__()
        hidden, code = layer_widths(input_dim)
        self.layers = nn.Sequential(
            nn.Linear(input_dim, hidden),
            nn.ReLU(),
            nn.Linear(hidden, code),
            nn.ReLU(),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.layers(x)


class Decoder(nn.Module):
    """Mirror of :class:`Encoder` ending in a sigmoid over the original width."""

    def __init__(self, input_dim: int):
        super().__init__()
        hidden, code = layer_widths(input_dim)
        self.layers = nn.Sequential(
            nn.Linear(code, hidden),
            nn.ReLU(),
            nn.Linear(hidden, input_dim),
            nn.Sigmoid(),
        )

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        return self.layers(z)


class AutoencoderNetwork(nn.Module):
    """Encoder and decoder trained end to end as one module."""

    def __init__(self, input_dim: int):
        super().__init__()
        self.encoder = Encoder(input_dim)
        self.decoder = Decoder(input_dim)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.decoder(self.encoder(x))


def quartiles(values: np.ndarray) -> tuple[float, float]:
    """Lower nearest-rank quartiles: ``sorted[floor(n * q)]`` for q in (0.25, 0.75)."""
    ordered = np.sort(np.asarray(values, dtype=np.float64))
    n = len(ordered)
    if n == 0:
        raise InvalidInputError("cannot take quartiles of an empty error distribution")
    q1 = ordered[min(n - 1, int(np.floor(n * 0.25)))]
    q3 = ordered[min(n - 1, int(np.floor(n * 0.75)))]
    return float(q1), float(q3)


def outlier_fence(errors: np.ndarray, multiplier: float = DEFAULT_FENCE_MULTIPLIER) -> float:
    """Upper IQR fence of an error distribution.

    ``Q3 >= Q1`` always holds, so the fence never decreases as ``multiplier`` grows.
    """
    if multiplier < 0:
        raise InvalidInputError(f"fence multiplier must be non-negative, got {multiplier}")
    q1, q3 = quartiles(errors)
    return q3 + multiplier * (q3 - q1)


class AutoencoderAnomalyDetector(BaseNeuralModel):
    """Unsupervised anomaly detector for multivariate records.

    Usage:
    ```python
    detector = AutoencoderAnomalyDetector()
    detector.train(scaled_records)
    flags = detector.detect(scaled_records)
    ```

    The threshold is recomputed by every ``train`` call and cached until the next
    one; ``detect`` and ``scores`` only read it.
    """

    model_kind = "autoencoder_anomaly_detector"
    default_training = ANOMALY_TRAINING

    def __init__(self, fence_multiplier: float = DEFAULT_FENCE_MULTIPLIER):
        if fence_multiplier < 0:
            raise InvalidInputError(
                f"fence multiplier must be non-negative, got {fence_multiplier}"
            )
        super().__init__()
        self._fence_multiplier = fence_multiplier
        self._threshold: float | None = None
        self._training_errors: np.ndarray | None = None

    def build_network(self, input_dim: int) -> nn.Module:
        return AutoencoderNetwork(input_dim)

    def build_criterion(self) -> nn.Module:
        return nn.MSELoss()

    @property
    def fence_multiplier(self) -> float:
        return self._fence_multiplier

    @property
    def threshold(self) -> float:
        """Cached anomaly threshold from the last training run."""
        with self._lock:
            self._ensure_trained()
            return self._threshold

    def train(self, data: ArrayLike, config: TrainingConfig | None = None) -> None:
        """Learn to reconstruct ``data`` and derive the anomaly threshold from it.

        The threshold comes from the errors on every record passed in, including
        rows the validation split kept out of weight updates.
        """
        config = config or self.default_training
        X = as_feature_matrix(data, name="records")

        with self._lock:
            self._fit(X, X, config)
            errors = self._reconstruction_errors(X)
            self._training_errors = errors
            threshold = outlier_fence(errors, self._fence_multiplier)
            self._threshold = threshold

        logger.info(
            f"Anomaly threshold set to {threshold:.6f} "
            f"(multiplier {self._fence_multiplier}, {len(errors)} records)"
        )

    def _reconstruction_errors(self, X: np.ndarray) -> np.ndarray:
        """Mean squared difference between each record and its reconstruction."""
        reconstruction = self._infer(X)
        return np.mean((X - reconstruction) ** 2, axis=1)

    def _checked_errors(self, data: ArrayLike, multiplier: float | None = None):
        """Score ``data`` and read the matching threshold under one lock hold.

        Returns:
            Tuple of (errors, threshold). The threshold is the cached one, or a fence
            rebuilt from the cached training errors when ``multiplier`` is given.
        """
        X = as_feature_matrix(data, name="records")
        with self._lock:
            self._ensure_trained()
            self._check_width(X.shape[1])
            errors = self._reconstruction_errors(X)
            if multiplier is None:
                return errors, self._threshold
            return errors, outlier_fence(self._training_errors, multiplier)

    def scores(self, data: ArrayLike) -> np.ndarray:
        """Non-negative reconstruction error for every record."""
        errors, _ = self._checked_errors(data)
        return errors

    def detect(self, data: ArrayLike) -> np.ndarray:
        """Boolean flag per record: True when its error exceeds the threshold."""
        errors, threshold = self._checked_errors(data)
        return errors > threshold

    def detect_with_multiplier(self, data: ArrayLike, multiplier: float) -> np.ndarray:
        """Flag records against a fence built with a different multiplier.

        The fence still comes from the cached training errors; the stored threshold
        is left untouched. Useful for comparing stricter and looser cutoffs without
        retraining.
        """
        errors, fence = self._checked_errors(data, multiplier)
        return errors > fence

    async def train_async(self, data: ArrayLike, config: TrainingConfig | None = None) -> None:
        return await self._run_async(self.train, data, config)

    async def detect_async(self, data: ArrayLike) -> np.ndarray:
        return await self._run_async(self.detect, data)

    async def scores_async(self, data: ArrayLike) -> np.ndarray:
        return await self._run_async(self.scores, data)

    def _extra_state(self) -> dict[str, Any]:
        return {
            "threshold": self._threshold,
            "fence_multiplier": self._fence_multiplier,
            "training_errors": self._training_errors,
        }

    def _restore_extra_state(self, extra: dict[str, Any]) -> None:
        self._threshold = extra.get("threshold")
        self._fence_multiplier = extra.get("fence_multiplier", self._fence_multiplier)
        self._training_errors = extra.get("training_errors")
