"""Base model classes and data structures for the trainable insights models.

This file contains the foundation shared by the forecaster, the engagement classifier
and the autoencoder anomaly detector:
- Training configuration (epochs, learning rate, validation split, batch size, seed)
- Training metrics (final-epoch loss and accuracy, plus the per-epoch loss curve)
- Model lifecycle (uninitialized -> initialized -> trained -> released)
- The PyTorch training loop with a held-out validation tail
- Scoped inference, persistence through joblib and explicit resource release

Every model owns a lock. Training, prediction, saving and release on one instance
are serialized; distinct instances share nothing and may run side by side.
"""

import asyncio
import logging
import pickle
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

import joblib
import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
from torch.utils.data import DataLoader, TensorDataset

from ..exceptions import (
    DimensionMismatchError,
    InvalidInputError,
    ModelFileError,
    ModelNotTrainedError,
    ModelReleasedError,
    TrainingFailedError,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 32
DEFAULT_SEED = 42


class ModelState(str, Enum):
    """Lifecycle of a trainable model."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    TRAINED = "trained"
    RELEASED = "released"


@dataclass(frozen=True)
class TrainingConfig:
    """Per-call training hyperparameters.

    Callers override these for each training call; nothing here is read from the
    environment. ``validation_split`` is the fraction of rows held out from weight
    updates and used only to report a validation loss. It must stay below 1 so at
    least one row is left to train on.
    """

    epochs: int = 100
    learning_rate: float = 0.001
    validation_split: float = 0.2
    batch_size: int | None = None
    seed: int = DEFAULT_SEED

    def __post_init__(self):
        if self.epochs < 1:
            raise InvalidInputError(f"epochs must be positive, got {self.epochs}")
        if not self.learning_rate > 0:
            raise InvalidInputError(f"learning_rate must be positive, got {self.learning_rate}")
        if not 0 <= self.validation_split < 1:
            raise InvalidInputError(
                f"validation_split must be in [0, 1), got {self.validation_split}"
            )
        if self.batch_size is not None and self.batch_size < 1:
            raise InvalidInputError(f"batch_size must be positive, got {self.batch_size}")

    @property
    def effective_batch_size(self) -> int:
        return self.batch_size or DEFAULT_BATCH_SIZE


@dataclass(frozen=True)
class ModelMetrics:
    """Final-epoch results of a training run.

    ``validation_loss`` and ``validation_accuracy`` are None when the validation
    split left no rows to hold out (tiny datasets). ``accuracy`` fields are only
    filled by classifiers.
    """

    loss: float
    validation_loss: float | None = None
    accuracy: float | None = None
    validation_accuracy: float | None = None
    epochs_run: int = 0
    training_samples: int = 0
    validation_samples: int = 0
    training_time: float = 0.0
    loss_history: tuple[float, ...] = field(default_factory=tuple)
    validation_loss_history: tuple[float, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["loss_history"] = list(self.loss_history)
        data["validation_loss_history"] = list(self.validation_loss_history)
        return data

    def __str__(self) -> str:
        text = f"loss: {self.loss:.4f}"
        if self.validation_loss is not None:
            text += f", val_loss: {self.validation_loss:.4f}"
        if self.accuracy is not None:
            text += f", acc: {self.accuracy:.3f}"
        return text


def split_validation(
    X: np.ndarray, y: np.ndarray, validation_split: float
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Hold out the last ``validation_split`` fraction of rows.

    Rows are not shuffled before splitting, so for time-ordered data the held-out
    tail is the most recent period. At least one row always stays in training.

    Returns:
        Tuple of (X_train, y_train, X_val, y_val)
    """
    n_samples = len(X)
    n_train = max(1, int(n_samples * (1 - validation_split)))
    return X[:n_train], y[:n_train], X[n_train:], y[n_train:]


class BaseNeuralModel(ABC):
    """Abstract base class for the PyTorch models.

    Provides what every model needs:
    - Lazy architecture construction from the first feature width seen
    - A seeded, batched training loop (Adam optimizer) with held-out validation
    - Non-finite loss detection, surfaced as TrainingFailedError
    - Scoped inference that leaves no tensors alive after the call
    - joblib persistence to a caller-chosen location
    - Explicit release of the network and optimizer

    Subclasses define the network, the loss and how outputs are shaped.
    """

    model_kind = "neural"
    fixed_input_dim: int | None = None

    def __init__(self):
        self.device = torch.device("cpu")
        self.network: nn.Module | None = None
        self.optimizer: optim.Optimizer | None = None
        self.criterion = self.build_criterion()

        self.input_dim: int | None = None
        self.state = ModelState.UNINITIALIZED
        self.last_metrics: ModelMetrics | None = None

        self._lock = threading.Lock()

    @abstractmethod
    def build_network(self, input_dim: int) -> nn.Module:
        """Build the network architecture for ``input_dim`` input features."""

    @abstractmethod
    def build_criterion(self) -> nn.Module:
        """Return the loss function minimized during training."""

    @property
    def is_trained(self) -> bool:
        return self.state is ModelState.TRAINED

    @property
    def is_released(self) -> bool:
        return self.state is ModelState.RELEASED

    def initialize(self, feature_dim: int, seed: int = DEFAULT_SEED) -> None:
        """Fix the architecture for ``feature_dim`` input features.

        Calling this again with the same width is a no-op; a different width fails
        because the weights are already shaped for the first one.
        """
        with self._lock:
            self._initialize(feature_dim, seed)

    def _initialize(self, feature_dim: int, seed: int) -> None:
        self._ensure_usable()
        if feature_dim < 1:
            raise InvalidInputError(f"feature_dim must be positive, got {feature_dim}")
        if self.fixed_input_dim is not None and feature_dim != self.fixed_input_dim:
            raise DimensionMismatchError(
                f"{type(self).__name__} takes exactly {self.fixed_input_dim} features, "
                f"got {feature_dim}"
            )
        if self.network is not None:
            self._check_width(feature_dim)
            return

        torch.manual_seed(seed)
        self.network = self.build_network(feature_dim).to(self.device)
        self.input_dim = feature_dim
        self.state = ModelState.INITIALIZED

        n_params = sum(p.numel() for p in self.network.parameters())
        logger.info(
            f"Initialized {type(self).__name__} with {feature_dim} inputs ({n_params:,} parameters)"
        )

    def _check_width(self, width: int) -> None:
        if self.input_dim is not None and width != self.input_dim:
            raise DimensionMismatchError(
                f"{type(self).__name__} was initialized with {self.input_dim} features, got {width}"
            )

    def _ensure_usable(self) -> None:
        if self.state is ModelState.RELEASED:
            raise ModelReleasedError(f"{type(self).__name__} has been released")

    def _ensure_trained(self) -> None:
        self._ensure_usable()
        if self.state is not ModelState.TRAINED or self.network is None:
            raise ModelNotTrainedError(
                f"{type(self).__name__} must be trained before making predictions"
            )

    def _forward(self, inputs: torch.Tensor) -> torch.Tensor:
        return self.network(inputs)

    def _create_data_loader(
        self, X: np.ndarray, y: np.ndarray, config: TrainingConfig, shuffle: bool
    ) -> DataLoader:
        """Wrap numpy arrays in a float32 TensorDataset and batch them.

        Shuffling uses a generator seeded from the config so two runs with the same
        seed see batches in the same order.
        """
        dataset = TensorDataset(
            torch.tensor(X, dtype=torch.float32, device=self.device),
            torch.tensor(y, dtype=torch.float32, device=self.device),
        )
        generator = torch.Generator().manual_seed(config.seed) if shuffle else None
        return DataLoader(
            dataset,
            batch_size=config.effective_batch_size,
            shuffle=shuffle,
            generator=generator,
            num_workers=0,
        )

    def _train_epoch(self, train_loader: DataLoader) -> float:
        """Train for one pass over the data and return the mean batch loss."""
        self.network.train()
        total_loss = 0.0
        num_batches = 0

        for batch_X, batch_y in train_loader:
            self.optimizer.zero_grad()
            loss = self.criterion(self._forward(batch_X), batch_y)

            if not torch.isfinite(loss):
                raise TrainingFailedError(
                    f"{type(self).__name__} produced a non-finite loss ({loss.item()})"
                )

            loss.backward()
            self.optimizer.step()

            total_loss += loss.item()
            num_batches += 1

        return total_loss / num_batches if num_batches > 0 else 0.0

    def _validate_epoch(self, val_loader: DataLoader) -> float:
        """Mean loss over held-out batches without touching the weights."""
        self.network.eval()
        total_loss = 0.0
        total_rows = 0

        with torch.no_grad():
            for batch_X, batch_y in val_loader:
                loss = self.criterion(self._forward(batch_X), batch_y)
                total_loss += loss.item() * len(batch_X)
                total_rows += len(batch_X)

        return total_loss / total_rows if total_rows > 0 else 0.0

    def _fit(self, X: np.ndarray, y: np.ndarray, config: TrainingConfig) -> ModelMetrics:
        """Run the training loop. Caller holds the lock and has validated shapes.

        Implements the training pipeline:
        1. Seed torch and build the network if this is the first fit
        2. Split off the validation tail
        3. Train for ``config.epochs`` epochs with Adam
        4. Record per-epoch losses and build final metrics
        """
        start_time = time.time()
        self._ensure_usable()

        torch.manual_seed(config.seed)
        if self.network is None:
            self._initialize(X.shape[1], config.seed)
        self._check_width(X.shape[1])

        X_train, y_train, X_val, y_val = split_validation(X, y, config.validation_split)

        # weights to roll back to if a retrain fails partway
        previous_weights = self._copy_weights() if self.state is ModelState.TRAINED else None

        self.optimizer = optim.Adam(self.network.parameters(), lr=config.learning_rate)
        train_loader = self._create_data_loader(X_train, y_train, config, shuffle=True)
        val_loader = (
            self._create_data_loader(X_val, y_val, config, shuffle=False) if len(X_val) else None
        )

        train_losses: list[float] = []
        val_losses: list[float] = []
        log_every = max(1, config.epochs // 10)

        logger.info(
            f"Starting {type(self).__name__} training: {len(X_train)} train rows, "
            f"{len(X_val)} validation rows, {config.epochs} epochs"
        )

        try:
            for epoch in range(config.epochs):
                train_loss = self._train_epoch(train_loader)
                train_losses.append(train_loss)

                val_loss = self._validate_epoch(val_loader) if val_loader is not None else None
                if val_loss is not None:
                    val_losses.append(val_loss)

                logger.debug(f"Epoch {epoch}: loss = {train_loss:.4f}")
                if epoch % log_every == 0 or epoch == config.epochs - 1:
                    val_text = f", Val Loss: {val_loss:.4f}" if val_loss is not None else ""
                    logger.info(f"Epoch {epoch:3d}: Train Loss: {train_loss:.4f}{val_text}")
        except TrainingFailedError:
            self._rollback(previous_weights)
            raise
        except (RuntimeError, ValueError) as e:
            self._rollback(previous_weights)
            raise TrainingFailedError(f"{type(self).__name__} training step failed: {e}") from e
        finally:
            self.network.eval()
            del train_loader, val_loader

        metrics = self._build_metrics(
            X_train,
            y_train,
            X_val,
            y_val,
            train_losses=train_losses,
            val_losses=val_losses,
            training_time=time.time() - start_time,
        )
        self.state = ModelState.TRAINED
        self.last_metrics = metrics
        logger.info(f"{type(self).__name__} training completed: {metrics}")
        return metrics

    def _copy_weights(self) -> dict[str, torch.Tensor]:
        return {
            key: tensor.detach().cpu().clone() for key, tensor in self.network.state_dict().items()
        }

    def _rollback(self, previous_weights: dict[str, torch.Tensor] | None) -> None:
        """Undo the partial updates of a failed fit.

        A retrained model gets its last good weights back and stays trained. A model
        whose first fit failed keeps its fresh weights and stays initialized, so it
        still refuses to predict.
        """
        self.optimizer = None
        if previous_weights is not None:
            self.network.load_state_dict(previous_weights)
            logger.warning(f"{type(self).__name__} training failed, previous weights restored")

    def _build_metrics(
        self,
        X_train: np.ndarray,
        y_train: np.ndarray,
        X_val: np.ndarray,
        y_val: np.ndarray,
        train_losses: list[float],
        val_losses: list[float],
        training_time: float,
    ) -> ModelMetrics:
        return ModelMetrics(
            loss=train_losses[-1],
            validation_loss=val_losses[-1] if val_losses else None,
            epochs_run=len(train_losses),
            training_samples=len(X_train),
            validation_samples=len(X_val),
            training_time=training_time,
            loss_history=tuple(train_losses),
            validation_loss_history=tuple(val_losses),
        )

    def _infer(self, X: np.ndarray) -> np.ndarray:
        """Forward pass in inference mode, returning a detached numpy copy.

        The input tensor and every intermediate exist only inside this call.
        """
        self.network.eval()
        inputs = torch.tensor(X, dtype=torch.float32, device=self.device)
        try:
            with torch.inference_mode():
                outputs = self._forward(inputs)
                result = outputs.cpu().numpy().astype(np.float64)
                del outputs
        finally:
            del inputs
        return result

    async def _run_async(self, fn, *args, **kwargs):
        """Run a blocking model call on a worker thread; one await per call."""
        return await asyncio.to_thread(fn, *args, **kwargs)

    def _extra_state(self) -> dict[str, Any]:
        """Additional learned state saved alongside the weights."""
        return {}

    def _restore_extra_state(self, extra: dict[str, Any]) -> None:
        pass

    def save(self, location: str) -> str:
        """Serialize the trained model to ``location``.

        The location is an opaque identifier chosen by the caller; it is handed to
        joblib unchanged.

        Returns:
            The location the model was written to
        """
        with self._lock:
            self._ensure_trained()
            payload = {
                "kind": self.model_kind,
                "input_dim": self.input_dim,
                "state_dict": self._copy_weights(),
                "extra": self._extra_state(),
                "metrics": self.last_metrics.to_dict() if self.last_metrics else None,
            }
            joblib.dump(payload, location)

        logger.info(f"{type(self).__name__} saved to {location}")
        return location

    def load(self, location: str) -> None:
        """Restore a model written by :meth:`save`, replacing any current weights."""
        try:
            payload = joblib.load(location)
        except FileNotFoundError as e:
            raise ModelFileError(f"Model file not found: {location}") from e
        except (EOFError, pickle.UnpicklingError) as e:
            raise ModelFileError(f"Model file is truncated or corrupt: {location}") from e

        if not isinstance(payload, dict) or payload.get("kind") != self.model_kind:
            found = payload.get("kind") if isinstance(payload, dict) else type(payload).__name__
            raise ModelFileError(
                f"{location} does not hold a {self.model_kind} model (found {found})"
            )

        with self._lock:
            self._ensure_usable()
            network = self.build_network(payload["input_dim"]).to(self.device)
            network.load_state_dict(payload["state_dict"])
            network.eval()

            self.network = network
            self.optimizer = None
            self.input_dim = payload["input_dim"]
            self._restore_extra_state(payload.get("extra", {}))
            metrics = payload.get("metrics")
            if metrics:
                metrics["loss_history"] = tuple(metrics.get("loss_history", ()))
                metrics["validation_loss_history"] = tuple(
                    metrics.get("validation_loss_history", ())
                )
                self.last_metrics = ModelMetrics(**metrics)
            self.state = ModelState.TRAINED

        logger.info(f"{type(self).__name__} loaded from {location}")

    def release(self) -> None:
        """Free the network, optimizer and learned state.

        Safe to call more than once. The model cannot be used afterwards.
        """
        with self._lock:
            if self.state is ModelState.RELEASED:
                return
            self.network = None
            self.optimizer = None
            self.last_metrics = None
            self._restore_extra_state({})
            self.state = ModelState.RELEASED
        logger.debug(f"{type(self).__name__} released")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
