"""Custom exceptions for the insights ML components.

This file defines the error kinds raised by the decomposer, the trainable models and the
insights orchestrator. Each error type tells the caller what went wrong:

1. Data problems: the input is too short, ragged, or has the wrong width
2. Lifecycle problems: the model is used before training or after release
3. Optimization problems: the training step itself blew up

Inheritance Pattern:
Data and lifecycle errors inherit from ValueError, so callers can catch the specific
type or the broad builtin. Optimization failures inherit from RuntimeError. Anything
that escapes the orchestrator is wrapped in InsightsError with the original error
attached as the cause.

Usage Examples:
- raise InsufficientDataError("Need at least 24 observations, got 10")
- raise DimensionMismatchError("Model expects 12 features, got 10")
- raise ModelNotTrainedError("Cannot predict with untrained forecaster")
"""


class InsightsError(Exception):
    """Raised by the orchestrator when any pipeline component fails.

    The orchestrator performs no fallback and no retry: the failing component's
    exception is re-raised wrapped in this type. The original is available both
    as ``__cause__`` (via ``raise ... from``) and as the ``cause`` attribute.

    Example:
    ```python
    try:
        result = orchestrator.generate_forecast(series)
    except InsightsError as e:
        if isinstance(e.cause, InsufficientDataError):
            ...
    ```
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class InsufficientDataError(ValueError):
    """Raised when the input is shorter than an operation's minimum.

    Common Scenarios:
    - Decomposing a series shorter than two full seasonal periods
    - Building lag-window features when no row has a complete history
    - Fitting a z-score detector on a constant series
    - Training on an empty feature matrix

    Example:
    ```python
    if len(series) < 2 * period:
        raise InsufficientDataError(
            f"Need at least {2 * period} observations for period {period}, got {len(series)}"
        )
    ```
    """


class DimensionMismatchError(ValueError):
    """Raised when a feature width disagrees with an already-initialized model.

    A model's architecture is fixed by its first configuration. Retraining in place
    is allowed, but only with the same feature width; so is prediction.
    """


class ModelNotTrainedError(ValueError):
    """Raised when trying to use an untrained model.

    This is a safety mechanism that prevents meaningless outputs from a network
    with random weights.

    Common Scenarios:
    - Calling predict() on a newly constructed or merely initialized model
    - Calling detect() or scores() before the autoencoder has a threshold
    - Saving a model that has never been fit
    """


class ModelReleasedError(ModelNotTrainedError):
    """Raised when a model is used after release() freed its resources."""


class TrainingFailedError(RuntimeError):
    """Raised when the optimization step itself fails.

    The usual cause is a non-finite loss (exploding gradients or NaN inputs). An
    exception thrown by the optimizer or the forward pass is also wrapped in this
    type. A failed retrain restores the weights from before the call and the model stays
    trained. A network built lazily by a failed first fit stays initialized.
    """


class InvalidInputError(ValueError):
    """Raised when input arrays are malformed.

    Validation Categories:
    - Shape validation: ragged rows, wrong rank, empty matrices
    - Value validation: NaN or infinite entries
    - Alignment validation: features and labels with different row counts
    - Label validation: non-binary labels for the engagement classifier

    Example:
    ```python
    if X.ndim != 2:
        raise InvalidInputError(f"Features must be 2D array, got shape {X.shape}")
    ```
    """


class ModelFileError(FileNotFoundError):
    """Raised when a serialized model cannot be restored.

    The storage location is an opaque string owned by the caller. This error
    covers both a missing blob and a blob that belongs to a different model kind.
    """
