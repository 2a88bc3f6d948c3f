"""Z-score outlier detection for single-valued series such as expense amounts."""

import logging

import numpy as np

from ..exceptions import InsufficientDataError, ModelNotTrainedError
from ..validation import ArrayLike, as_series

logger = logging.getLogger(__name__)

DEFAULT_Z_THRESHOLD = 2.5


class ZScoreAnomalyDetector:
    """Flags values that sit more than ``threshold`` standard deviations from the mean.

    No training loop and no tensors: ``fit`` records the population mean and standard
    deviation, and scoring is plain numpy.
    """

    def __init__(self):
        self.mean: float | None = None
        self.std: float | None = None

    @property
    def is_fitted(self) -> bool:
        return self.std is not None

    def fit(self, values: ArrayLike) -> "ZScoreAnomalyDetector":
        data = as_series(values, name="values")
        if len(data) < 2:
            raise InsufficientDataError(f"Need at least 2 values to fit, got {len(data)}")

        std = float(np.std(data))
        if std == 0:
            raise InsufficientDataError("Cannot score outliers in a constant series")

        self.mean = float(np.mean(data))
        self.std = std
        logger.debug(f"Fitted z-score detector: mean={self.mean:.3f}, std={self.std:.3f}")
        return self

    def scores(self, values: ArrayLike) -> np.ndarray:
        """Absolute z-score of each value."""
        if not self.is_fitted:
            raise ModelNotTrainedError("ZScoreAnomalyDetector must be fitted before scoring")
        data = as_series(values, name="values")
        return np.abs((data - self.mean) / self.std)

    def detect(self, values: ArrayLike, threshold: float = DEFAULT_Z_THRESHOLD) -> np.ndarray:
        return self.scores(values) > threshold
