"""Feature construction for the forecasting and anomaly pipelines.

- Lag windows: each row holds the ``window`` observations before the target, most
  recent first, so column 0 is always "last period".
- Min-max scaling: column-wise rescaling to [0, 1] for the autoencoder, which can
  only reproduce values in that range.
- Trend direction: a coarse increasing/decreasing/stable label for a series.
"""

import logging

import numpy as np
from sklearn.preprocessing import MinMaxScaler

from ..exceptions import InsufficientDataError, InvalidInputError
from ..validation import ArrayLike, as_feature_matrix, as_series

logger = logging.getLogger(__name__)

DEFAULT_LAG_WINDOW = 12


def build_lag_features(
    series: ArrayLike, window: int = DEFAULT_LAG_WINDOW
) -> tuple[np.ndarray, np.ndarray]:
    """Slide a lag window over ``series``.

    Row ``k`` targets observation ``i = window + k`` and holds
    ``series[i-1], series[i-2], ..., series[i-window]``. Only rows with a full
    history are produced.

    Returns:
        Tuple of (features of shape (n - window, window), labels of shape (n - window,))

    Raises:
        InsufficientDataError: the series has no more than ``window`` observations
    """
    data = as_series(series)
    if window < 1:
        raise InvalidInputError(f"lag window must be positive, got {window}")

    n_rows = len(data) - window
    if n_rows < 1:
        raise InsufficientDataError(
            f"Need more than {window} observations to build lag features, got {len(data)}"
        )

    features = np.stack([data[i - window : i][::-1] for i in range(window, len(data))])
    labels = data[window:].copy()
    return features, labels


def latest_window(series: ArrayLike, window: int = DEFAULT_LAG_WINDOW) -> np.ndarray:
    """Lag window for the observation after the end of ``series``, most recent first."""
    data = as_series(series)
    if len(data) < window:
        raise InsufficientDataError(
            f"Need at least {window} observations for a lag window, got {len(data)}"
        )
    return data[len(data) - window :][::-1].copy()


def roll_window(window: np.ndarray, new_value: float) -> np.ndarray:
    """Push ``new_value`` in as the most recent observation and drop the oldest."""
    return np.concatenate(([new_value], window[:-1]))


class MinMaxScaling:
    """Column-wise [0, 1] scaling fitted on one matrix and reusable on others.

    Thin wrapper over scikit-learn's MinMaxScaler that validates shapes the way the
    rest of the package does. Constant columns map to 0.
    """

    def __init__(self, clip: bool = False):
        self.scaler = MinMaxScaler(feature_range=(0.0, 1.0), clip=clip)
        self.is_fitted = False

    def fit(self, records: ArrayLike) -> "MinMaxScaling":
        self.scaler.fit(as_feature_matrix(records, name="records"))
        self.is_fitted = True
        return self

    def transform(self, records: ArrayLike) -> np.ndarray:
        if not self.is_fitted:
            raise InvalidInputError("MinMaxScaling must be fitted before transform")
        X = as_feature_matrix(records, name="records")
        if X.shape[1] != self.scaler.n_features_in_:
            raise InvalidInputError(
                f"Scaler was fitted on {self.scaler.n_features_in_} columns, got {X.shape[1]}"
            )
        return self.scaler.transform(X)

    def fit_transform(self, records: ArrayLike) -> np.ndarray:
        return self.fit(records).transform(records)

    def inverse_transform(self, scaled: ArrayLike) -> np.ndarray:
        if not self.is_fitted:
            raise InvalidInputError("MinMaxScaling must be fitted before inverse_transform")
        return self.scaler.inverse_transform(as_feature_matrix(scaled, name="scaled"))


def trend_direction(series: ArrayLike, span: int = 3, tolerance: float = 0.1) -> str:
    """Compare the mean of the last ``span`` values with the ``span`` before them.

    Returns "increasing" when the recent mean is more than ``tolerance`` (relative to
    the magnitude of the older mean) above the older one, "decreasing" when it is that
    far below, and "stable" otherwise or when there is not enough history.
    """
    data = as_series(series)
    if len(data) < 2 * span:
        return "stable"

    recent = float(np.mean(data[-span:]))
    older = float(np.mean(data[-2 * span : -span]))
    margin = tolerance * abs(older)
    if recent > older + margin:
        return "increasing"
    if recent < older - margin:
        return "decreasing"
    return "stable"
