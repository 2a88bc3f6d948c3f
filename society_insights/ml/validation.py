"""Shape and value checks applied at every component boundary.

Callers hand the core plain Python lists or numpy arrays. These helpers turn them into
float64 numpy arrays with a known rank, or raise InvalidInputError explaining what is
wrong. Nothing downstream re-checks shapes: once an array has passed through here it
is trusted.
"""

from collections.abc import Sequence

import numpy as np

from .exceptions import InvalidInputError

ArrayLike = Sequence[float] | Sequence[Sequence[float]] | np.ndarray


def _as_float_array(values: ArrayLike, name: str) -> np.ndarray:
    try:
        array = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        # numpy refuses ragged nested sequences and non-numeric entries
        raise InvalidInputError(f"{name} must be a rectangular numeric array: {e}") from e

    if array.size and not np.all(np.isfinite(array)):
        raise InvalidInputError(f"{name} contains NaN or infinite values")
    return array


def as_series(values: ArrayLike, name: str = "series") -> np.ndarray:
    """Validate a 1-D series of observations."""
    array = _as_float_array(values, name)
    if array.ndim != 1:
        raise InvalidInputError(f"{name} must be 1-dimensional, got shape {array.shape}")
    return array


def as_feature_matrix(values: ArrayLike, name: str = "features") -> np.ndarray:
    """Validate a 2-D (samples x features) matrix.

    Empty matrices and matrices with zero-width rows are rejected: no model in this
    package can be fit or queried with them.

    Args:
        values: Nested sequence or numpy array of shape (n_samples, n_features)
        name: Label used in error messages

    Returns:
        float64 array of shape (n_samples, n_features)
    """
    array = _as_float_array(values, name)
    if array.ndim != 2:
        raise InvalidInputError(
            f"{name} must be 2-dimensional (samples x features), got shape {array.shape}"
        )
    if array.shape[0] == 0 or array.shape[1] == 0:
        raise InvalidInputError(f"{name} must have at least one row and one column")
    return array


def as_label_vector(values: ArrayLike, n_rows: int, name: str = "labels") -> np.ndarray:
    """Validate a 1-D label vector aligned with a feature matrix of ``n_rows`` rows."""
    array = as_series(values, name)
    if len(array) != n_rows:
        raise InvalidInputError(
            f"features and {name} must have the same number of samples "
            f"({n_rows} != {len(array)})"
        )
    return array
