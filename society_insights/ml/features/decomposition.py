"""Additive time series decomposition into trend, seasonal and residual parts.

The decomposition is a pure numeric transform with no learned state:

1. Trend: centered moving average. Near the ends of the series the window shrinks
   symmetrically so every index gets a value (no leading or trailing NaNs).
2. Seasonal: the average detrended value for each phase ``i % period``.
3. Residual: whatever is left after removing trend and seasonal parts.

By construction ``trend[i] + seasonal[i] + residual[i] == series[i]`` up to float
round-off, and ``seasonal[i] == seasonal_pattern[i % period]``.
"""

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from ..exceptions import InsufficientDataError, InvalidInputError
from ..validation import ArrayLike, as_series

logger = logging.getLogger(__name__)

MONTHLY_PERIOD = 12


@dataclass(frozen=True)
class Decomposition:
    """Components of a decomposed series.

    ``trend``, ``seasonal`` and ``residual`` all have the length of the input
    series. ``seasonal_pattern`` holds the ``period`` distinct phase values that
    ``seasonal`` repeats.
    """

    trend: np.ndarray
    seasonal: np.ndarray
    residual: np.ndarray
    seasonal_pattern: np.ndarray
    period: int

    def reconstruct(self) -> np.ndarray:
        return self.trend + self.seasonal + self.residual

    @property
    def residual_variance(self) -> float:
        """Population variance of the residual component."""
        return float(np.var(self.residual))

    def to_dict(self) -> dict[str, Any]:
        return {
            "trend": self.trend.tolist(),
            "seasonal": self.seasonal.tolist(),
            "residual": self.residual.tolist(),
            "seasonal_pattern": self.seasonal_pattern.tolist(),
            "period": self.period,
        }


class TimeSeriesDecomposer:
    """Split a series into trend, repeating seasonal pattern and residual."""

    def decompose(self, series: ArrayLike, period: int = MONTHLY_PERIOD) -> Decomposition:
        """Decompose ``series`` with the given seasonal ``period``.

        Args:
            series: Observations ordered in time, one per period step
            period: Length of one seasonal cycle (12 for monthly data)

        Returns:
            Decomposition whose components sum back to the input

        Raises:
            InsufficientDataError: fewer than two full periods of data
        """
        data = as_series(series)
        if period < 1:
            raise InvalidInputError(f"period must be positive, got {period}")
        if len(data) < 2 * period:
            raise InsufficientDataError(
                f"Need at least {2 * period} observations for period {period}, got {len(data)}"
            )

        trend = self.moving_average(data, period)
        detrended = data - trend
        pattern = self.seasonal_pattern(detrended, period)
        seasonal = pattern[np.arange(len(data)) % period]
        residual = detrended - seasonal

        logger.debug(
            f"Decomposed {len(data)} observations (period {period}), "
            f"residual variance {np.var(residual):.4f}"
        )
        return Decomposition(
            trend=trend,
            seasonal=seasonal,
            residual=residual,
            seasonal_pattern=pattern,
            period=period,
        )

    @staticmethod
    def moving_average(data: np.ndarray, window: int) -> np.ndarray:
        """Centered moving average with a symmetric window clipped at the ends.

        The half-width is ``window // 2``; near either end it shrinks to the number
        of points available on the shorter side. A linear series therefore has a
        trend equal to itself, edges included.
        """
        n = len(data)
        half = window // 2
        cumulative = np.concatenate(([0.0], np.cumsum(data)))
        trend = np.empty(n, dtype=np.float64)

        for i in range(n):
            reach = min(half, i, n - 1 - i)
            start, end = i - reach, i + reach + 1
            trend[i] = (cumulative[end] - cumulative[start]) / (end - start)

        return trend

    @staticmethod
    def seasonal_pattern(detrended: np.ndarray, period: int) -> np.ndarray:
        """Average detrended value for each phase in ``[0, period)``."""
        phases = np.arange(len(detrended)) % period
        sums = np.bincount(phases, weights=detrended, minlength=period)
        counts = np.bincount(phases, minlength=period)
        return sums / counts
