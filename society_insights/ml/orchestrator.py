"""Insights orchestration: decomposition, forecasting, anomaly and engagement scoring.

The orchestrator is the single entry point callers use. It owns one instance of each
trainable model, builds features from the raw arrays it is given, and returns plain
result objects. It performs no I/O, keeps no global state, and does not retry or
fall back: any component failure surfaces as InsightsError with the original
exception attached.

Typical use:
```python
with InsightsOrchestrator() as insights:
    forecast = insights.generate_forecast(monthly_expenses)
    report = insights.generate_anomaly_report(scaled_records)
```
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import numpy as np

from .exceptions import InsightsError, InvalidInputError
from .features.decomposition import MONTHLY_PERIOD, Decomposition, TimeSeriesDecomposer
from .features.engagement import engagement_level
from .features.feature_builder import (
    DEFAULT_LAG_WINDOW,
    build_lag_features,
    latest_window,
    roll_window,
    trend_direction,
)
from .models.autoencoder import (
    ANOMALY_TRAINING,
    DEFAULT_FENCE_MULTIPLIER,
    AutoencoderAnomalyDetector,
)
from .models.base import ModelMetrics, TrainingConfig
from .models.neural_models import (
    ENGAGEMENT_TRAINING,
    FORECAST_TRAINING,
    EngagementClassifier,
    RegressionForecaster,
)
from .models.statistical import DEFAULT_Z_THRESHOLD, ZScoreAnomalyDetector
from .validation import ArrayLike

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class InsightsConfig:
    """Tunable constants of the insights pipelines.

    ``confidence_scale`` and ``fence_multiplier`` are empirical: the forecast
    confidence is ``clamp(1 - residual_variance / confidence_scale, min, max)``,
    a crude mapping from noise magnitude to a bounded score rather than a
    statistical guarantee, and the anomaly fence is ``Q3 + fence_multiplier * IQR``.
    """

    period: int = MONTHLY_PERIOD
    lag_window: int = DEFAULT_LAG_WINDOW
    confidence_scale: float = 10000.0
    min_confidence: float = 0.1
    max_confidence: float = 0.95
    fence_multiplier: float = DEFAULT_FENCE_MULTIPLIER
    z_threshold: float = DEFAULT_Z_THRESHOLD
    forecast_training: TrainingConfig = FORECAST_TRAINING
    anomaly_training: TrainingConfig = ANOMALY_TRAINING
    engagement_training: TrainingConfig = ENGAGEMENT_TRAINING

    @classmethod
    def from_settings(cls, settings) -> "InsightsConfig":
        """Build a config from application settings (see ``config.settings``)."""
        return cls(
            confidence_scale=settings.confidence_scale,
            fence_multiplier=settings.fence_multiplier,
            forecast_training=TrainingConfig(
                epochs=settings.forecast_epochs,
                learning_rate=settings.forecast_learning_rate,
                validation_split=settings.validation_split,
                seed=settings.random_seed,
            ),
            anomaly_training=TrainingConfig(
                epochs=settings.anomaly_epochs,
                learning_rate=settings.anomaly_learning_rate,
                validation_split=settings.validation_split,
                seed=settings.random_seed,
            ),
            engagement_training=TrainingConfig(
                epochs=settings.engagement_epochs,
                learning_rate=settings.engagement_learning_rate,
                validation_split=settings.validation_split,
                seed=settings.random_seed,
            ),
        )


@dataclass(frozen=True)
class ForecastResult:
    """Output of the forecasting pipeline."""

    predictions: np.ndarray
    confidence: float
    decomposition: Decomposition
    metrics: ModelMetrics
    trend_direction: str = "stable"

    def to_dict(self) -> dict[str, Any]:
        return {
            "predictions": self.predictions.tolist(),
            "confidence": self.confidence,
            "decomposition": self.decomposition.to_dict(),
            "metrics": self.metrics.to_dict(),
            "trend_direction": self.trend_direction,
        }


@dataclass(frozen=True)
class AnomalyReport:
    """Per-record anomaly flags and scores, plus the threshold that produced them."""

    anomalies: np.ndarray
    scores: np.ndarray
    threshold: float

    @property
    def anomaly_count(self) -> int:
        return int(np.count_nonzero(self.anomalies))

    @property
    def anomaly_indices(self) -> list[int]:
        return np.flatnonzero(self.anomalies).tolist()

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomalies": self.anomalies.tolist(),
            "scores": self.scores.tolist(),
            "threshold": self.threshold,
        }


@dataclass(frozen=True)
class EngagementReport:
    """Engagement probabilities with High/Medium/Low buckets."""

    probabilities: np.ndarray
    levels: list[str]
    metrics: ModelMetrics

    def to_dict(self) -> dict[str, Any]:
        return {
            "probabilities": self.probabilities.tolist(),
            "levels": list(self.levels),
            "metrics": self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class InsightsReport:
    """Forecast and anomaly results produced together."""

    forecast: ForecastResult
    anomalies: AnomalyReport

    def to_dict(self) -> dict[str, Any]:
        return {
            "forecast": self.forecast.to_dict(),
            "anomalies": self.anomalies.to_dict(),
        }


class InsightsOrchestrator:
    """Composes the decomposer and models into the insights pipelines.

    The orchestrator owns its models. ``close()`` (or leaving a ``with`` /
    ``async with`` block) releases them; afterwards every pipeline call fails.
    """

    def __init__(self, config: InsightsConfig | None = None):
        self.config = config or InsightsConfig()
        self.decomposer = TimeSeriesDecomposer()
        self.forecaster = RegressionForecaster()
        self.anomaly_detector = AutoencoderAnomalyDetector(
            fence_multiplier=self.config.fence_multiplier
        )
        self.engagement_classifier = EngagementClassifier()
        self.closed = False

    def _run_stage(self, stage: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            logger.error(f"{stage} failed: {type(e).__name__}: {e}")
            raise InsightsError(f"{stage} failed: {e}", cause=e) from e

    def confidence_from_variance(self, residual_variance: float) -> float:
        """Map residual variance to a confidence score clamped to the configured bounds."""
        raw = 1.0 - residual_variance / self.config.confidence_scale
        return float(np.clip(raw, self.config.min_confidence, self.config.max_confidence))

    def decompose(self, series: ArrayLike, period: int | None = None) -> Decomposition:
        """Decompose ``series`` on its own, without training anything."""
        return self._run_stage(
            "decomposition",
            self.decomposer.decompose,
            series,
            self.config.period if period is None else period,
        )

    def generate_forecast(
        self, series: ArrayLike, config: TrainingConfig | None = None, horizon: int = 1
    ) -> ForecastResult:
        """Forecast the next ``horizon`` values of a monthly series.

        Pipeline:
        1. Decompose the series (period 12) for trend/seasonal/residual
        2. Build width-12 lag windows and train the forecaster on them
        3. Predict from the most recent window, feeding each prediction back in
           when ``horizon`` > 1
        4. Derive a confidence score from the residual variance
        """
        return self._run_stage("forecast", self._forecast, series, config, horizon)

    def _forecast(
        self, series: ArrayLike, config: TrainingConfig | None, horizon: int
    ) -> ForecastResult:
        if horizon < 1:
            raise InvalidInputError(f"horizon must be positive, got {horizon}")

        decomposition = self.decomposer.decompose(series, period=self.config.period)
        features, labels = build_lag_features(series, window=self.config.lag_window)

        metrics = self.forecaster.train(features, labels, config or self.config.forecast_training)

        window = latest_window(series, window=self.config.lag_window)
        predictions = []
        for _ in range(horizon):
            next_value = float(self.forecaster.predict(window[np.newaxis, :])[0])
            predictions.append(next_value)
            window = roll_window(window, next_value)

        confidence = self.confidence_from_variance(decomposition.residual_variance)
        logger.info(
            f"Forecast of {horizon} step(s) generated with confidence {confidence:.2f} "
            f"from {len(labels)} training rows"
        )
        return ForecastResult(
            predictions=np.asarray(predictions, dtype=np.float64),
            confidence=confidence,
            decomposition=decomposition,
            metrics=metrics,
            trend_direction=trend_direction(series),
        )

    def generate_anomaly_report(
        self, records: ArrayLike, config: TrainingConfig | None = None
    ) -> AnomalyReport:
        """Train the autoencoder on ``records`` and score the same records.

        Records must be scaled to [0, 1] beforehand. Flags, scores and threshold are
        returned exactly as the detector produced them.
        """
        return self._run_stage("anomaly detection", self._anomaly_report, records, config)

    def _anomaly_report(self, records: ArrayLike, config: TrainingConfig | None) -> AnomalyReport:
        self.anomaly_detector.train(records, config or self.config.anomaly_training)
        return AnomalyReport(
            anomalies=self.anomaly_detector.detect(records),
            scores=self.anomaly_detector.scores(records),
            threshold=self.anomaly_detector.threshold,
        )

    def generate_engagement_report(
        self,
        features: ArrayLike,
        labels: ArrayLike,
        config: TrainingConfig | None = None,
        candidates: ArrayLike | None = None,
    ) -> EngagementReport:
        """Train the engagement classifier and score ``candidates`` (or the training rows)."""
        return self._run_stage(
            "engagement prediction", self._engagement_report, features, labels, config, candidates
        )

    def _engagement_report(self, features, labels, config, candidates) -> EngagementReport:
        metrics = self.engagement_classifier.train(
            features, labels, config or self.config.engagement_training
        )
        probabilities = self.engagement_classifier.predict(
            features if candidates is None else candidates
        )
        levels = [engagement_level(p * 100) for p in probabilities]
        return EngagementReport(probabilities=probabilities, levels=levels, metrics=metrics)

    def detect_amount_outliers(self, amounts: ArrayLike) -> AnomalyReport:
        """Univariate z-score outliers, for when there are too few records to train on."""
        return self._run_stage("amount outlier detection", self._amount_outliers, amounts)

    def _amount_outliers(self, amounts: ArrayLike) -> AnomalyReport:
        detector = ZScoreAnomalyDetector().fit(amounts)
        scores = detector.scores(amounts)
        return AnomalyReport(
            anomalies=scores > self.config.z_threshold,
            scores=scores,
            threshold=self.config.z_threshold,
        )

    def generate_insights(
        self,
        series: ArrayLike,
        records: ArrayLike,
        forecast_config: TrainingConfig | None = None,
        anomaly_config: TrainingConfig | None = None,
    ) -> InsightsReport:
        """Run the forecast and anomaly pipelines one after the other."""
        forecast = self.generate_forecast(series, forecast_config)
        anomalies = self.generate_anomaly_report(records, anomaly_config)
        return InsightsReport(forecast=forecast, anomalies=anomalies)

    async def generate_forecast_async(
        self, series: ArrayLike, config: TrainingConfig | None = None, horizon: int = 1
    ) -> ForecastResult:
        return await asyncio.to_thread(self.generate_forecast, series, config, horizon)

    async def generate_anomaly_report_async(
        self, records: ArrayLike, config: TrainingConfig | None = None
    ) -> AnomalyReport:
        return await asyncio.to_thread(self.generate_anomaly_report, records, config)

    async def generate_engagement_report_async(
        self,
        features: ArrayLike,
        labels: ArrayLike,
        config: TrainingConfig | None = None,
        candidates: ArrayLike | None = None,
    ) -> EngagementReport:
        return await asyncio.to_thread(
            self.generate_engagement_report, features, labels, config, candidates
        )

    async def generate_insights_async(
        self,
        series: ArrayLike,
        records: ArrayLike,
        forecast_config: TrainingConfig | None = None,
        anomaly_config: TrainingConfig | None = None,
    ) -> InsightsReport:
        """Run the forecast and anomaly pipelines concurrently.

        The two pipelines touch different model instances, so they can train at the
        same time. If either fails, its InsightsError is raised once both have
        finished.
        """
        forecast, anomalies = await asyncio.gather(
            self.generate_forecast_async(series, forecast_config),
            self.generate_anomaly_report_async(records, anomaly_config),
            return_exceptions=True,
        )
        for outcome in (forecast, anomalies):
            if isinstance(outcome, BaseException):
                raise outcome
        return InsightsReport(forecast=forecast, anomalies=anomalies)

    def close(self) -> None:
        """Release every model the orchestrator owns. Safe to call twice."""
        if self.closed:
            return
        for model in (self.forecaster, self.anomaly_detector, self.engagement_classifier):
            model.release()
        self.closed = True
        logger.info("Insights orchestrator closed")

    def __enter__(self) -> "InsightsOrchestrator":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    async def __aenter__(self) -> "InsightsOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()
        return False
