"""Trainable models and their shared infrastructure."""

from .autoencoder import AutoencoderAnomalyDetector, outlier_fence
from .base import BaseNeuralModel, ModelMetrics, ModelState, TrainingConfig
from .neural_models import EngagementClassifier, RegressionForecaster
from .statistical import ZScoreAnomalyDetector

__all__ = [
    "AutoencoderAnomalyDetector",
    "BaseNeuralModel",
    "EngagementClassifier",
    "ModelMetrics",
    "ModelState",
    "RegressionForecaster",
    "TrainingConfig",
    "ZScoreAnomalyDetector",
    "outlier_fence",
]
