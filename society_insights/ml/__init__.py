"""Machine learning components of the insights pipeline."""

from .exceptions import (
    DimensionMismatchError,
    InsightsError,
    InsufficientDataError,
    InvalidInputError,
    ModelFileError,
    ModelNotTrainedError,
    ModelReleasedError,
    TrainingFailedError,
)
from .orchestrator import (
    AnomalyReport,
    EngagementReport,
    ForecastResult,
    InsightsConfig,
    InsightsOrchestrator,
    InsightsReport,
)

__all__ = [
    "AnomalyReport",
    "DimensionMismatchError",
    "EngagementReport",
    "ForecastResult",
    "InsightsConfig",
    "InsightsError",
    "InsightsOrchestrator",
    "InsightsReport",
    "InsufficientDataError",
    "InvalidInputError",
    "ModelFileError",
    "ModelNotTrainedError",
    "ModelReleasedError",
    "TrainingFailedError",
]
