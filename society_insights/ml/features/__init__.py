"""Feature engineering: decomposition, lag windows, scaling and engagement features."""

from .decomposition import Decomposition, TimeSeriesDecomposer
from .engagement import (
    MemberActivity,
    engagement_features,
    engagement_level,
    engagement_score,
    payment_risk_score,
)
from .feature_builder import MinMaxScaling, build_lag_features, latest_window, trend_direction

__all__ = [
    "Decomposition",
    "MemberActivity",
    "MinMaxScaling",
    "TimeSeriesDecomposer",
    "build_lag_features",
    "engagement_features",
    "engagement_level",
    "engagement_score",
    "latest_window",
    "payment_risk_score",
    "trend_direction",
]
