"""Member engagement features and rule-based scores.

The engagement classifier takes four features per member, each in [0, 1]:

    [payment_reliability, notice_read_ratio, profile_completeness, activity_recency]

The same quantities feed a weighted rule score (0-100) that is useful as a label
source or as a sanity check next to the classifier's probability.
"""

from dataclasses import dataclass

import numpy as np

from ..exceptions import InvalidInputError

RECENCY_HORIZON_DAYS = 30.0

# Weights of the rule score, in percentage points
PAYMENT_WEIGHT = 40.0
NOTICE_WEIGHT = 30.0
PROFILE_WEIGHT = 20.0
ACTIVITY_WEIGHT = 10.0


@dataclass(frozen=True)
class MemberActivity:
    """Behavioural summary of one member, already extracted by the caller.

    ``payment_reliability``, ``notice_read_ratio`` and ``profile_completeness`` are
    fractions; ``days_since_activity`` is the number of days since the last login.
    """

    payment_reliability: float
    notice_read_ratio: float
    profile_completeness: float
    days_since_activity: float

    def __post_init__(self):
        for name in ("payment_reliability", "notice_read_ratio", "profile_completeness"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidInputError(f"{name} must be in [0, 1], got {value}")
        if self.days_since_activity < 0:
            raise InvalidInputError(
                f"days_since_activity must be non-negative, got {self.days_since_activity}"
            )

    @property
    def activity_recency(self) -> float:
        """1.0 for activity today, falling linearly to 0 at 30 days."""
        return max(0.0, 1.0 - self.days_since_activity / RECENCY_HORIZON_DAYS)

    def to_features(self) -> np.ndarray:
        return np.array(
            [
                self.payment_reliability,
                self.notice_read_ratio,
                self.profile_completeness,
                self.activity_recency,
            ],
            dtype=np.float64,
        )


def engagement_features(members: list[MemberActivity]) -> np.ndarray:
    """Stack per-member feature vectors into an (n_members, 4) matrix."""
    if not members:
        raise InvalidInputError("need at least one member to build engagement features")
    return np.stack([member.to_features() for member in members])


def engagement_score(member: MemberActivity) -> float:
    """Weighted rule score in [0, 100], rounded to two decimals."""
    score = (
        member.payment_reliability * PAYMENT_WEIGHT
        + member.notice_read_ratio * NOTICE_WEIGHT
        + member.profile_completeness * PROFILE_WEIGHT
        + member.activity_recency * ACTIVITY_WEIGHT
    )
    return round(score, 2)


def engagement_level(score: float) -> str:
    """Bucket a 0-100 score: High (>= 80), Medium (>= 60) or Low."""
    if score >= 80:
        return "High"
    if score >= 60:
        return "Medium"
    return "Low"


def payment_risk_score(reliability: float, average_delay_days: float) -> float:
    """Risk in [0, 1] from payment reliability and average lateness.

    Unreliability carries 70% of the weight; lateness, capped at 30 days, the rest.
    """
    if not 0.0 <= reliability <= 1.0:
        raise InvalidInputError(f"reliability must be in [0, 1], got {reliability}")
    lateness = min(1.0, max(0.0, average_delay_days) / RECENCY_HORIZON_DAYS)
    return round((1.0 - reliability) * 0.7 + lateness * 0.3, 2)
