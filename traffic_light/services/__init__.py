"""Services around the rating engine: flags, assessment capture, storage, dashboards."""

from .assessment_builder import AssessmentBuilder
from .flag_ledger import ShamContractingLedger, clear_flag, flag_from_assessment, open_flag
from .rating_dashboard import (
    RatingChange,
    RatingChangeSummary,
    TrafficLightDistribution,
    detect_rating_changes,
    distribution_by,
    rating_distribution,
)
from .rating_service import RatingService, RecomputeOutcome, RecomputeRequest

__all__ = [
    "AssessmentBuilder",
    "RatingChange",
    "RatingChangeSummary",
    "RatingService",
    "RecomputeOutcome",
    "RecomputeRequest",
    "ShamContractingLedger",
    "TrafficLightDistribution",
    "clear_flag",
    "detect_rating_changes",
    "distribution_by",
    "flag_from_assessment",
    "open_flag",
    "rating_distribution",
]
