"""Deterministic scoring modules for employer traffic light ratings."""

from .classifier import ClassificationResult, classify, score_to_color
from .criterion_scorer import CriterionResult, score_assessment, validate_criterion_score
from .rating_engine import compute_employer_rating, count_active_sham_flags, live_assessments
from .track_combiner import (
    AssessmentContribution,
    CombinedResult,
    DiscrepancyCheck,
    TrackResult,
    classify_discrepancy,
    combine_tracks,
    summarise_track,
    track_score,
)
from .weight_registry import (
    RatingConfig,
    RoleWeights,
    ScoringParameters,
    WeightConfig,
    get_role_weights,
    get_scoring_parameters,
    get_weight_config,
    load_rating_config,
)
from .weighting import confidence_factor, effective_weight, temporal_decay_factor

__all__ = [
    # Engine
    "compute_employer_rating",
    "count_active_sham_flags",
    "live_assessments",
    # Criterion scoring
    "CriterionResult",
    "score_assessment",
    "validate_criterion_score",
    # Weighting
    "confidence_factor",
    "effective_weight",
    "temporal_decay_factor",
    # Track combination
    "AssessmentContribution",
    "CombinedResult",
    "DiscrepancyCheck",
    "TrackResult",
    "classify_discrepancy",
    "combine_tracks",
    "summarise_track",
    "track_score",
    # Classification
    "ClassificationResult",
    "classify",
    "score_to_color",
    # Configuration
    "RatingConfig",
    "RoleWeights",
    "ScoringParameters",
    "WeightConfig",
    "get_role_weights",
    "get_scoring_parameters",
    "get_weight_config",
    "load_rating_config",
]
