"""
Temporal and confidence weighting for assessments.

Each assessment's effective weight inside its track is

    effective_weight = temporal_decay_factor(age) * confidence_factor(level)

It only sets relative influence between assessments of the same track; it
never moves a score off the 1-4 scale.

Decay is a step function rather than a curve so organisers can predict
exactly when an assessment loses influence:

    age <= 90 days   -> 1.00
    91-180 days      -> 0.80
    181-365 days     -> 0.60
    > 365 days       -> 0.40 (floor)
"""

import logging
from datetime import datetime
from typing import Optional

from ..schemas.rating import ConfidenceLevel, ensure_utc
from .weight_registry import ScoringParameters

logger = logging.getLogger(__name__)


def assessment_age_days(submitted_at: datetime, now: datetime) -> int:
    """Whole days between submission and now; future timestamps count as 0."""
    delta = ensure_utc(now) - ensure_utc(submitted_at)
    if delta.total_seconds() < 0:
        logger.warning(f"Assessment submitted in the future ({submitted_at.isoformat()} > {now.isoformat()})")
        return 0
    return delta.days


def temporal_decay_factor(age_days: int, params: Optional[ScoringParameters] = None) -> float:
    """Step-function decay factor for an assessment of the given age."""
    params = params or ScoringParameters()
    age_days = max(age_days, 0)
    for max_age, factor in params.decay_bands:
        if age_days <= max_age:
            return factor
    return params.decay_floor


def confidence_factor(
    level: ConfidenceLevel,
    params: Optional[ScoringParameters] = None,
    organiser_multiplier: Optional[float] = None,
) -> float:
    """Weight multiplier for a confidence level.

    An organiser-specific multiplier replaces the midpoint default but is
    clamped into the level's documented range, so a trusted organiser's
    MEDIUM can reach 0.90 and never exceed it.
    """
    params = params or ScoringParameters()
    if organiser_multiplier is None:
        return params.confidence_factors[level.value]
    lo, hi = params.confidence_ranges[level.value]
    return max(lo, min(hi, organiser_multiplier))


def effective_weight(
    submitted_at: datetime,
    level: ConfidenceLevel,
    now: datetime,
    params: Optional[ScoringParameters] = None,
    organiser_multiplier: Optional[float] = None,
) -> float:
    """Temporal factor times confidence factor for one assessment."""
    age = assessment_age_days(submitted_at, now)
    return temporal_decay_factor(age, params) * confidence_factor(level, params, organiser_multiplier)


def nearest_confidence_level(factor: float, params: Optional[ScoringParameters] = None) -> ConfidenceLevel:
    """Map an averaged confidence factor back to the closest level.

    Ties resolve to the weaker level.
    """
    params = params or ScoringParameters()
    best = ConfidenceLevel.VERY_LOW
    best_distance = float("inf")
    for level in ConfidenceLevel:
        distance = abs(params.confidence_factors[level.value] - factor)
        if distance < best_distance or (distance == best_distance and level.rank > best.rank):
            best = level
            best_distance = distance
    return best
