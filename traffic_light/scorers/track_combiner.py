"""
Track Combiner - per-track weighted averages and the Track 1 / Track 2 blend.

    track_score = sum(score_i * w_i) / sum(w_i)      (w_i = effective weight)
    overall     = 0.65 * track1 + 0.35 * track2       (blend is configurable)

An empty track has no score (None, never zero). With only one track the
overall score is that track's score and confidence drops one level, since
the rating rests on a single source of evidence.

Large disagreement between the tracks is flagged for manual review but never
resolved automatically; the blend is still applied.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..schemas.rating import ConfidenceLevel, DiscrepancyLevel, RecommendedAction, Track
from .weight_registry import ScoringParameters
from .weighting import nearest_confidence_level

logger = logging.getLogger(__name__)


@dataclass
class AssessmentContribution:
    """One scored assessment ready to be averaged into its track."""

    assessment_id: str
    track: Track
    score: float
    temporal_factor: float
    confidence_factor: float
    covered: list[str] = field(default_factory=list)
    weight_used: float = 1.0  # share of the role weight the assessment covered

    @property
    def effective_weight(self) -> float:
        return self.temporal_factor * self.confidence_factor


@dataclass
class TrackResult:
    """Aggregate for one track."""

    track: Track
    score: Optional[float]
    confidence: Optional[ConfidenceLevel]
    confidence_factor: Optional[float]
    assessment_count: int = 0
    total_weight: float = 0.0
    coverage: Optional[float] = None
    data_quality: Optional[ConfidenceLevel] = None

    @property
    def has_data(self) -> bool:
        return self.score is not None


@dataclass
class DiscrepancyCheck:
    """Comparison of the two track scores."""

    detected: bool = False
    level: DiscrepancyLevel = DiscrepancyLevel.NONE
    difference: Optional[float] = None
    requires_review: bool = False
    recommended_action: RecommendedAction = RecommendedAction.ACCEPT_CALCULATED
    explanation: str = ""


@dataclass
class CombinedResult:
    """Blended score across tracks, before overrides."""

    score: Optional[float]
    confidence: Optional[ConfidenceLevel]
    single_track: bool
    discrepancy: DiscrepancyCheck = field(default_factory=DiscrepancyCheck)


def track_score(contributions: list[AssessmentContribution]) -> Optional[float]:
    """Effective-weight average of the contributions; None when empty."""
    total_weight = sum(c.effective_weight for c in contributions)
    if not contributions or total_weight <= 0:
        return None
    return sum(c.score * c.effective_weight for c in contributions) / total_weight


def coverage_quality(coverage: float, params: Optional[ScoringParameters] = None) -> ConfidenceLevel:
    """Data quality level for a track's criterion coverage (0-1)."""
    params = params or ScoringParameters()
    for name in ("high", "medium", "low"):
        if coverage >= params.data_quality_thresholds[name]:
            return ConfidenceLevel(name)
    return ConfidenceLevel.VERY_LOW


def summarise_track(
    track: Track,
    contributions: list[AssessmentContribution],
    params: Optional[ScoringParameters] = None,
) -> TrackResult:
    """Score and confidence for one track.

    Track confidence is the average confidence factor of its assessments,
    weighted by recency (temporal factor), mapped to the nearest level.
    Coverage is the share of the role weight its assessments scored, averaged
    by effective weight; data quality grades that coverage.
    """
    params = params or ScoringParameters()
    own = [c for c in contributions if c.track == track]
    score = track_score(own)
    if score is None:
        return TrackResult(track=track, score=None, confidence=None, confidence_factor=None)

    recency_total = sum(c.temporal_factor for c in own)
    avg_confidence = sum(c.confidence_factor * c.temporal_factor for c in own) / recency_total
    total_weight = sum(c.effective_weight for c in own)
    coverage = sum(c.weight_used * c.effective_weight for c in own) / total_weight
    return TrackResult(
        track=track,
        score=score,
        confidence=nearest_confidence_level(avg_confidence, params),
        confidence_factor=avg_confidence,
        assessment_count=len(own),
        total_weight=total_weight,
        coverage=coverage,
        data_quality=coverage_quality(coverage, params),
    )


def classify_discrepancy(
    track1_score: Optional[float],
    track2_score: Optional[float],
    params: Optional[ScoringParameters] = None,
) -> DiscrepancyCheck:
    """Grade the disagreement between the two tracks.

    Needs both scores; with one or none there is nothing to compare.
    """
    params = params or ScoringParameters()
    if track1_score is None or track2_score is None:
        return DiscrepancyCheck(explanation="Only one track has data; no comparison possible")

    difference = abs(track1_score - track2_score)
    level = DiscrepancyLevel.CRITICAL
    for name in ("none", "minor", "moderate", "major"):
        if difference <= params.discrepancy_levels[name]:
            level = DiscrepancyLevel(name)
            break

    detected = difference > params.discrepancy_threshold
    if not detected:
        action = RecommendedAction.ACCEPT_CALCULATED
    elif level == DiscrepancyLevel.CRITICAL:
        action = RecommendedAction.ESCALATE
    else:
        action = RecommendedAction.MANUAL_REVIEW

    explanation = (
        f"Track 1 {track1_score:.2f} vs Track 2 {track2_score:.2f}: "
        f"difference {difference:.2f} classified as {level.value}"
    )
    return DiscrepancyCheck(
        detected=detected,
        level=level,
        difference=difference,
        requires_review=detected,
        recommended_action=action,
        explanation=explanation,
    )


def combine_tracks(
    track1: TrackResult,
    track2: TrackResult,
    params: Optional[ScoringParameters] = None,
) -> CombinedResult:
    """Blend Track 1 and Track 2 into one score and confidence level."""
    params = params or ScoringParameters()

    if not track1.has_data and not track2.has_data:
        return CombinedResult(score=None, confidence=None, single_track=False)

    if track1.has_data != track2.has_data:
        only = track1 if track1.has_data else track2
        confidence = only.confidence.downgraded if only.confidence else None
        logger.debug(
            f"Single-source rating from {only.track.label}: confidence {only.confidence} -> {confidence}"
        )
        return CombinedResult(score=only.score, confidence=confidence, single_track=True)

    w1 = params.track_weights[Track.PROJECT_DATA.value]
    w2 = params.track_weights[Track.ORGANISER_EXPERTISE.value]
    score = (track1.score * w1 + track2.score * w2) / (w1 + w2)
    blended_confidence = (track1.confidence_factor * w1 + track2.confidence_factor * w2) / (w1 + w2)
    discrepancy = classify_discrepancy(track1.score, track2.score, params)
    if discrepancy.detected:
        logger.info(f"Track discrepancy flagged for review: {discrepancy.explanation}")

    return CombinedResult(
        score=score,
        confidence=nearest_confidence_level(blended_confidence, params),
        single_track=False,
        discrepancy=discrepancy,
    )
