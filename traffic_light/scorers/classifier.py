"""
Override & Classifier - hard caps and score -> colour conversion.

Rules are evaluated top-down; the first match wins:

1. No active EBA      -> RED, score pinned to 4.0          (CAPPED_NO_EBA)
2. Expired EBA        -> GREEN/YELLOW shown as AMBER        (CAPPED_EXPIRED_EBA)
3. Active sham flag   -> GREEN shown as YELLOW, never GREEN (CAPPED_SHAM)
4. Otherwise          -> colour from the score bands        (COMPUTED)

With no assessment data there is nothing for rules 2-4 to act on and the
result is UNKNOWN (UNRATED); rule 1 still forces RED because a missing EBA is
itself a compliance fact.

Colour bands on the 1-4 scale (upper bounds exclusive, configurable):
    [1.0, 1.75) GREEN   [1.75, 2.5) YELLOW   [2.5, 3.25) AMBER   [3.25, 4.0] RED
"""

from dataclasses import dataclass
from typing import Optional

from ..constants import MAX_SCORE
from ..schemas.rating import EbaStatus, RatingState, TrafficLightColor
from .weight_registry import ScoringParameters


@dataclass
class ClassificationResult:
    """Applied rating alongside the uncapped one."""

    overall_score: Optional[float]
    overall_color: TrafficLightColor
    state: RatingState
    applied_cap_reason: Optional[RatingState]
    original_computed_color: TrafficLightColor
    original_computed_score: Optional[float]

    @property
    def color_changed(self) -> bool:
        return self.overall_color != self.original_computed_color


def score_to_color(score: Optional[float], params: Optional[ScoringParameters] = None) -> TrafficLightColor:
    """Map a 1-4 score to its colour band."""
    if score is None:
        return TrafficLightColor.UNKNOWN
    thresholds = (params or ScoringParameters()).color_thresholds
    if score < thresholds["green"]:
        return TrafficLightColor.GREEN
    if score < thresholds["yellow"]:
        return TrafficLightColor.YELLOW
    if score < thresholds["amber"]:
        return TrafficLightColor.AMBER
    return TrafficLightColor.RED


def classify(
    score: Optional[float],
    eba_status: EbaStatus,
    active_sham_flags: int,
    params: Optional[ScoringParameters] = None,
) -> ClassificationResult:
    """Apply the override rules to a blended score.

    Pure and deterministic; no side effects.
    """
    computed_color = score_to_color(score, params)

    def _result(color, state, applied_score=score):
        return ClassificationResult(
            overall_score=applied_score,
            overall_color=color,
            state=state,
            applied_cap_reason=state if state.is_cap else None,
            original_computed_color=computed_color,
            original_computed_score=score,
        )

    if eba_status == EbaStatus.NONE:
        return _result(TrafficLightColor.RED, RatingState.CAPPED_NO_EBA, applied_score=float(MAX_SCORE))

    if computed_color == TrafficLightColor.UNKNOWN:
        return _result(TrafficLightColor.UNKNOWN, RatingState.UNRATED)

    if eba_status == EbaStatus.EXPIRED:
        capped = computed_color
        if computed_color in (TrafficLightColor.GREEN, TrafficLightColor.YELLOW):
            capped = TrafficLightColor.AMBER
        return _result(capped, RatingState.CAPPED_EXPIRED_EBA)

    if active_sham_flags > 0:
        capped = TrafficLightColor.YELLOW if computed_color == TrafficLightColor.GREEN else computed_color
        return _result(capped, RatingState.CAPPED_SHAM)

    return _result(computed_color, RatingState.COMPUTED)
