"""
Criterion Scorer - turns one assessment into a single 1-4 subtotal.

    subtotal = sum(score[c] * w[c]) / sum(w[c] for c present)

Criteria absent from an assessment drop out of numerator and denominator,
so partial assessments are renormalised rather than penalised. A criterion
with an out-of-range value is rejected on its own; the assessment only fails
(EmptyAssessment) when nothing valid and weighted is left.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..constants import VALID_SCORES
from ..errors import EmptyAssessment, InvalidCriterionScore
from ..schemas.rating import Assessment
from .weight_registry import RoleWeights

logger = logging.getLogger(__name__)


@dataclass
class CriterionResult:
    """Scorer output for one assessment."""

    assessment_id: str
    score: float  # weighted subtotal in [1, 4]
    covered: list[str] = field(default_factory=list)  # criteria that contributed
    rejected: list[str] = field(default_factory=list)  # criteria with invalid values
    unweighted: list[str] = field(default_factory=list)  # criteria the role table doesn't weight
    weight_used: float = 0.0  # share of the role's total weight actually covered


def validate_criterion_score(criterion: str, value: Any, assessment_id: Optional[str] = None) -> int:
    """Return the value if it is on the 1-4 scale, else raise InvalidCriterionScore.

    Booleans are rejected even though bool is an int subclass.
    """
    if isinstance(value, bool) or not isinstance(value, int) or value not in VALID_SCORES:
        raise InvalidCriterionScore(criterion, value, assessment_id)
    return value


def score_assessment(assessment: Assessment, role_weights: RoleWeights, strict: bool = False) -> CriterionResult:
    """Compute the weighted subtotal for one assessment.

    Args:
        assessment: The assessment to score
        role_weights: Weight table for the employer's role
        strict: Re-raise InvalidCriterionScore instead of rejecting the criterion

    Returns:
        CriterionResult with the subtotal and coverage details

    Raises:
        InvalidCriterionScore: strict mode and a criterion is out of range
        EmptyAssessment: no valid weighted criterion remains
    """
    numerator = 0.0
    denominator = 0.0
    covered: list[str] = []
    rejected: list[str] = []
    unweighted: list[str] = []

    for criterion in sorted(assessment.criteria_scores):
        raw = assessment.criteria_scores[criterion]
        try:
            value = validate_criterion_score(criterion, raw, assessment.assessment_id)
        except InvalidCriterionScore as e:
            if strict:
                raise
            logger.warning(f"Rejecting criterion: {e}")
            rejected.append(criterion)
            continue

        weight = role_weights.weight_for(criterion)
        if weight is None:
            logger.debug(
                f"Criterion '{criterion}' not weighted for role '{role_weights.role}' "
                f"(assessment {assessment.assessment_id})"
            )
            unweighted.append(criterion)
            continue
        if weight == 0:
            unweighted.append(criterion)
            continue

        numerator += value * weight
        denominator += weight
        covered.append(criterion)

    if denominator == 0:
        raise EmptyAssessment(assessment.assessment_id, rejected)

    return CriterionResult(
        assessment_id=assessment.assessment_id,
        score=numerator / denominator,
        covered=covered,
        rejected=rejected,
        unweighted=unweighted,
        weight_used=denominator,
    )
