"""Step-by-step assessment capture.

Organisers fill in an assessment one criterion at a time. AssessmentBuilder
mirrors that: each step is validated as it is entered (a score outside 1-4
is refused immediately, a sham contracting flag without notes is refused
immediately), and an Assessment only comes into existence on build(), once
every required step is done.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from ..errors import IncompleteAssessment
from ..schemas.rating import Assessment, ConfidenceLevel, CriterionCategory, Track
from ..scorers.criterion_scorer import validate_criterion_score
from .flag_ledger import require_notes

logger = logging.getLogger(__name__)

# Criteria an organiser walks through in a full assessment.
# eba_status is usually filled from EBA records rather than asked.
DEFAULT_REQUIRED_CRITERIA = (
    CriterionCategory.UNION_RESPECT.value,
    CriterionCategory.SAFETY.value,
    CriterionCategory.SUBCONTRACTOR_USE.value,
    CriterionCategory.ROLE_SPECIFIC.value,
)


class AssessmentBuilder:
    """Collects one assessment's steps and emits an immutable Assessment.

    Usage:
        builder = AssessmentBuilder("emp-1", Track.PROJECT_DATA, organiser_id="org-3")
        builder.set_project("proj-9")
        builder.rate("union_respect", 2).rate("safety", 1)
        builder.rate("subcontractor_use", 3).rate("role_specific", 2)
        builder.set_confidence(ConfidenceLevel.HIGH)
        assessment = builder.build(submitted_at=now)
    """

    def __init__(
        self,
        employer_id: str,
        track: Track,
        organiser_id: Optional[str] = None,
        submitted_by: Optional[str] = None,
        required_criteria: Iterable[str] = DEFAULT_REQUIRED_CRITERIA,
    ):
        self.employer_id = employer_id
        self.track = Track(track)
        self.organiser_id = organiser_id
        self.submitted_by = submitted_by or organiser_id
        self.required_criteria = tuple(required_criteria)

        self._scores: dict[str, int] = {}
        self._confidence: Optional[ConfidenceLevel] = None
        self._project_id: Optional[str] = None
        self._sham_notes: Optional[str] = None
        self._supersedes: Optional[str] = None

    def rate(self, criterion: str, score: int) -> "AssessmentBuilder":
        """Record one criterion score; re-rating a criterion replaces it.

        Raises:
            InvalidCriterionScore: score is not an integer in 1-4
        """
        criterion = criterion.value if isinstance(criterion, CriterionCategory) else criterion
        self._scores[criterion] = validate_criterion_score(criterion, score)
        return self

    def clear_rating(self, criterion: str) -> "AssessmentBuilder":
        self._scores.pop(criterion, None)
        return self

    def set_confidence(self, level: ConfidenceLevel) -> "AssessmentBuilder":
        self._confidence = ConfidenceLevel(level)
        return self

    def set_project(self, project_id: str) -> "AssessmentBuilder":
        self._project_id = project_id
        return self

    def flag_sham_contracting(self, notes: str) -> "AssessmentBuilder":
        """Mark sham contracting as observed.

        Raises:
            MissingRequiredNotes: notes are empty
        """
        self._sham_notes = require_notes(notes, "Sham contracting evidence notes")
        return self

    def unflag_sham_contracting(self) -> "AssessmentBuilder":
        self._sham_notes = None
        return self

    def supersede(self, assessment_id: str) -> "AssessmentBuilder":
        """Make this assessment a correction of an earlier one."""
        self._supersedes = assessment_id
        return self

    def missing_steps(self) -> list[str]:
        """Steps still to complete before build() will succeed."""
        missing = [c for c in self.required_criteria if c not in self._scores]
        if self._confidence is None:
            missing.append("confidence")
        if self.track == Track.PROJECT_DATA and not self._project_id:
            missing.append("project")
        return missing

    @property
    def completion_percentage(self) -> float:
        total = len(self.required_criteria) + 1 + (1 if self.track == Track.PROJECT_DATA else 0)
        return round((total - len(self.missing_steps())) / total * 100, 1)

    def build(self, submitted_at: datetime) -> Assessment:
        """Produce the finished Assessment.

        Raises:
            IncompleteAssessment: required steps are missing
        """
        missing = self.missing_steps()
        if missing:
            raise IncompleteAssessment(missing)

        assessment = Assessment(
            employer_id=self.employer_id,
            track=self.track,
            submitted_at=submitted_at,
            confidence=self._confidence,
            criteria_scores=dict(self._scores),
            sham_contracting_flag=self._sham_notes is not None,
            sham_contracting_notes=self._sham_notes,
            organiser_id=self.organiser_id,
            project_id=self._project_id,
            submitted_by=self.submitted_by,
            supersedes=self._supersedes,
        )
        logger.debug(
            f"Built {self.track.label} assessment {assessment.assessment_id} for employer {self.employer_id} "
            f"({len(self._scores)} criteria, sham={assessment.sham_contracting_flag})"
        )
        return assessment
