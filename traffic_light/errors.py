"""Error taxonomy for rating computation.

Engine failures are local to one employer computation. Callers must not
persist an EmployerRatingState when any of these is raised.
"""

from typing import Optional


class RatingError(Exception):
    """Base class for all rating engine errors."""


class InvalidCriterionScore(RatingError, ValueError):
    """A criterion value falls outside the 1-4 scale."""

    def __init__(self, criterion: str, value: object, assessment_id: Optional[str] = None):
        self.criterion = criterion
        self.value = value
        self.assessment_id = assessment_id
        where = f" in assessment {assessment_id}" if assessment_id else ""
        super().__init__(f"Criterion '{criterion}' has invalid score {value!r}{where} (expected 1-4)")


class EmptyAssessment(RatingError, ValueError):
    """No valid weighted criterion remains in an assessment."""

    def __init__(self, assessment_id: str, rejected: Optional[list[str]] = None):
        self.assessment_id = assessment_id
        self.rejected = rejected or []
        detail = f" (rejected: {', '.join(self.rejected)})" if self.rejected else ""
        super().__init__(f"Assessment {assessment_id} has no valid weighted criteria{detail}")


class MissingRoleWeights(RatingError, LookupError):
    """No weight table is configured for a role and no default exists."""

    def __init__(self, role: Optional[str]):
        self.role = role
        super().__init__(f"No criterion weight table configured for role '{role}' and no default table available")


class MissingRequiredNotes(RatingError, ValueError):
    """A sham contracting flag or clearance was submitted without notes/reason."""


class WeightConfigError(RatingError, ValueError):
    """Weight or scoring configuration is malformed."""


class FlagNotFound(RatingError, KeyError):
    """No sham contracting flag with the requested id."""

    def __init__(self, flag_id: str):
        self.flag_id = flag_id
        super().__init__(f"Sham contracting flag not found: {flag_id}")

    def __str__(self) -> str:
        return self.args[0]


class FlagAlreadyCleared(RatingError, ValueError):
    """Attempt to clear a flag that is no longer active."""


class IncompleteAssessment(RatingError, ValueError):
    """An assessment builder was asked to emit before all steps were done."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Assessment is incomplete, missing: {', '.join(missing)}")
