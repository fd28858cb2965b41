"""Pydantic schemas for assessments, sham contracting flags and rating state.

Assessments and flags are immutable once created: corrections arrive as new
assessments (naming the record they supersede), and clearing a flag produces
a new version of the flag record plus a permanent audit event.

The 4-point scale runs the "wrong" way for intuition: 1 is the best outcome
(Good) and 4 the worst (Terrible). Every score in this module uses that scale.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..errors import MissingRequiredNotes

# =============================================================================
# Enums
# =============================================================================


class Track(str, Enum):
    """Which evidence stream an assessment belongs to."""

    PROJECT_DATA = "project_data"  # Track 1: tied to a specific project
    ORGANISER_EXPERTISE = "organiser_expertise"  # Track 2: relationship-based

    @property
    def label(self) -> str:
        return {"project_data": "Track 1", "organiser_expertise": "Track 2"}[self.value]


class ConfidenceLevel(str, Enum):
    """Assessor confidence, ordered from strongest to weakest."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"

    @property
    def rank(self) -> int:
        """0 for HIGH through 3 for VERY_LOW."""
        return _CONFIDENCE_ORDER.index(self)

    @property
    def downgraded(self) -> "ConfidenceLevel":
        """One step weaker; VERY_LOW is the floor."""
        return _CONFIDENCE_ORDER[min(self.rank + 1, len(_CONFIDENCE_ORDER) - 1)]


_CONFIDENCE_ORDER = [
    ConfidenceLevel.HIGH,
    ConfidenceLevel.MEDIUM,
    ConfidenceLevel.LOW,
    ConfidenceLevel.VERY_LOW,
]


class TrafficLightColor(str, Enum):
    """Displayed rating colour."""

    GREEN = "green"
    YELLOW = "yellow"
    AMBER = "amber"
    RED = "red"
    UNKNOWN = "unknown"

    @property
    def severity(self) -> int:
        """1 (GREEN) to 4 (RED); UNKNOWN is 0."""
        return {"green": 1, "yellow": 2, "amber": 3, "red": 4, "unknown": 0}[self.value]


class EbaStatus(str, Enum):
    """Enterprise Bargaining Agreement status for an employer."""

    ACTIVE = "active"
    EXPIRED = "expired"
    NONE = "none"


class RatingState(str, Enum):
    """Classifier outcome. The CAPPED_* values double as cap reasons."""

    UNRATED = "unrated"
    COMPUTED = "computed"
    CAPPED_SHAM = "capped_sham"
    CAPPED_NO_EBA = "capped_no_eba"
    CAPPED_EXPIRED_EBA = "capped_expired_eba"

    @property
    def is_cap(self) -> bool:
        return self.value.startswith("capped_")


class CriterionCategory(str, Enum):
    """Weighted criterion categories used in assessments and weight tables."""

    EBA_STATUS = "eba_status"
    UNION_RESPECT = "union_respect"
    SAFETY = "safety"
    SUBCONTRACTOR_USE = "subcontractor_use"
    ROLE_SPECIFIC = "role_specific"


class EmployerRole(str, Enum):
    """Employer role on site; each may carry its own weight table."""

    HEAD_CONTRACTOR = "head_contractor"
    SUBCONTRACTOR = "subcontractor"
    TRADE_CONTRACTOR = "trade_contractor"
    LABOUR_HIRE = "labour_hire"
    CONSULTANT = "consultant"
    OTHER = "other"


class FlagSource(str, Enum):
    """Where a sham contracting detection came from."""

    COMPLIANCE_CHECK = "compliance_check"
    SUBCONTRACTOR_ASSESSMENT = "subcontractor_assessment"
    EXPERTISE_RATING = "expertise_rating"


class FlagAction(str, Enum):
    """Audit trail action types for sham contracting flags."""

    FLAGGED = "flagged"
    CLEARED = "cleared"
    REFLAGGED = "reflagged"


class DiscrepancyLevel(str, Enum):
    """Severity of disagreement between Track 1 and Track 2."""

    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


class RecommendedAction(str, Enum):
    """Suggested handling of a track discrepancy (resolution is manual)."""

    ACCEPT_CALCULATED = "accept_calculated"
    MANUAL_REVIEW = "manual_review"
    ESCALATE = "escalate"


# =============================================================================
# Helpers
# =============================================================================


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _is_blank(text: Optional[str]) -> bool:
    return text is None or not text.strip()


# =============================================================================
# Input records
# =============================================================================


class Assessment(BaseModel):
    """One submitted assessment of an employer.

    criteria_scores maps a criterion name (normally a CriterionCategory value)
    to a score on the 1-4 scale. Range checking happens in the criterion
    scorer, not here, so that a single bad criterion can be rejected without
    discarding the rest of the assessment.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    assessment_id: str = Field(default_factory=_new_id, description="Unique assessment id")
    employer_id: str = Field(..., description="Employer being assessed")
    track: Track = Field(..., description="Track 1 (project data) or Track 2 (organiser expertise)")
    submitted_at: datetime = Field(..., description="Submission timestamp (UTC)")
    confidence: ConfidenceLevel = Field(..., description="Assessor confidence")
    criteria_scores: dict[str, Any] = Field(
        default_factory=dict, description="Criterion -> 1 (best) .. 4 (worst); values are checked per criterion"
    )
    sham_contracting_flag: bool = Field(False, description="Assessor detected sham contracting")
    sham_contracting_notes: Optional[str] = Field(None, description="Evidence notes, required when flagged")
    organiser_id: Optional[str] = Field(None, description="Organiser who made the assessment")
    project_id: Optional[str] = Field(None, description="Project context (Track 1)")
    submitted_by: Optional[str] = Field(None, description="User who submitted the record")
    supersedes: Optional[str] = Field(None, description="assessment_id this record corrects")

    @field_validator("submitted_at")
    @classmethod
    def _normalise_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def _require_sham_notes(self) -> "Assessment":
        if self.sham_contracting_flag and _is_blank(self.sham_contracting_notes):
            raise MissingRequiredNotes(
                f"Assessment {self.assessment_id} flags sham contracting without evidence notes"
            )
        return self


class ShamContractingFlag(BaseModel):
    """A sham contracting detection and its (optional) clearance.

    Active while cleared_at is None. Clearing produces a new version of the
    record via model_copy; the detection data is never removed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    flag_id: str = Field(default_factory=_new_id)
    employer_id: str
    source: FlagSource
    detected_at: datetime
    detected_by: str
    evidence_notes: str
    cleared_at: Optional[datetime] = None
    cleared_by: Optional[str] = None
    clearing_reason: Optional[str] = None
    assessment_id: Optional[str] = Field(None, description="Assessment that raised this flag, if any")
    project_id: Optional[str] = None
    reflag_of: Optional[str] = Field(None, description="Earlier cleared flag this re-detection follows")

    @field_validator("detected_at", "cleared_at")
    @classmethod
    def _normalise_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @model_validator(mode="after")
    def _require_notes(self) -> "ShamContractingFlag":
        if _is_blank(self.evidence_notes):
            raise MissingRequiredNotes(f"Sham contracting flag {self.flag_id} has no evidence notes")
        if self.cleared_at is not None:
            if _is_blank(self.clearing_reason):
                raise MissingRequiredNotes(f"Clearance of flag {self.flag_id} has no clearing reason")
            if _is_blank(self.cleared_by):
                raise MissingRequiredNotes(f"Clearance of flag {self.flag_id} does not name who cleared it")
        return self

    @property
    def is_active(self) -> bool:
        return self.cleared_at is None


class FlagAuditEvent(BaseModel):
    """Permanent who/when/why record for a flag detection or clearance."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=_new_id)
    employer_id: str
    flag_id: str
    action: FlagAction
    actor: str
    occurred_at: datetime
    notes: str
    clearing_reason: Optional[str] = None
    source: Optional[FlagSource] = None
    project_id: Optional[str] = None

    @field_validator("occurred_at")
    @classmethod
    def _normalise_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


# =============================================================================
# Output
# =============================================================================


class TrackScores(BaseModel):
    """Per-track scores; None means the track had no usable assessments."""

    model_config = ConfigDict(frozen=True)

    track1: Optional[float] = None
    track2: Optional[float] = None


class EmployerRatingState(BaseModel):
    """Computed rating for one employer.

    Derived entirely from the assessment set, the flag set and the EBA status.
    original_computed_* hold the uncapped classification so the display layer
    can show both the computed and the applied rating.
    """

    model_config = ConfigDict(frozen=True)

    employer_id: str
    overall_score: Optional[float] = Field(None, description="Applied score, 1.0-4.0; None when unrated")
    overall_color: TrafficLightColor = TrafficLightColor.UNKNOWN
    original_computed_score: Optional[float] = None
    original_computed_color: TrafficLightColor = TrafficLightColor.UNKNOWN
    rating_state: RatingState = RatingState.UNRATED
    applied_cap_reason: Optional[RatingState] = None
    track_scores: TrackScores = Field(default_factory=TrackScores)
    track_assessment_counts: dict[str, int] = Field(default_factory=dict)
    track_coverage: dict[str, float] = Field(
        default_factory=dict, description="Track -> share of the role weight its assessments scored (0-1)"
    )
    track_data_quality: dict[str, ConfidenceLevel] = Field(
        default_factory=dict, description="Track -> data quality graded from its coverage"
    )
    confidence_level: Optional[ConfidenceLevel] = None
    sham_contracting_active_flag_count: int = Field(0, ge=0)
    eba_status: EbaStatus = EbaStatus.ACTIVE
    discrepancy_detected: bool = False
    discrepancy_level: DiscrepancyLevel = DiscrepancyLevel.NONE
    criteria_covered: list[str] = Field(default_factory=list)
    rejected_criteria: list[str] = Field(default_factory=list)
    last_updated: datetime
    engine_version: str = ""

    @field_validator("last_updated")
    @classmethod
    def _normalise_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def is_capped(self) -> bool:
        return self.applied_cap_reason is not None

    def breakdown(self) -> dict[str, Any]:
        """Display payload: original vs applied rating, cap reason, flag count."""
        return {
            "employer_id": self.employer_id,
            "applied": {
                "color": self.overall_color.value,
                "score": self.overall_score,
            },
            "original": {
                "color": self.original_computed_color.value,
                "score": self.original_computed_score,
            },
            "cap_reason": self.applied_cap_reason.value if self.applied_cap_reason else None,
            "confidence": self.confidence_level.value if self.confidence_level else None,
            "tracks": self.track_scores.model_dump(),
            "data_quality": {track: level.value for track, level in self.track_data_quality.items()},
            "active_sham_flags": self.sham_contracting_active_flag_count,
            "discrepancy": {
                "detected": self.discrepancy_detected,
                "level": self.discrepancy_level.value,
            },
        }
