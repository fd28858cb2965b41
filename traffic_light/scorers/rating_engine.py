"""
Rating Aggregation Engine - one employer's assessments in, one rating out.

Pipeline:
    Criterion Scorer  -> per-assessment 1-4 subtotal
    Weighter          -> temporal decay x confidence = effective weight
    Track Combiner    -> Track 1 / Track 2 averages, 65/35 blend, discrepancy
    Classifier        -> EBA and sham contracting caps, colour bands

CRITICAL: This is a pure function of its inputs. No I/O, no clock reads
(callers pass `now`), no mutation of the records passed in. Persisting the
result, and making sure two recomputations for the same employer don't
interleave, is the caller's job (see services/rating_service.py).
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from ..constants import ENGINE_VERSION
from ..errors import MissingRequiredNotes
from ..schemas.rating import (
    Assessment,
    EbaStatus,
    EmployerRatingState,
    ShamContractingFlag,
    Track,
    TrackScores,
    ensure_utc,
)
from ..utils.scoring_audit import AuditDecision, RatingAuditLog, ScoreImpact
from .classifier import classify
from .criterion_scorer import score_assessment
from .track_combiner import AssessmentContribution, combine_tracks, summarise_track
from .weight_registry import RoleKey, ScoringParameters, WeightConfig
from .weighting import assessment_age_days, confidence_factor, temporal_decay_factor

logger = logging.getLogger(__name__)


def live_assessments(employer_id: str, assessments: Iterable[Assessment]) -> tuple[list[Assessment], list[Assessment]]:
    """Split an employer's assessments into (live, superseded).

    Assessments for other employers are dropped. Live records come back in
    submission order so float summation is reproducible.
    """
    own = [a for a in assessments if a.employer_id == employer_id]
    superseded_ids = {a.supersedes for a in own if a.supersedes}
    live = [a for a in own if a.assessment_id not in superseded_ids]
    superseded = [a for a in own if a.assessment_id in superseded_ids]
    live.sort(key=lambda a: (a.submitted_at, a.assessment_id))
    return live, superseded


def count_active_sham_flags(
    employer_id: str,
    flags: Iterable[ShamContractingFlag],
    assessments: Iterable[Assessment],
) -> int:
    """Number of active sham contracting detections for an employer.

    Counts uncleared flag records, plus flagged assessments that no flag
    record references yet. A superseded assessment's flag still counts:
    only an explicit clearance ends a detection.
    """
    own_flags = [f for f in flags if f.employer_id == employer_id]
    referenced = {f.assessment_id for f in own_flags if f.assessment_id}
    explicit = sum(1 for f in own_flags if f.is_active)
    implicit = sum(
        1
        for a in assessments
        if a.employer_id == employer_id and a.sham_contracting_flag and a.assessment_id not in referenced
    )
    return explicit + implicit


def _check_notes(assessments: list[Assessment], flags: list[ShamContractingFlag]) -> None:
    """Defensive re-check of the notes invariant (validation normally enforces it)."""
    for a in assessments:
        if a.sham_contracting_flag and not (a.sham_contracting_notes or "").strip():
            raise MissingRequiredNotes(f"Assessment {a.assessment_id} flags sham contracting without notes")
    for f in flags:
        if not (f.evidence_notes or "").strip():
            raise MissingRequiredNotes(f"Sham contracting flag {f.flag_id} has no evidence notes")
        if f.cleared_at is not None and not (f.clearing_reason or "").strip():
            raise MissingRequiredNotes(f"Clearance of flag {f.flag_id} has no clearing reason")


def compute_employer_rating(
    employer_id: str,
    assessments: Iterable[Assessment],
    flags: Iterable[ShamContractingFlag],
    eba_status: EbaStatus,
    weight_config: WeightConfig,
    now: datetime,
    role: RoleKey = None,
    params: Optional[ScoringParameters] = None,
    organiser_multipliers: Optional[dict[str, float]] = None,
    audit_log: Optional[RatingAuditLog] = None,
    strict: bool = False,
) -> EmployerRatingState:
    """Compute the traffic light rating for one employer.

    Args:
        employer_id: Employer to rate; records for other employers are ignored
        assessments: All assessments on file (superseded ones included)
        flags: All sham contracting flag records (cleared ones included)
        eba_status: Current EBA status
        weight_config: Role -> criterion weight tables
        now: Reference time for temporal decay and last_updated
        role: Employer role; None uses the default weight table
        params: Scoring parameters; built-in defaults when None
        organiser_multipliers: organiser_id -> confidence multiplier override
        audit_log: Where to record decisions; a throwaway log for this call when None
        strict: Fail on any invalid criterion instead of rejecting it

    Returns:
        EmployerRatingState

    Raises:
        MissingRoleWeights: no weight table for the role and no default
        EmptyAssessment: an assessment has no valid weighted criteria
        InvalidCriterionScore: strict mode and a criterion is out of range
        MissingRequiredNotes: a flagged record lacks notes
    """
    params = params or ScoringParameters()
    audit = audit_log if audit_log is not None else RatingAuditLog()
    organiser_multipliers = organiser_multipliers or {}
    now = ensure_utc(now)
    assessments = list(assessments)
    flags = [f for f in flags if f.employer_id == employer_id]

    role_weights = weight_config.weights_for_role(role)

    foreign = [a for a in assessments if a.employer_id != employer_id]
    for a in foreign:
        logger.warning(f"Ignoring assessment {a.assessment_id} for employer {a.employer_id} (rating {employer_id})")
        audit.log_decision(
            employer_id, AuditDecision.ASSESSMENT_EXCLUDED, "belongs to another employer",
            ScoreImpact.LOW, value=a.employer_id, assessment_id=a.assessment_id, timestamp=now,
        )

    live, superseded = live_assessments(employer_id, assessments)
    own = live + superseded
    _check_notes(own, flags)
    for a in superseded:
        audit.log_decision(
            employer_id, AuditDecision.ASSESSMENT_EXCLUDED, "superseded by a later assessment",
            ScoreImpact.LOW, assessment_id=a.assessment_id, timestamp=now,
        )

    # Criterion scoring + weighting
    contributions: list[AssessmentContribution] = []
    covered: set[str] = set()
    rejected: list[str] = []
    for a in live:
        result = score_assessment(a, role_weights, strict=strict)
        for criterion in result.rejected:
            rejected.append(f"{a.assessment_id}:{criterion}")
            audit.log_decision(
                employer_id, AuditDecision.CRITERION_REJECTED, f"'{criterion}' outside 1-4",
                ScoreImpact.MEDIUM, value=a.criteria_scores.get(criterion), assessment_id=a.assessment_id,
                timestamp=now,
            )
        for criterion in result.unweighted:
            audit.log_decision(
                employer_id, AuditDecision.CRITERION_UNWEIGHTED,
                f"'{criterion}' has no weight for role '{role_weights.role}'",
                ScoreImpact.LOW, assessment_id=a.assessment_id, timestamp=now,
            )
        covered.update(result.covered)

        age = assessment_age_days(a.submitted_at, now)
        contributions.append(
            AssessmentContribution(
                assessment_id=a.assessment_id,
                track=a.track,
                score=result.score,
                temporal_factor=temporal_decay_factor(age, params),
                confidence_factor=confidence_factor(
                    a.confidence, params, organiser_multipliers.get(a.organiser_id) if a.organiser_id else None
                ),
                covered=result.covered,
                weight_used=result.weight_used,
            )
        )

    # Track combination
    track1 = summarise_track(Track.PROJECT_DATA, contributions, params)
    track2 = summarise_track(Track.ORGANISER_EXPERTISE, contributions, params)
    combined = combine_tracks(track1, track2, params)

    if combined.single_track:
        audit.log_decision(
            employer_id, AuditDecision.SINGLE_TRACK, "only one track has data; confidence downgraded",
            ScoreImpact.MEDIUM, value=combined.confidence, timestamp=now,
        )
    if combined.discrepancy.detected:
        audit.log_decision(
            employer_id, AuditDecision.DISCREPANCY_FLAGGED, combined.discrepancy.explanation,
            ScoreImpact.INDIRECT, value=combined.discrepancy.level, timestamp=now,
            warning=f"Manual review recommended for employer {employer_id}: {combined.discrepancy.explanation}",
        )

    # Overrides + classification
    active_flags = count_active_sham_flags(employer_id, flags, own)
    classification = classify(combined.score, eba_status, active_flags, params)
    if classification.applied_cap_reason is not None:
        impact = ScoreImpact.HIGH if classification.color_changed else ScoreImpact.LOW
        audit.log_decision(
            employer_id, AuditDecision.CAP_APPLIED,
            f"{classification.applied_cap_reason.value}: {classification.original_computed_color.value} -> "
            f"{classification.overall_color.value}",
            impact, value=classification.applied_cap_reason, timestamp=now,
        )

    state = EmployerRatingState(
        employer_id=employer_id,
        overall_score=classification.overall_score,
        overall_color=classification.overall_color,
        original_computed_score=classification.original_computed_score,
        original_computed_color=classification.original_computed_color,
        rating_state=classification.state,
        applied_cap_reason=classification.applied_cap_reason,
        track_scores=TrackScores(track1=track1.score, track2=track2.score),
        track_assessment_counts={
            Track.PROJECT_DATA.value: track1.assessment_count,
            Track.ORGANISER_EXPERTISE.value: track2.assessment_count,
        },
        track_coverage={t.track.value: t.coverage for t in (track1, track2) if t.has_data},
        track_data_quality={t.track.value: t.data_quality for t in (track1, track2) if t.has_data},
        confidence_level=combined.confidence,
        sham_contracting_active_flag_count=active_flags,
        eba_status=eba_status,
        discrepancy_detected=combined.discrepancy.detected,
        discrepancy_level=combined.discrepancy.level,
        criteria_covered=sorted(covered),
        rejected_criteria=rejected,
        last_updated=now,
        engine_version=ENGINE_VERSION,
    )

    logger.debug(
        f"Rated employer {employer_id}: {state.overall_color.value} "
        f"(score={state.overall_score}, state={state.rating_state.value}, "
        f"t1={track1.score}, t2={track2.score}, flags={active_flags})"
    )
    return state
