"""Rating service - assessment intake, flag lifecycle and recomputation.

Wraps the pure rating engine with storage:

    submit_assessment -> store; open a flag if it reports sham contracting
    raise_flag / clear_flag -> store the flag version and its audit event
    recompute -> load, compute_employer_rating, store the new state

A recompute either stores a complete new state or leaves the previous one in
place. At most one recompute per employer runs at a time; different
employers recompute in parallel.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..errors import FlagNotFound, RatingError
from ..schemas.rating import (
    Assessment,
    EbaStatus,
    EmployerRatingState,
    FlagAuditEvent,
    FlagSource,
    ShamContractingFlag,
)
from ..scorers.rating_engine import compute_employer_rating
from ..scorers.weight_registry import RoleKey, ScoringParameters, WeightConfig, load_rating_config
from ..utils.scoring_audit import RatingAuditLog
from .flag_ledger import clear_flag, flag_from_assessment, open_flag

logger = logging.getLogger(__name__)


@dataclass
class RecomputeRequest:
    """One employer's inputs for a batch recompute."""

    employer_id: str
    eba_status: EbaStatus
    role: RoleKey = None


@dataclass
class RecomputeOutcome:
    employer_id: str
    state: Optional[EmployerRatingState] = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is not None


class RatingService:
    """Coordinates storage around the rating engine.

    Repositories default to the MySQL-backed ones in traffic_light.db; tests
    pass in-memory objects with the same methods.
    """

    def __init__(
        self,
        assessments=None,
        flags=None,
        flag_audit=None,
        ratings=None,
        weight_config: Optional[WeightConfig] = None,
        params: Optional[ScoringParameters] = None,
        organiser_multipliers: Optional[dict[str, float]] = None,
    ):
        if None in (assessments, flags, flag_audit, ratings):
            from ..db.repository import (
                AssessmentRepository,
                EmployerRatingRepository,
                FlagAuditRepository,
                ShamFlagRepository,
            )

            assessments = AssessmentRepository() if assessments is None else assessments
            flags = ShamFlagRepository() if flags is None else flags
            flag_audit = FlagAuditRepository() if flag_audit is None else flag_audit
            ratings = EmployerRatingRepository() if ratings is None else ratings

        if weight_config is None or params is None:
            config = load_rating_config()
            weight_config = weight_config or config.weights
            params = params or config.params

        self.assessments = assessments
        self.flags = flags
        self.flag_audit = flag_audit
        self.ratings = ratings
        self.weight_config = weight_config
        self.params = params
        self.organiser_multipliers = organiser_multipliers or {}

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, employer_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(employer_id)
            if lock is None:
                lock = self._locks[employer_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit_assessment(self, assessment: Assessment) -> Optional[ShamContractingFlag]:
        """Store an assessment; open a flag when it reports sham contracting.

        Returns:
            The flag opened for the assessment, if any
        """
        self.assessments.insert(assessment)
        logger.info(
            f"Stored {assessment.track.label} assessment {assessment.assessment_id} "
            f"for employer {assessment.employer_id}"
        )
        if not assessment.sham_contracting_flag:
            return None
        return self._store_flag(*flag_from_assessment(assessment))

    def _store_flag(self, flag: ShamContractingFlag, event: FlagAuditEvent) -> ShamContractingFlag:
        self.flags.save(flag)
        self.flag_audit.append(event)
        logger.info(
            f"Sham contracting {event.action.value}: employer={flag.employer_id} flag={flag.flag_id} by={event.actor}"
        )
        return flag

    def raise_flag(
        self,
        employer_id: str,
        source: FlagSource,
        detected_by: str,
        evidence_notes: str,
        detected_at: datetime,
        project_id: Optional[str] = None,
    ) -> ShamContractingFlag:
        """Record a sham contracting detection not tied to an assessment."""
        return self._store_flag(
            *open_flag(employer_id, source, detected_by, evidence_notes, detected_at, project_id=project_id)
        )

    def clear_flag(
        self,
        flag_id: str,
        cleared_by: str,
        clearing_reason: str,
        cleared_at: datetime,
    ) -> ShamContractingFlag:
        """Clear an active flag, keeping the detection on record.

        Raises:
            FlagNotFound: no flag with this id
            FlagAlreadyCleared: the flag is not active
            MissingRequiredNotes: no clearing reason
        """
        flag = self.flags.get(flag_id)
        if flag is None:
            raise FlagNotFound(flag_id)
        return self._store_flag(*clear_flag(flag, cleared_by, clearing_reason, cleared_at))

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def recompute(
        self,
        employer_id: str,
        eba_status: EbaStatus,
        now: datetime,
        role: RoleKey = None,
        audit_log: Optional[RatingAuditLog] = None,
    ) -> EmployerRatingState:
        """Recompute and store one employer's rating.

        Decisions go to audit_log, or to a log discarded after the call.

        Raises whatever the engine raises; the stored state is untouched in
        that case.
        """
        with self._lock_for(employer_id):
            assessments = self.assessments.list_for_employer(employer_id)
            flags = self.flags.list_for_employer(employer_id)
            state = compute_employer_rating(
                employer_id=employer_id,
                assessments=assessments,
                flags=flags,
                eba_status=eba_status,
                weight_config=self.weight_config,
                now=now,
                role=role,
                params=self.params,
                organiser_multipliers=self.organiser_multipliers,
                audit_log=audit_log,
            )
            self.ratings.upsert(state)

        logger.info(
            f"Employer {employer_id} rated {state.overall_color.value} "
            f"(state={state.rating_state.value}, confidence="
            f"{state.confidence_level.value if state.confidence_level else 'n/a'})"
        )
        return state

    def recompute_many(
        self,
        requests: Iterable[RecomputeRequest],
        now: datetime,
        max_workers: int = 4,
        audit_log: Optional[RatingAuditLog] = None,
    ) -> list[RecomputeOutcome]:
        """Recompute several employers in parallel.

        One employer's failure is recorded in its outcome and does not stop
        the others.

        Audit decisions for the batch go to audit_log (a new log when None);
        each outcome carries its employer's warnings.
        """
        requests = list(requests)
        batch_log = audit_log if audit_log is not None else RatingAuditLog()

        def process(req: RecomputeRequest) -> RecomputeOutcome:
            try:
                state = self.recompute(req.employer_id, req.eba_status, now, req.role, audit_log=batch_log)
                outcome = RecomputeOutcome(req.employer_id, state=state)
            except RatingError as e:
                logger.error(f"Rating failed for employer {req.employer_id}: {e}")
                outcome = RecomputeOutcome(req.employer_id, error=str(e))
            except Exception as e:
                # Storage or record errors fail this employer only
                logger.exception(f"Unexpected error rating employer {req.employer_id}")
                outcome = RecomputeOutcome(req.employer_id, error=f"{type(e).__name__}: {e}")
            outcome.warnings = [w.warning_message for w in batch_log.get_warnings(req.employer_id)]
            return outcome

        outcomes: list[RecomputeOutcome] = []
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(process, req): req for req in requests}
            for future in as_completed(futures):
                outcomes.append(future.result())

        outcomes.sort(key=lambda o: o.employer_id)
        failed = sum(1 for o in outcomes if not o.succeeded)
        logger.info(f"Recomputed {len(outcomes) - failed}/{len(outcomes)} employers ({failed} failed)")
        return outcomes

    def current_rating(self, employer_id: str) -> Optional[EmployerRatingState]:
        return self.ratings.get(employer_id)
