"""Sham contracting flag lifecycle and its permanent audit trail.

A flag is raised when sham contracting is detected (from a compliance check,
a subcontractor assessment or an organiser expertise rating) and stays active
until someone explicitly clears it with a reason. Clearing never deletes:
the flag record gains cleared_at/cleared_by/clearing_reason, and a CLEARED
audit event is appended. A cleared flag can be re-flagged, which opens a new
flag linked to the old one and appends a REFLAGGED event.

Every action requires notes (evidence for detection, a reason for clearing).
Missing notes raise MissingRequiredNotes before anything is recorded.

The module-level functions are pure (record in, new record + event out);
ShamContractingLedger keeps them in memory for the CLI and tests, while
services/rating_service.py writes them through the database repositories.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from ..errors import FlagAlreadyCleared, FlagNotFound, MissingRequiredNotes
from ..schemas.rating import (
    Assessment,
    FlagAction,
    FlagAuditEvent,
    FlagSource,
    ShamContractingFlag,
    Track,
)

logger = logging.getLogger(__name__)

# Default flag source for assessment-raised detections
TRACK_FLAG_SOURCES = {
    Track.PROJECT_DATA: FlagSource.COMPLIANCE_CHECK,
    Track.ORGANISER_EXPERTISE: FlagSource.EXPERTISE_RATING,
}


def require_notes(text: Optional[str], what: str) -> str:
    """Return stripped notes, or raise MissingRequiredNotes when blank."""
    if text is None or not text.strip():
        raise MissingRequiredNotes(f"{what} is required")
    return text.strip()


def open_flag(
    employer_id: str,
    source: FlagSource,
    detected_by: str,
    evidence_notes: str,
    detected_at: datetime,
    assessment_id: Optional[str] = None,
    project_id: Optional[str] = None,
    reflag_of: Optional[str] = None,
) -> tuple[ShamContractingFlag, FlagAuditEvent]:
    """Create a new active flag and its FLAGGED (or REFLAGGED) audit event."""
    notes = require_notes(evidence_notes, "Sham contracting evidence notes")
    require_notes(detected_by, "Detecting user")

    flag = ShamContractingFlag(
        employer_id=employer_id,
        source=source,
        detected_at=detected_at,
        detected_by=detected_by,
        evidence_notes=notes,
        assessment_id=assessment_id,
        project_id=project_id,
        reflag_of=reflag_of,
    )
    event = FlagAuditEvent(
        employer_id=employer_id,
        flag_id=flag.flag_id,
        action=FlagAction.REFLAGGED if reflag_of else FlagAction.FLAGGED,
        actor=detected_by,
        occurred_at=detected_at,
        notes=notes,
        source=source,
        project_id=project_id,
    )
    return flag, event


def flag_from_assessment(
    assessment: Assessment,
    source: Optional[FlagSource] = None,
) -> tuple[ShamContractingFlag, FlagAuditEvent]:
    """Open a flag for an assessment submitted with sham_contracting_flag set."""
    if not assessment.sham_contracting_flag:
        raise ValueError(f"Assessment {assessment.assessment_id} does not flag sham contracting")
    return open_flag(
        employer_id=assessment.employer_id,
        source=source or TRACK_FLAG_SOURCES[assessment.track],
        detected_by=assessment.submitted_by or assessment.organiser_id or "unknown",
        evidence_notes=assessment.sham_contracting_notes or "",
        detected_at=assessment.submitted_at,
        assessment_id=assessment.assessment_id,
        project_id=assessment.project_id,
    )


def clear_flag(
    flag: ShamContractingFlag,
    cleared_by: str,
    clearing_reason: str,
    cleared_at: datetime,
) -> tuple[ShamContractingFlag, FlagAuditEvent]:
    """Return the cleared version of a flag and its CLEARED audit event.

    Raises:
        MissingRequiredNotes: no clearing reason or no clearing user
        FlagAlreadyCleared: the flag is not active
    """
    reason = require_notes(clearing_reason, "Clearing reason")
    require_notes(cleared_by, "Clearing user")
    if not flag.is_active:
        raise FlagAlreadyCleared(f"Flag {flag.flag_id} was already cleared at {flag.cleared_at.isoformat()}")

    cleared = ShamContractingFlag.model_validate(
        {
            **flag.model_dump(),
            "cleared_at": cleared_at,
            "cleared_by": cleared_by,
            "clearing_reason": reason,
        }
    )
    event = FlagAuditEvent(
        employer_id=flag.employer_id,
        flag_id=flag.flag_id,
        action=FlagAction.CLEARED,
        actor=cleared_by,
        occurred_at=cleared_at,
        notes=flag.evidence_notes,
        clearing_reason=reason,
        source=flag.source,
        project_id=flag.project_id,
    )
    return cleared, event


class ShamContractingLedger:
    """In-memory flag store with an append-only audit trail.

    Usage:
        ledger = ShamContractingLedger()
        flag = ledger.raise_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "organiser-7",
                                 "Workers on ABNs doing employee work", detected_at=now)
        ledger.clear(flag.flag_id, "lead-organiser-2", "Workers moved onto payroll", cleared_at=later)
        ledger.audit_trail("emp-1")   # FLAGGED then CLEARED, both permanent
    """

    def __init__(self):
        self._flags: dict[str, ShamContractingFlag] = {}
        self._events: list[FlagAuditEvent] = []
        self._lock = threading.Lock()

    def _record(self, flag: ShamContractingFlag, event: FlagAuditEvent) -> ShamContractingFlag:
        with self._lock:
            self._flags[flag.flag_id] = flag
            self._events.append(event)
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
        assessment_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> ShamContractingFlag:
        """Record a new detection."""
        return self._record(
            *open_flag(employer_id, source, detected_by, evidence_notes, detected_at, assessment_id, project_id)
        )

    def flag_assessment(self, assessment: Assessment, source: Optional[FlagSource] = None) -> ShamContractingFlag:
        """Record the detection carried by a flagged assessment."""
        return self._record(*flag_from_assessment(assessment, source))

    def clear(self, flag_id: str, cleared_by: str, clearing_reason: str, cleared_at: datetime) -> ShamContractingFlag:
        """Clear an active flag; the detection stays on record."""
        return self._record(*clear_flag(self.get(flag_id), cleared_by, clearing_reason, cleared_at))

    def reflag(self, flag_id: str, detected_by: str, evidence_notes: str, detected_at: datetime) -> ShamContractingFlag:
        """Re-open a cleared detection as a new flag linked to the old one."""
        previous = self.get(flag_id)
        if previous.is_active:
            raise ValueError(f"Flag {flag_id} is still active; only cleared flags can be re-flagged")
        return self._record(
            *open_flag(
                employer_id=previous.employer_id,
                source=previous.source,
                detected_by=detected_by,
                evidence_notes=evidence_notes,
                detected_at=detected_at,
                assessment_id=previous.assessment_id,
                project_id=previous.project_id,
                reflag_of=previous.flag_id,
            )
        )

    def get(self, flag_id: str) -> ShamContractingFlag:
        """Current version of a flag."""
        try:
            return self._flags[flag_id]
        except KeyError:
            raise FlagNotFound(flag_id) from None

    def flags_for(self, employer_id: str) -> list[ShamContractingFlag]:
        """All flags for an employer, active and cleared, oldest first."""
        flags = [f for f in self._flags.values() if f.employer_id == employer_id]
        return sorted(flags, key=lambda f: (f.detected_at, f.flag_id))

    def active_flags_for(self, employer_id: str) -> list[ShamContractingFlag]:
        """Uncleared flags for an employer."""
        return [f for f in self.flags_for(employer_id) if f.is_active]

    def audit_trail(self, employer_id: Optional[str] = None) -> list[FlagAuditEvent]:
        """Audit events in the order they were recorded."""
        with self._lock:
            events = list(self._events)
        if employer_id is None:
            return events
        return [e for e in events if e.employer_id == employer_id]
