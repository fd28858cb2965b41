"""
Scoring Audit Trail - Captures rating decisions for debugging and transparency.

When a rating is shaped by something other than the plain weighted average,
this module records:
- Which criteria were rejected or ignored
- Which cap (no EBA, expired EBA, sham contracting) was applied
- Track discrepancies flagged for manual review
- Assessments excluded from scoring (superseded, wrong employer)

This enables:
1. Explaining an unexpected colour to an organiser
2. Reviewing cap decisions after the fact
3. Spotting systematic data quality problems (e.g. frequent invalid scores)
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AuditDecision(Enum):
    """Kinds of scoring decisions worth recording."""

    CRITERION_REJECTED = "criterion_rejected"  # value outside 1-4
    CRITERION_UNWEIGHTED = "criterion_unweighted"  # role table has no weight for it
    ASSESSMENT_EXCLUDED = "assessment_excluded"  # superseded or another employer's
    SINGLE_TRACK = "single_track"  # confidence downgraded, one source only
    DISCREPANCY_FLAGGED = "discrepancy_flagged"  # tracks disagree by more than threshold
    CAP_APPLIED = "cap_applied"  # override rule changed or limited the rating


class ScoreImpact(Enum):
    """How much a decision affects the displayed rating."""

    HIGH = "high"  # Changes the colour
    MEDIUM = "medium"  # Changes the score or confidence
    LOW = "low"  # Changes inputs only
    INDIRECT = "indirect"  # Flags for review, no direct change


@dataclass
class ScoringAuditEntry:
    """A single audit entry for one scoring decision."""

    employer_id: str
    decision: AuditDecision
    detail: str
    score_impact: ScoreImpact
    value: Any = None
    assessment_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    warning_message: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "employer_id": self.employer_id,
            "decision": self.decision.value,
            "detail": self.detail,
            "score_impact": self.score_impact.value,
            "value": self._serialize_value(self.value),
            "assessment_id": self.assessment_id,
            "timestamp": self.timestamp.isoformat(),
            "warning_message": self.warning_message,
        }

    def _serialize_value(self, value: Any) -> Any:
        """Serialize value for JSON output."""
        if value is None:
            return None
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, (list, tuple)):
            return [self._serialize_value(v) for v in value]
        if isinstance(value, dict):
            return {k: self._serialize_value(v) for k, v in value.items()}
        return str(value)


class RatingAuditLog:
    """Collects audit entries while rating a batch of employers.

    Usage:
        audit_log = RatingAuditLog()

        state = compute_employer_rating(..., audit_log=audit_log)

        # Decisions that deserve a human look
        warnings = audit_log.get_warnings()

        # Export for debugging
        audit_log.export_to_json("/tmp/rating_audit.json")
    """

    def __init__(self):
        self._entries: list[ScoringAuditEntry] = []
        self._warnings: list[ScoringAuditEntry] = []
        # Batch recomputes log from several worker threads
        self._lock = threading.Lock()

    def log_decision(
        self,
        employer_id: str,
        decision: AuditDecision,
        detail: str,
        impact: ScoreImpact,
        value: Any = None,
        assessment_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        warning: Optional[str] = None,
    ) -> ScoringAuditEntry:
        """Record one scoring decision.

        Entries with a warning, and every HIGH impact entry, are also
        tracked as warnings and logged.

        Returns:
            The created audit entry
        """
        entry = ScoringAuditEntry(
            employer_id=employer_id,
            decision=decision,
            detail=detail,
            score_impact=impact,
            value=value,
            assessment_id=assessment_id,
            warning_message=warning,
        )
        if timestamp is not None:
            entry.timestamp = timestamp

        if warning or impact == ScoreImpact.HIGH:
            if not warning:
                entry.warning_message = f"AUDIT: employer {employer_id}: {decision.value}: {detail}"
            logger.warning(entry.warning_message)

        with self._lock:
            self._entries.append(entry)
            if entry.warning_message:
                self._warnings.append(entry)

        return entry

    def get_warnings(self, employer_id: Optional[str] = None) -> list[ScoringAuditEntry]:
        """Get entries that changed a colour or carry an explicit warning."""
        with self._lock:
            warnings = self._warnings.copy()
        if employer_id is None:
            return warnings
        return [e for e in warnings if e.employer_id == employer_id]

    def get_all_entries(self) -> list[ScoringAuditEntry]:
        """Get all audit entries."""
        with self._lock:
            return self._entries.copy()

    def get_summary_for_employer(self, employer_id: str) -> dict:
        """Get all audit entries for one employer, grouped by decision type."""
        entries = [e for e in self.get_all_entries() if e.employer_id == employer_id]
        warnings = [e for e in entries if e.warning_message]

        by_decision: dict[str, list[dict]] = {}
        for entry in entries:
            by_decision.setdefault(entry.decision.value, []).append(entry.to_dict())

        return {
            "employer_id": employer_id,
            "total_entries": len(entries),
            "warnings_count": len(warnings),
            "entries_by_decision": by_decision,
            "warnings": [e.to_dict() for e in warnings],
        }

    def export_to_json(self, filepath: str | Path) -> None:
        """Export audit log to JSON file."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "total_entries": len(self._entries),
            "total_warnings": len(self._warnings),
            "entries": [e.to_dict() for e in self._entries],
            "warnings": [e.to_dict() for e in self._warnings],
        }

        with open(filepath, "w") as f:
            json.dump(data, f, indent=2)

        logger.info(f"Exported {len(self._entries)} audit entries to {filepath}")

    def clear(self) -> None:
        """Clear all entries (for reuse between batches)."""
        with self._lock:
            self._entries.clear()
            self._warnings.clear()

    def __len__(self) -> int:
        return len(self._entries)

