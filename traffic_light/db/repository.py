"""Data access repositories for rating storage.

Assessments and flag audit events are append-only. Sham contracting flags
are inserted once and later updated only with their clearance. Employer
ratings hold the latest computed state per employer.

Timestamps are stored as naive UTC DATETIME values and come back as UTC
through the pydantic models.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..schemas.rating import (
    Assessment,
    EmployerRatingState,
    FlagAuditEvent,
    ShamContractingFlag,
    TrackScores,
)
from .client import execute_query

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    """Handle non-serializable objects for JSON encoding."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _serialize_json(value: Any) -> str | None:
    """Serialize a value to JSON string for storage."""
    if value is None:
        return None
    return json.dumps(value, default=_json_default)


def _deserialize_json(value: str | bytes | None) -> Any:
    """Deserialize a JSON string from storage."""
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value  # Already parsed by driver


def _to_db_time(value: datetime | None) -> datetime | None:
    """Aware datetime -> naive UTC for DATETIME columns."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _to_db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _to_db_time(value)
    return value


def _row_values(data: dict, columns: list[str], json_columns: set[str]) -> tuple:
    return tuple(_serialize_json(data[c]) if c in json_columns else _to_db_value(data[c]) for c in columns)


def _select_list(columns: list[str]) -> str:
    return ", ".join(f"`{c}`" for c in columns)


class AssessmentRepository:
    """Assessment table operations (append-only)."""

    COLUMNS = [
        "assessment_id",
        "employer_id",
        "track",
        "submitted_at",
        "confidence",
        "criteria_scores",
        "sham_contracting_flag",
        "sham_contracting_notes",
        "organiser_id",
        "project_id",
        "submitted_by",
        "supersedes",
    ]
    JSON_COLUMNS = {"criteria_scores"}

    def insert(self, assessment: Assessment) -> None:
        """Insert a new assessment. Existing records are never updated."""
        data = assessment.model_dump()
        placeholders = ", ".join(["%s"] * len(self.COLUMNS))
        execute_query(
            f"INSERT INTO assessments ({_select_list(self.COLUMNS)}) VALUES ({placeholders})",
            _row_values(data, self.COLUMNS, self.JSON_COLUMNS),
            fetch="none",
        )

    def _to_model(self, row: dict) -> Assessment:
        data = {c: row.get(c) for c in self.COLUMNS}
        data["criteria_scores"] = _deserialize_json(data["criteria_scores"]) or {}
        data["sham_contracting_flag"] = bool(data["sham_contracting_flag"])
        return Assessment.model_validate(data)

    def get(self, assessment_id: str) -> Assessment | None:
        row = execute_query(
            f"SELECT {_select_list(self.COLUMNS)} FROM assessments WHERE assessment_id = %s",
            (assessment_id,),
            fetch="one",
        )
        return self._to_model(row) if row else None

    def list_for_employer(self, employer_id: str) -> list[Assessment]:
        """All assessments for an employer, superseded ones included."""
        rows = (
            execute_query(
                f"SELECT {_select_list(self.COLUMNS)} FROM assessments WHERE employer_id = %s "
                "ORDER BY submitted_at, assessment_id",
                (employer_id,),
            )
            or []
        )
        return [self._to_model(r) for r in rows]

    def list_employer_ids(self) -> list[str]:
        rows = execute_query("SELECT DISTINCT employer_id FROM assessments ORDER BY employer_id") or []
        return [r["employer_id"] for r in rows]


class ShamFlagRepository:
    """Sham contracting flag operations.

    A flag row is written once on detection; clearing updates only the
    clearance columns. Rows are never deleted.
    """

    COLUMNS = [
        "flag_id",
        "employer_id",
        "source",
        "detected_at",
        "detected_by",
        "evidence_notes",
        "cleared_at",
        "cleared_by",
        "clearing_reason",
        "assessment_id",
        "project_id",
        "reflag_of",
    ]
    CLEARANCE_COLUMNS = ["cleared_at", "cleared_by", "clearing_reason"]

    def save(self, flag: ShamContractingFlag) -> None:
        """Insert a flag, or record its clearance if it already exists."""
        data = flag.model_dump()
        placeholders = ", ".join(["%s"] * len(self.COLUMNS))
        update_clause = ", ".join(f"`{c}` = VALUES(`{c}`)" for c in self.CLEARANCE_COLUMNS)
        execute_query(
            f"""
            INSERT INTO sham_contracting_flags ({_select_list(self.COLUMNS)})
            VALUES ({placeholders})
            ON DUPLICATE KEY UPDATE {update_clause}
            """,
            _row_values(data, self.COLUMNS, set()),
            fetch="none",
        )

    def _to_model(self, row: dict) -> ShamContractingFlag:
        return ShamContractingFlag.model_validate({c: row.get(c) for c in self.COLUMNS})

    def get(self, flag_id: str) -> ShamContractingFlag | None:
        row = execute_query(
            f"SELECT {_select_list(self.COLUMNS)} FROM sham_contracting_flags WHERE flag_id = %s",
            (flag_id,),
            fetch="one",
        )
        return self._to_model(row) if row else None

    def list_for_employer(self, employer_id: str, active_only: bool = False) -> list[ShamContractingFlag]:
        sql = f"SELECT {_select_list(self.COLUMNS)} FROM sham_contracting_flags WHERE employer_id = %s"
        if active_only:
            sql += " AND cleared_at IS NULL"
        sql += " ORDER BY detected_at, flag_id"
        rows = execute_query(sql, (employer_id,)) or []
        return [self._to_model(r) for r in rows]


class FlagAuditRepository:
    """Permanent flag audit trail (append-only)."""

    COLUMNS = [
        "event_id",
        "employer_id",
        "flag_id",
        "action",
        "actor",
        "occurred_at",
        "notes",
        "clearing_reason",
        "source",
        "project_id",
    ]

    def append(self, event: FlagAuditEvent) -> None:
        placeholders = ", ".join(["%s"] * len(self.COLUMNS))
        execute_query(
            f"INSERT INTO sham_contracting_audit ({_select_list(self.COLUMNS)}) VALUES ({placeholders})",
            _row_values(event.model_dump(), self.COLUMNS, set()),
            fetch="none",
        )

    def list_for_employer(self, employer_id: str) -> list[FlagAuditEvent]:
        rows = (
            execute_query(
                f"SELECT {_select_list(self.COLUMNS)} FROM sham_contracting_audit WHERE employer_id = %s "
                "ORDER BY occurred_at, event_id",
                (employer_id,),
            )
            or []
        )
        return [FlagAuditEvent.model_validate({c: r.get(c) for c in self.COLUMNS}) for r in rows]


class EmployerRatingRepository:
    """Current rating per employer."""

    COLUMNS = [
        "employer_id",
        "overall_score",
        "overall_color",
        "original_computed_score",
        "original_computed_color",
        "rating_state",
        "applied_cap_reason",
        "track1_score",
        "track2_score",
        "track_assessment_counts",
        "track_coverage",
        "track_data_quality",
        "confidence_level",
        "sham_contracting_active_flag_count",
        "eba_status",
        "discrepancy_detected",
        "discrepancy_level",
        "criteria_covered",
        "rejected_criteria",
        "last_updated",
        "engine_version",
    ]
    JSON_COLUMNS = {
        "track_assessment_counts",
        "track_coverage",
        "track_data_quality",
        "criteria_covered",
        "rejected_criteria",
    }

    def upsert(self, state: EmployerRatingState) -> None:
        """Insert or replace the stored rating for an employer."""
        data = state.model_dump()
        tracks = data.pop("track_scores")
        data["track1_score"] = tracks["track1"]
        data["track2_score"] = tracks["track2"]

        placeholders = ", ".join(["%s"] * len(self.COLUMNS))
        update_clause = ", ".join(f"`{c}` = VALUES(`{c}`)" for c in self.COLUMNS if c != "employer_id")
        execute_query(
            f"""
            INSERT INTO employer_ratings ({_select_list(self.COLUMNS)})
            VALUES ({placeholders})
            ON DUPLICATE KEY UPDATE {update_clause}
            """,
            _row_values(data, self.COLUMNS, self.JSON_COLUMNS),
            fetch="none",
        )

    def _to_model(self, row: dict) -> EmployerRatingState:
        data = {c: row.get(c) for c in self.COLUMNS}
        for col in self.JSON_COLUMNS:
            data[col] = _deserialize_json(data[col])
        for col in ("overall_score", "original_computed_score", "track1_score", "track2_score"):
            if isinstance(data[col], Decimal):
                data[col] = float(data[col])
        data["track_scores"] = TrackScores(track1=data.pop("track1_score"), track2=data.pop("track2_score"))
        data["discrepancy_detected"] = bool(data["discrepancy_detected"])
        data["track_assessment_counts"] = data["track_assessment_counts"] or {}
        data["track_coverage"] = data["track_coverage"] or {}
        data["track_data_quality"] = data["track_data_quality"] or {}
        data["criteria_covered"] = data["criteria_covered"] or []
        data["rejected_criteria"] = data["rejected_criteria"] or []
        return EmployerRatingState.model_validate(data)

    def get(self, employer_id: str) -> Optional[EmployerRatingState]:
        row = execute_query(
            f"SELECT {_select_list(self.COLUMNS)} FROM employer_ratings WHERE employer_id = %s",
            (employer_id,),
            fetch="one",
        )
        return self._to_model(row) if row else None

    def get_all(self, employer_ids: list[str] | None = None) -> list[EmployerRatingState]:
        sql = f"SELECT {_select_list(self.COLUMNS)} FROM employer_ratings"
        params: tuple = ()
        if employer_ids:
            placeholders = ", ".join(["%s"] * len(employer_ids))
            sql += f" WHERE employer_id IN ({placeholders})"
            params = tuple(employer_ids)
        rows = execute_query(sql, params) or []
        return [self._to_model(r) for r in rows]


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS assessments (
        assessment_id VARCHAR(64) PRIMARY KEY,
        employer_id VARCHAR(64) NOT NULL,
        track VARCHAR(32) NOT NULL,
        submitted_at DATETIME(6) NOT NULL,
        confidence VARCHAR(16) NOT NULL,
        criteria_scores JSON NOT NULL,
        sham_contracting_flag BOOLEAN NOT NULL DEFAULT FALSE,
        sham_contracting_notes TEXT,
        organiser_id VARCHAR(64),
        project_id VARCHAR(64),
        submitted_by VARCHAR(64),
        supersedes VARCHAR(64),
        INDEX idx_assessments_employer (employer_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sham_contracting_flags (
        flag_id VARCHAR(64) PRIMARY KEY,
        employer_id VARCHAR(64) NOT NULL,
        source VARCHAR(32) NOT NULL,
        detected_at DATETIME(6) NOT NULL,
        detected_by VARCHAR(64) NOT NULL,
        evidence_notes TEXT NOT NULL,
        cleared_at DATETIME(6),
        cleared_by VARCHAR(64),
        clearing_reason TEXT,
        assessment_id VARCHAR(64),
        project_id VARCHAR(64),
        reflag_of VARCHAR(64),
        INDEX idx_flags_employer (employer_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sham_contracting_audit (
        event_id VARCHAR(64) PRIMARY KEY,
        employer_id VARCHAR(64) NOT NULL,
        flag_id VARCHAR(64) NOT NULL,
        action VARCHAR(16) NOT NULL,
        actor VARCHAR(64) NOT NULL,
        occurred_at DATETIME(6) NOT NULL,
        notes TEXT NOT NULL,
        clearing_reason TEXT,
        source VARCHAR(32),
        project_id VARCHAR(64),
        INDEX idx_audit_employer (employer_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS employer_ratings (
        employer_id VARCHAR(64) PRIMARY KEY,
        overall_score DOUBLE,
        overall_color VARCHAR(16) NOT NULL,
        original_computed_score DOUBLE,
        original_computed_color VARCHAR(16) NOT NULL,
        rating_state VARCHAR(32) NOT NULL,
        applied_cap_reason VARCHAR(32),
        track1_score DOUBLE,
        track2_score DOUBLE,
        track_assessment_counts JSON,
        track_coverage JSON,
        track_data_quality JSON,
        confidence_level VARCHAR(16),
        sham_contracting_active_flag_count INT NOT NULL DEFAULT 0,
        eba_status VARCHAR(16) NOT NULL,
        discrepancy_detected BOOLEAN NOT NULL DEFAULT FALSE,
        discrepancy_level VARCHAR(16) NOT NULL,
        criteria_covered JSON,
        rejected_criteria JSON,
        last_updated DATETIME(6) NOT NULL,
        engine_version VARCHAR(16)
    )
    """,
]


def init_schema() -> None:
    """Create the rating tables if they don't exist."""
    for statement in SCHEMA_STATEMENTS:
        execute_query(statement, fetch="none")
    logger.info(f"Ensured {len(SCHEMA_STATEMENTS)} rating tables exist")
