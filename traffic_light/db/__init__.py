"""MySQL client and repositories for assessments, flags and ratings."""

from .client import check_connection, execute_query, get_connection, get_cursor
from .repository import (
    AssessmentRepository,
    EmployerRatingRepository,
    FlagAuditRepository,
    ShamFlagRepository,
    init_schema,
)

__all__ = [
    # Client
    "get_connection",
    "get_cursor",
    "execute_query",
    "check_connection",
    # Repositories
    "AssessmentRepository",
    "EmployerRatingRepository",
    "FlagAuditRepository",
    "ShamFlagRepository",
    "init_schema",
]
