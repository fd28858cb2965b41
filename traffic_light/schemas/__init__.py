"""Pydantic schemas shared by the scorers, services and persistence layer."""

from .rating import (
    Assessment,
    ConfidenceLevel,
    CriterionCategory,
    DiscrepancyLevel,
    EbaStatus,
    EmployerRatingState,
    EmployerRole,
    FlagAction,
    FlagAuditEvent,
    FlagSource,
    RatingState,
    RecommendedAction,
    ShamContractingFlag,
    Track,
    TrackScores,
    TrafficLightColor,
    ensure_utc,
)

__all__ = [
    "Assessment",
    "ConfidenceLevel",
    "CriterionCategory",
    "DiscrepancyLevel",
    "EbaStatus",
    "EmployerRatingState",
    "EmployerRole",
    "FlagAction",
    "FlagAuditEvent",
    "FlagSource",
    "RatingState",
    "RecommendedAction",
    "ShamContractingFlag",
    "Track",
    "TrackScores",
    "TrafficLightColor",
    "ensure_utc",
]
