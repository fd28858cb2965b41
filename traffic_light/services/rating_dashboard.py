"""Dashboard read model over computed employer ratings.

Summarises many EmployerRatingState records into the numbers an overview
panel shows: how many employers sit in each colour, how many are capped and
why, how many need discrepancy review, and how ratings moved between two
snapshots.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from ..schemas.rating import ConfidenceLevel, EmployerRatingState, RatingState, TrafficLightColor

logger = logging.getLogger(__name__)

COLOR_ORDER = [
    TrafficLightColor.GREEN,
    TrafficLightColor.YELLOW,
    TrafficLightColor.AMBER,
    TrafficLightColor.RED,
    TrafficLightColor.UNKNOWN,
]


@dataclass
class TrafficLightDistribution:
    """Colour distribution for a set of employers."""

    total: int = 0
    counts: dict[str, int] = field(default_factory=dict)
    percentages: dict[str, float] = field(default_factory=dict)
    confidence_counts: dict[str, int] = field(default_factory=dict)
    capped_counts: dict[str, int] = field(default_factory=dict)  # cap reason -> employers
    capped_total: int = 0
    discrepancy_count: int = 0
    active_sham_employers: list[str] = field(default_factory=list)
    average_score: Optional[float] = None  # over rated employers, applied scores

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "counts": self.counts,
            "percentages": self.percentages,
            "confidence_counts": self.confidence_counts,
            "capped_counts": self.capped_counts,
            "capped_total": self.capped_total,
            "discrepancy_count": self.discrepancy_count,
            "active_sham_employers": self.active_sham_employers,
            "average_score": self.average_score,
        }


def rating_distribution(states: Iterable[EmployerRatingState]) -> TrafficLightDistribution:
    """Summarise a set of employer ratings.

    Every colour (UNKNOWN included) appears in counts and percentages, with
    zero where no employer has it.
    """
    states = list(states)
    total = len(states)

    colors = Counter(s.overall_color for s in states)
    counts = {c.value: colors.get(c, 0) for c in COLOR_ORDER}
    percentages = {c: (round(n / total * 100, 1) if total else 0.0) for c, n in counts.items()}

    confidences = Counter(s.confidence_level for s in states if s.confidence_level is not None)
    confidence_counts = {c.value: confidences.get(c, 0) for c in ConfidenceLevel}

    caps = Counter(s.applied_cap_reason for s in states if s.applied_cap_reason is not None)
    capped_counts = {r.value: caps.get(r, 0) for r in RatingState if r.is_cap}

    scores = [s.overall_score for s in states if s.overall_score is not None]
    average = round(sum(scores) / len(scores), 3) if scores else None

    return TrafficLightDistribution(
        total=total,
        counts=counts,
        percentages=percentages,
        confidence_counts=confidence_counts,
        capped_counts=capped_counts,
        capped_total=sum(caps.values()),
        discrepancy_count=sum(1 for s in states if s.discrepancy_detected),
        active_sham_employers=sorted(s.employer_id for s in states if s.sham_contracting_active_flag_count > 0),
        average_score=average,
    )


def distribution_by(
    states: Iterable[EmployerRatingState],
    key: Callable[[EmployerRatingState], str],
) -> dict[str, TrafficLightDistribution]:
    """Distribution per group, e.g. key=lambda s: s.eba_status.value."""
    groups: dict[str, list[EmployerRatingState]] = {}
    for state in states:
        groups.setdefault(key(state), []).append(state)
    return {name: rating_distribution(members) for name, members in sorted(groups.items())}


# =============================================================================
# Rating changes between snapshots
# =============================================================================


@dataclass
class RatingChange:
    employer_id: str
    previous_color: Optional[TrafficLightColor]
    current_color: TrafficLightColor
    previous_score: Optional[float] = None
    current_score: Optional[float] = None

    @property
    def direction(self) -> str:
        """'new', 'improved', 'declined', 'unrated' or 'unchanged'."""
        previous = self.previous_color
        if previous in (None, TrafficLightColor.UNKNOWN):
            return "unchanged" if self.current_color == TrafficLightColor.UNKNOWN else "new"
        if self.current_color == TrafficLightColor.UNKNOWN:
            return "unrated"
        # Lower severity is better
        if self.current_color.severity < previous.severity:
            return "improved"
        if self.current_color.severity > previous.severity:
            return "declined"
        return "unchanged"


@dataclass
class RatingChangeSummary:
    improvements: int = 0
    declines: int = 0
    new_ratings: int = 0
    unrated: int = 0
    unchanged: int = 0
    changes: list[RatingChange] = field(default_factory=list)  # everything except unchanged

    @property
    def net_change(self) -> int:
        return self.improvements - self.declines


def detect_rating_changes(
    previous: Iterable[EmployerRatingState],
    current: Iterable[EmployerRatingState],
) -> RatingChangeSummary:
    """Compare two rating snapshots by colour.

    Employers only in `previous` are ignored; employers only in `current`
    count as new ratings unless they are UNKNOWN.
    """
    before = {s.employer_id: s for s in previous}
    summary = RatingChangeSummary()

    for state in sorted(current, key=lambda s: s.employer_id):
        old = before.get(state.employer_id)
        change = RatingChange(
            employer_id=state.employer_id,
            previous_color=old.overall_color if old else None,
            current_color=state.overall_color,
            previous_score=old.overall_score if old else None,
            current_score=state.overall_score,
        )
        direction = change.direction
        if direction == "improved":
            summary.improvements += 1
        elif direction == "declined":
            summary.declines += 1
        elif direction == "new":
            summary.new_ratings += 1
        elif direction == "unrated":
            summary.unrated += 1
        else:
            summary.unchanged += 1
            continue
        summary.changes.append(change)

    logger.debug(
        f"Rating changes: +{summary.improvements} improved, -{summary.declines} declined, "
        f"{summary.new_ratings} new, {summary.unrated} unrated"
    )
    return summary
