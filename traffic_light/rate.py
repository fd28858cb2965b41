#!/usr/bin/env python3
"""Rate - compute traffic light ratings for a batch of employers.

Reads employer snapshots (assessments, sham contracting flags, EBA status,
role) from a JSON file, runs the rating engine for each employer and prints
the results and the colour distribution.

Input format:
    {
      "organiser_multipliers": {"org-3": 0.9},          # optional
      "employers": [
        {
          "employer_id": "emp-1",
          "role": "head_contractor",                    # optional
          "eba_status": "active",                       # required: active, expired or none
          "assessments": [{...Assessment fields...}],
          "flags": [{...ShamContractingFlag fields...}]
        }
      ]
    }

Usage:
    rate --input employers.json
    rate --input employers.json --now 2025-01-31T00:00:00Z --output ratings.json
    rate --input employers.json --employer emp-1 --audit-output audit.json
    rate --input employers.json --previous last_week.json     # show rating changes
    rate --input employers.json --persist                     # also store in MySQL
"""

import argparse
import json
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .errors import RatingError
from .schemas.rating import (
    Assessment,
    EbaStatus,
    EmployerRatingState,
    ShamContractingFlag,
    TrafficLightColor,
    ensure_utc,
)
from .scorers.rating_engine import compute_employer_rating
from .scorers.weight_registry import RatingConfig, load_rating_config
from .services.rating_dashboard import detect_rating_changes, rating_distribution
from .utils.logger import RatingLogger
from .utils.scoring_audit import RatingAuditLog

console = Console()

COLOR_STYLES = {
    TrafficLightColor.GREEN: "green",
    TrafficLightColor.YELLOW: "yellow",
    TrafficLightColor.AMBER: "dark_orange",
    TrafficLightColor.RED: "red",
    TrafficLightColor.UNKNOWN: "dim",
}


def parse_now(value: Optional[str]) -> datetime:
    """Parse --now (ISO 8601); defaults to the current UTC time."""
    if not value:
        return datetime.now(timezone.utc)
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def load_snapshot(path: Path) -> dict:
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict) or not isinstance(data.get("employers"), list):
        raise ValueError(f"{path}: expected an object with an 'employers' list")
    return data


def load_previous_ratings(path: Path) -> list[EmployerRatingState]:
    """Load the 'ratings' list from an earlier --output file."""
    with open(path) as f:
        data = json.load(f)
    return [EmployerRatingState.model_validate(r) for r in data.get("ratings", [])]


def rate_employer(
    record: dict,
    config: RatingConfig,
    now: datetime,
    audit_log: RatingAuditLog,
    organiser_multipliers: dict[str, float],
) -> EmployerRatingState:
    """Validate one employer record and compute its rating.

    Raises:
        ValidationError: a record in the snapshot is malformed
        RatingError: the engine refused the employer's data
        ValueError: the record has no usable eba_status
    """
    employer_id = record["employer_id"]
    if record.get("eba_status") is None:
        raise ValueError(f"employer {employer_id} has no eba_status")
    assessments = [Assessment.model_validate(a) for a in record.get("assessments", [])]
    flags = [ShamContractingFlag.model_validate(f) for f in record.get("flags", [])]
    return compute_employer_rating(
        employer_id=employer_id,
        assessments=assessments,
        flags=flags,
        eba_status=EbaStatus(record["eba_status"]),
        weight_config=config.weights,
        now=now,
        role=record.get("role"),
        params=config.params,
        organiser_multipliers=organiser_multipliers,
        audit_log=audit_log,
    )


def _fmt_score(score: Optional[float]) -> str:
    return f"{score:.2f}" if score is not None else "-"


def display_results(states: list[EmployerRatingState], failed: dict[str, str]) -> None:
    """Print the ratings table, the distribution and any failures."""
    table = Table(title="Employer Ratings")
    table.add_column("Employer", style="cyan")
    table.add_column("Rating", justify="center")
    table.add_column("Score", justify="right")
    table.add_column("Computed", justify="center")
    table.add_column("Cap")
    table.add_column("T1", justify="right")
    table.add_column("T2", justify="right")
    table.add_column("Confidence")
    table.add_column("Sham", justify="right")
    table.add_column("Review", justify="center")

    for state in states:
        style = COLOR_STYLES[state.overall_color]
        original_style = COLOR_STYLES[state.original_computed_color]
        table.add_row(
            state.employer_id,
            f"[{style}]{state.overall_color.value.upper()}[/{style}]",
            _fmt_score(state.overall_score),
            f"[{original_style}]{state.original_computed_color.value}[/{original_style}]",
            state.applied_cap_reason.value if state.applied_cap_reason else "",
            _fmt_score(state.track_scores.track1),
            _fmt_score(state.track_scores.track2),
            state.confidence_level.value if state.confidence_level else "-",
            str(state.sham_contracting_active_flag_count),
            f"[yellow]{state.discrepancy_level.value}[/yellow]" if state.discrepancy_detected else "",
        )
    console.print(table)

    dist = rating_distribution(states)
    summary = "\n".join(
        f"{color.capitalize():<8} {dist.counts[color]:>4}  ({dist.percentages[color]:.1f}%)" for color in dist.counts
    )
    summary += (
        f"\n\nCapped: {dist.capped_total}   Discrepancies: {dist.discrepancy_count}   "
        f"Active sham: {len(dist.active_sham_employers)}   "
        f"Average score: {_fmt_score(dist.average_score)}"
    )
    console.print(Panel(summary, title=f"Distribution ({dist.total} rated)", border_style="blue"))

    if failed:
        console.print(f"\n[red]{len(failed)} employer(s) failed:[/red]")
        for employer_id, error in failed.items():
            console.print(f"  [red]✗[/red] {employer_id}: {error}")


def display_changes(previous: list[EmployerRatingState], current: list[EmployerRatingState]) -> None:
    summary = detect_rating_changes(previous, current)
    console.print(
        f"\n[bold]Rating changes[/bold]: [green]{summary.improvements} improved[/green], "
        f"[red]{summary.declines} declined[/red], {summary.new_ratings} new, "
        f"{summary.unrated} unrated (net {summary.net_change:+d})"
    )
    for change in summary.changes[:20]:
        before = change.previous_color.value if change.previous_color else "none"
        console.print(f"  {change.employer_id}: {before} → {change.current_color.value} ({change.direction})")


def persist_ratings(states: list[EmployerRatingState]) -> bool:
    """Store ratings in MySQL. Returns False when the database is unreachable."""
    from .db import EmployerRatingRepository, check_connection, init_schema

    if not check_connection():
        console.print("[red]Database unreachable; ratings not stored[/red]")
        return False

    init_schema()
    repo = EmployerRatingRepository()
    for state in states:
        repo.upsert(state)
    console.print(f"[green]Stored {len(states)} rating(s)[/green]")
    return True


def main():
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="Compute employer traffic light ratings from a JSON snapshot")
    parser.add_argument("--input", "-i", type=Path, required=True, help="Employer snapshot JSON file")
    parser.add_argument("--config", type=Path, help="Rating weights YAML (default: config/rating_weights.yaml)")
    parser.add_argument("--now", type=str, help="Reference time, ISO 8601 (default: current UTC time)")
    parser.add_argument("--employer", type=str, help="Rate a single employer by id")
    parser.add_argument("--output", type=Path, help="Save ratings and distribution to JSON file")
    parser.add_argument("--audit-output", type=Path, help="Save the scoring audit log to JSON file")
    parser.add_argument("--previous", type=Path, help="Earlier --output file to compare against")
    parser.add_argument("--persist", action="store_true", help="Store ratings in the MySQL database")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    parser.add_argument("--log-file", type=str, help="Also log to this file under the data dir")

    args = parser.parse_args()

    run_logger = RatingLogger(log_level=args.log_level, log_file=args.log_file)

    try:
        config = load_rating_config(args.config)
        snapshot = load_snapshot(args.input)
        now = parse_now(args.now)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)

    employers = snapshot["employers"]
    if args.employer:
        employers = [e for e in employers if e.get("employer_id") == args.employer]
        if not employers:
            console.print(f"[yellow]Employer {args.employer} not found in {args.input}[/yellow]")
            sys.exit(1)

    multipliers = {k: float(v) for k, v in (snapshot.get("organiser_multipliers") or {}).items()}
    audit_log = RatingAuditLog()

    console.print(f"[bold]Traffic Light Ratings[/bold] as of {now.isoformat()}")
    run_logger.log_run_start(len(employers))
    start = time.monotonic()

    states: list[EmployerRatingState] = []
    failed: dict[str, str] = {}
    for record in employers:
        employer_id = record.get("employer_id", "<missing id>")
        try:
            with run_logger.time_employer(employer_id):
                states.append(rate_employer(record, config, now, audit_log, multipliers))
        except (RatingError, ValidationError, KeyError, ValueError) as e:
            # Nothing is recorded for a failed employer
            failed[employer_id] = str(e).splitlines()[0]

    run_logger.log_run_complete(len(states), len(failed), time.monotonic() - start)
    display_results(states, failed)

    if args.previous:
        display_changes(load_previous_ratings(args.previous), states)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        report = {
            "generated_at": now.isoformat(),
            "ratings": [s.model_dump(mode="json") for s in states],
            "failed": failed,
            "distribution": rating_distribution(states).to_dict(),
        }
        args.output.write_text(json.dumps(report, indent=2))
        console.print(f"\nRatings saved to: {args.output}")

    if args.audit_output:
        audit_log.export_to_json(args.audit_output)
        console.print(f"Audit log saved to: {args.audit_output}")

    if args.persist and states and not persist_ratings(states):
        sys.exit(2)

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
