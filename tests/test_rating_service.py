"""Tests for RatingService with in-memory repositories."""

import threading
import time
from datetime import timedelta

import pymysql
import pytest

from traffic_light.errors import EmptyAssessment, FlagAlreadyCleared, FlagNotFound, MissingRequiredNotes
from traffic_light.schemas.rating import (
    Assessment,
    ConfidenceLevel,
    EbaStatus,
    FlagAction,
    FlagSource,
    RatingState,
    TrafficLightColor,
    Track,
)
from traffic_light.scorers.weight_registry import ScoringParameters, WeightConfig
from traffic_light.services.rating_service import RatingService, RecomputeRequest
from traffic_light.utils.scoring_audit import RatingAuditLog

# ─── In-memory repositories ───────────────────────────────────────────────────


class MemoryAssessments:
    def __init__(self):
        self.rows = []

    def insert(self, assessment):
        self.rows.append(assessment)

    def list_for_employer(self, employer_id):
        return [a for a in self.rows if a.employer_id == employer_id]


class MemoryFlags:
    def __init__(self):
        self.rows = {}

    def save(self, flag):
        self.rows[flag.flag_id] = flag

    def get(self, flag_id):
        return self.rows.get(flag_id)

    def list_for_employer(self, employer_id, active_only=False):
        flags = [f for f in self.rows.values() if f.employer_id == employer_id]
        return [f for f in flags if f.is_active] if active_only else flags


class MemoryFlagAudit:
    def __init__(self):
        self.events = []

    def append(self, event):
        self.events.append(event)


class MemoryRatings:
    def __init__(self):
        self.rows = {}
        self.upserts = 0

    def upsert(self, state):
        self.rows[state.employer_id] = state
        self.upserts += 1

    def get(self, employer_id):
        return self.rows.get(employer_id)


@pytest.fixture
def service():
    return RatingService(
        assessments=MemoryAssessments(),
        flags=MemoryFlags(),
        flag_audit=MemoryFlagAudit(),
        ratings=MemoryRatings(),
        weight_config=WeightConfig.defaults(),
        params=ScoringParameters(),
    )


def _assessment(now, employer_id="emp-1", criteria=None, **overrides) -> Assessment:
    defaults = dict(
        employer_id=employer_id,
        track=Track.PROJECT_DATA,
        submitted_at=now - timedelta(days=1),
        confidence=ConfidenceLevel.HIGH,
        criteria_scores=criteria or {"eba_status": 1, "union_respect": 1, "safety": 1, "subcontractor_use": 1},
        organiser_id="org-3",
        project_id="proj-1",
    )
    defaults.update(overrides)
    return Assessment(**defaults)


class TestIntake:
    def test_plain_assessment_opens_no_flag(self, service, now):
        assert service.submit_assessment(_assessment(now)) is None
        assert len(service.assessments.rows) == 1
        assert service.flags.rows == {}

    def test_flagged_assessment_opens_flag(self, service, now):
        a = _assessment(now, sham_contracting_flag=True, sham_contracting_notes="Crew on ABNs")
        flag = service.submit_assessment(a)
        assert flag.assessment_id == a.assessment_id
        assert flag.source == FlagSource.COMPLIANCE_CHECK
        assert service.flag_audit.events[0].action == FlagAction.FLAGGED


class TestFlags:
    def test_raise_and_clear(self, service, now):
        flag = service.raise_flag("emp-1", FlagSource.SUBCONTRACTOR_ASSESSMENT, "org-3", "Evidence", now)
        cleared = service.clear_flag(flag.flag_id, "lead-1", "Resolved", now)
        assert not service.flags.get(flag.flag_id).is_active
        assert cleared.clearing_reason == "Resolved"
        assert [e.action for e in service.flag_audit.events] == [FlagAction.FLAGGED, FlagAction.CLEARED]

    def test_clear_unknown(self, service, now):
        with pytest.raises(FlagNotFound):
            service.clear_flag("nope", "lead-1", "Resolved", now)

    def test_clear_twice(self, service, now):
        flag = service.raise_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now)
        service.clear_flag(flag.flag_id, "lead-1", "Resolved", now)
        with pytest.raises(FlagAlreadyCleared):
            service.clear_flag(flag.flag_id, "lead-1", "Resolved", now)

    def test_clear_without_reason_stores_nothing(self, service, now):
        flag = service.raise_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now)
        with pytest.raises(MissingRequiredNotes):
            service.clear_flag(flag.flag_id, "lead-1", "", now)
        assert service.flags.get(flag.flag_id).is_active
        assert len(service.flag_audit.events) == 1


class TestRecompute:
    def test_stores_state(self, service, now):
        service.submit_assessment(_assessment(now))
        state = service.recompute("emp-1", EbaStatus.ACTIVE, now)
        assert state.overall_color == TrafficLightColor.GREEN
        assert service.current_rating("emp-1") == state

    def test_flag_then_clear_cycle(self, service, now):
        service.submit_assessment(_assessment(now))
        flag = service.raise_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now)
        assert service.recompute("emp-1", EbaStatus.ACTIVE, now).overall_color == TrafficLightColor.YELLOW

        service.clear_flag(flag.flag_id, "lead-1", "Resolved", now)
        assert service.recompute("emp-1", EbaStatus.ACTIVE, now).overall_color == TrafficLightColor.GREEN

    def test_flagged_assessment_cleared_via_its_flag(self, service, now):
        a = _assessment(now, sham_contracting_flag=True, sham_contracting_notes="Crew on ABNs")
        flag = service.submit_assessment(a)
        capped = service.recompute("emp-1", EbaStatus.ACTIVE, now)
        assert capped.rating_state == RatingState.CAPPED_SHAM
        assert capped.sham_contracting_active_flag_count == 1

        service.clear_flag(flag.flag_id, "lead-1", "Resolved", now)
        assert service.recompute("emp-1", EbaStatus.ACTIVE, now).overall_color == TrafficLightColor.GREEN

    def test_failure_keeps_previous_state(self, service, now):
        service.submit_assessment(_assessment(now))
        previous = service.recompute("emp-1", EbaStatus.ACTIVE, now)
        service.submit_assessment(_assessment(now, criteria={"safety": 9}))

        with pytest.raises(EmptyAssessment):
            service.recompute("emp-1", EbaStatus.ACTIVE, now)
        assert service.current_rating("emp-1") == previous
        assert service.ratings.upserts == 1

    def test_same_employer_serialised(self, service, now, monkeypatch):
        """Two recomputes for one employer never overlap."""
        service.submit_assessment(_assessment(now))
        active = []
        overlaps = []
        original = service.assessments.list_for_employer

        def slow_list(employer_id):
            active.append(employer_id)
            if active.count(employer_id) > 1:
                overlaps.append(employer_id)
            time.sleep(0.02)
            active.remove(employer_id)
            return original(employer_id)

        monkeypatch.setattr(service.assessments, "list_for_employer", slow_list)
        threads = [
            threading.Thread(target=service.recompute, args=("emp-1", EbaStatus.ACTIVE, now)) for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlaps == []
        assert service.ratings.upserts == 4


class TestRecomputeMany:
    def test_isolates_failures(self, service, now):
        service.submit_assessment(_assessment(now, "emp-good"))
        service.submit_assessment(_assessment(now, "emp-bad", criteria={"safety": 0}))
        service.submit_assessment(_assessment(now, "emp-noeba"))

        outcomes = service.recompute_many(
            [
                RecomputeRequest("emp-noeba", EbaStatus.NONE),
                RecomputeRequest("emp-bad", EbaStatus.ACTIVE),
                RecomputeRequest("emp-good", EbaStatus.ACTIVE),
                RecomputeRequest("emp-empty", EbaStatus.EXPIRED),
            ],
            now,
        )
        by_id = {o.employer_id: o for o in outcomes}
        assert [o.employer_id for o in outcomes] == ["emp-bad", "emp-empty", "emp-good", "emp-noeba"]
        assert not by_id["emp-bad"].succeeded
        assert "no valid weighted criteria" in by_id["emp-bad"].error
        assert by_id["emp-good"].state.overall_color == TrafficLightColor.GREEN
        assert by_id["emp-noeba"].state.overall_color == TrafficLightColor.RED
        assert by_id["emp-empty"].state.overall_color == TrafficLightColor.UNKNOWN
        assert service.current_rating("emp-bad") is None

    def test_role_passed_through(self, now):
        weights = WeightConfig.from_dict(
            {
                "default": {"weights": {"eba_status": 0.3, "union_respect": 0.25, "safety": 0.25, "subcontractor_use": 0.2}},
                "roles": {"consultant": {"weights": {"safety": 1.0}}},
            }
        )
        service = RatingService(
            assessments=MemoryAssessments(),
            flags=MemoryFlags(),
            flag_audit=MemoryFlagAudit(),
            ratings=MemoryRatings(),
            weight_config=weights,
            params=ScoringParameters(),
        )
        service.submit_assessment(_assessment(now, criteria={"eba_status": 1, "safety": 3}))
        [outcome] = service.recompute_many([RecomputeRequest("emp-1", EbaStatus.ACTIVE, "consultant")], now)
        assert outcome.state.overall_score == pytest.approx(3.0)

    def test_unexpected_error_fails_one_employer(self, service, now, monkeypatch):
        service.submit_assessment(_assessment(now, "emp-good"))
        service.submit_assessment(_assessment(now, "emp-down"))
        list_for_employer = service.assessments.list_for_employer

        def flaky(employer_id):
            if employer_id == "emp-down":
                raise pymysql.err.OperationalError(2013, "Lost connection to MySQL server during query")
            return list_for_employer(employer_id)

        monkeypatch.setattr(service.assessments, "list_for_employer", flaky)
        outcomes = service.recompute_many(
            [RecomputeRequest("emp-down", EbaStatus.ACTIVE), RecomputeRequest("emp-good", EbaStatus.ACTIVE)], now
        )
        by_id = {o.employer_id: o for o in outcomes}
        assert by_id["emp-good"].succeeded
        assert not by_id["emp-down"].succeeded
        assert by_id["emp-down"].error.startswith("OperationalError")
        assert service.current_rating("emp-down") is None

    def test_warnings_attached_per_employer(self, service, now):
        service.submit_assessment(_assessment(now, "emp-good"))
        service.submit_assessment(_assessment(now, "emp-noeba"))
        batch_log = RatingAuditLog()

        outcomes = service.recompute_many(
            [RecomputeRequest("emp-good", EbaStatus.ACTIVE), RecomputeRequest("emp-noeba", EbaStatus.NONE)],
            now,
            audit_log=batch_log,
        )
        by_id = {o.employer_id: o for o in outcomes}
        assert by_id["emp-good"].warnings == []
        assert len(by_id["emp-noeba"].warnings) == 1
        assert "capped_no_eba" in by_id["emp-noeba"].warnings[0]
        assert {e.employer_id for e in batch_log.get_all_entries()} >= {"emp-good", "emp-noeba"}

    def test_batches_do_not_share_a_log(self, service, now):
        service.submit_assessment(_assessment(now, "emp-noeba"))
        requests = [RecomputeRequest("emp-noeba", EbaStatus.NONE)]

        first = service.recompute_many(requests, now)
        for _ in range(5):
            latest = service.recompute_many(requests, now)
        assert latest[0].warnings == first[0].warnings
        assert len(latest[0].warnings) == 1
