"""Tests for the sham contracting flag lifecycle and audit trail."""

from datetime import timedelta

import pytest

from traffic_light.errors import FlagAlreadyCleared, FlagNotFound, MissingRequiredNotes
from traffic_light.schemas.rating import (
    Assessment,
    ConfidenceLevel,
    FlagAction,
    FlagSource,
    Track,
)
from traffic_light.services.flag_ledger import (
    ShamContractingLedger,
    clear_flag,
    flag_from_assessment,
    open_flag,
    require_notes,
)


def _flagged_assessment(now, track=Track.PROJECT_DATA, **overrides) -> Assessment:
    defaults = dict(
        employer_id="emp-1",
        track=track,
        submitted_at=now,
        confidence=ConfidenceLevel.HIGH,
        criteria_scores={"safety": 2},
        sham_contracting_flag=True,
        sham_contracting_notes="Labourers invoicing on ABNs",
        organiser_id="org-3",
        project_id="proj-9",
    )
    defaults.update(overrides)
    return Assessment(**defaults)


class TestRequireNotes:
    def test_strips(self):
        assert require_notes("  evidence  ", "Notes") == "evidence"

    @pytest.mark.parametrize("text", [None, "", "   ", "\n\t"])
    def test_blank_rejected(self, text):
        with pytest.raises(MissingRequiredNotes, match="Notes is required"):
            require_notes(text, "Notes")


class TestOpenFlag:
    def test_creates_active_flag_and_event(self, now):
        flag, event = open_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now, project_id="p-1")
        assert flag.is_active
        assert flag.evidence_notes == "Evidence"
        assert event.action == FlagAction.FLAGGED
        assert event.flag_id == flag.flag_id
        assert event.actor == "org-3"
        assert event.occurred_at == now
        assert event.project_id == "p-1"

    def test_reflag_action(self, now):
        _, event = open_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Again", now, reflag_of="old-flag")
        assert event.action == FlagAction.REFLAGGED

    def test_missing_notes(self, now):
        with pytest.raises(MissingRequiredNotes):
            open_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", " ", now)

    def test_missing_detector(self, now):
        with pytest.raises(MissingRequiredNotes):
            open_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "", "Evidence", now)


class TestFlagFromAssessment:
    def test_track1_source(self, now):
        a = _flagged_assessment(now)
        flag, event = flag_from_assessment(a)
        assert flag.source == FlagSource.COMPLIANCE_CHECK
        assert flag.assessment_id == a.assessment_id
        assert flag.project_id == "proj-9"
        assert flag.detected_by == "org-3"
        assert flag.evidence_notes == "Labourers invoicing on ABNs"
        assert event.action == FlagAction.FLAGGED

    def test_track2_source(self, now):
        flag, _ = flag_from_assessment(_flagged_assessment(now, Track.ORGANISER_EXPERTISE, project_id=None))
        assert flag.source == FlagSource.EXPERTISE_RATING

    def test_explicit_source(self, now):
        flag, _ = flag_from_assessment(_flagged_assessment(now), FlagSource.SUBCONTRACTOR_ASSESSMENT)
        assert flag.source == FlagSource.SUBCONTRACTOR_ASSESSMENT

    def test_unflagged_assessment_rejected(self, now):
        a = _flagged_assessment(now, sham_contracting_flag=False, sham_contracting_notes=None)
        with pytest.raises(ValueError, match="does not flag"):
            flag_from_assessment(a)


class TestClearFlag:
    def test_clears_and_keeps_detection(self, now):
        flag, _ = open_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now - timedelta(days=10))
        cleared, event = clear_flag(flag, "lead-1", "Workers put on payroll", now)

        assert not cleared.is_active
        assert cleared.flag_id == flag.flag_id
        assert cleared.evidence_notes == "Evidence"
        assert cleared.detected_at == flag.detected_at
        assert cleared.cleared_by == "lead-1"
        assert event.action == FlagAction.CLEARED
        assert event.clearing_reason == "Workers put on payroll"
        # Original record untouched
        assert flag.is_active

    def test_reason_required(self, now):
        flag, _ = open_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now)
        with pytest.raises(MissingRequiredNotes):
            clear_flag(flag, "lead-1", "", now)

    def test_clearer_required(self, now):
        flag, _ = open_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now)
        with pytest.raises(MissingRequiredNotes):
            clear_flag(flag, " ", "Resolved", now)

    def test_already_cleared(self, now):
        flag, _ = open_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now)
        cleared, _ = clear_flag(flag, "lead-1", "Resolved", now)
        with pytest.raises(FlagAlreadyCleared):
            clear_flag(cleared, "lead-1", "Resolved again", now)


class TestShamContractingLedger:
    def test_lifecycle_audit_trail(self, now):
        ledger = ShamContractingLedger()
        flag = ledger.raise_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now - timedelta(days=5))
        ledger.clear(flag.flag_id, "lead-1", "Resolved", now - timedelta(days=2))
        reopened = ledger.reflag(flag.flag_id, "org-4", "Back on ABNs", now)

        trail = ledger.audit_trail("emp-1")
        assert [e.action for e in trail] == [FlagAction.FLAGGED, FlagAction.CLEARED, FlagAction.REFLAGGED]
        assert reopened.reflag_of == flag.flag_id
        assert reopened.flag_id != flag.flag_id
        assert [f.flag_id for f in ledger.active_flags_for("emp-1")] == [reopened.flag_id]
        assert len(ledger.flags_for("emp-1")) == 2

    def test_reflag_active_rejected(self, now):
        ledger = ShamContractingLedger()
        flag = ledger.raise_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now)
        with pytest.raises(ValueError, match="still active"):
            ledger.reflag(flag.flag_id, "org-4", "More", now)

    def test_unknown_flag(self):
        with pytest.raises(FlagNotFound):
            ShamContractingLedger().get("missing")

    def test_failed_clear_records_nothing(self, now):
        ledger = ShamContractingLedger()
        flag = ledger.raise_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "Evidence", now)
        with pytest.raises(MissingRequiredNotes):
            ledger.clear(flag.flag_id, "lead-1", "", now)
        assert ledger.get(flag.flag_id).is_active
        assert len(ledger.audit_trail()) == 1

    def test_flag_assessment(self, now):
        ledger = ShamContractingLedger()
        a = _flagged_assessment(now)
        flag = ledger.flag_assessment(a)
        assert ledger.get(flag.flag_id).assessment_id == a.assessment_id

    def test_employer_filtering(self, now):
        ledger = ShamContractingLedger()
        ledger.raise_flag("emp-1", FlagSource.COMPLIANCE_CHECK, "org-3", "A", now)
        ledger.raise_flag("emp-2", FlagSource.COMPLIANCE_CHECK, "org-3", "B", now)
        assert len(ledger.flags_for("emp-1")) == 1
        assert len(ledger.audit_trail("emp-2")) == 1
        assert len(ledger.audit_trail()) == 2
