"""Tests for the criterion scorer: weighted 1-4 subtotal per assessment."""

from datetime import datetime, timezone

import pytest

from traffic_light.errors import EmptyAssessment, InvalidCriterionScore
from traffic_light.schemas.rating import Assessment, ConfidenceLevel, Track
from traffic_light.scorers.criterion_scorer import score_assessment, validate_criterion_score
from traffic_light.scorers.weight_registry import RoleWeights

DEFAULT = RoleWeights(
    role="default",
    weights={"eba_status": 0.30, "union_respect": 0.25, "safety": 0.25, "subcontractor_use": 0.20},
)


def _assessment(criteria: dict, **overrides) -> Assessment:
    defaults = dict(
        employer_id="emp-1",
        track=Track.PROJECT_DATA,
        submitted_at=datetime(2025, 6, 1, tzinfo=timezone.utc),
        confidence=ConfidenceLevel.HIGH,
        criteria_scores=criteria,
    )
    defaults.update(overrides)
    return Assessment(**defaults)


class TestValidateCriterionScore:
    """Values must be integers on the 1-4 scale."""

    @pytest.mark.parametrize("value", [1, 2, 3, 4])
    def test_valid_values(self, value):
        assert validate_criterion_score("safety", value) == value

    @pytest.mark.parametrize("value", [0, 5, -1, 2.0, "2", None, True])
    def test_invalid_values(self, value):
        with pytest.raises(InvalidCriterionScore) as exc:
            validate_criterion_score("safety", value, assessment_id="a-1")
        assert exc.value.criterion == "safety"
        assert exc.value.assessment_id == "a-1"

    def test_invalid_score_is_value_error(self):
        """Callers catching ValueError also catch range errors."""
        with pytest.raises(ValueError):
            validate_criterion_score("safety", 9)


class TestScoreAssessment:
    """subtotal = sum(score * weight) / sum(weight for criteria present)."""

    def test_all_good_is_one(self):
        result = score_assessment(
            _assessment({"eba_status": 1, "union_respect": 1, "safety": 1, "subcontractor_use": 1}), DEFAULT
        )
        assert result.score == pytest.approx(1.0)
        assert result.weight_used == pytest.approx(1.0)

    def test_all_terrible_is_four(self):
        result = score_assessment(
            _assessment({"eba_status": 4, "union_respect": 4, "safety": 4, "subcontractor_use": 4}), DEFAULT
        )
        assert result.score == pytest.approx(4.0)

    def test_weighted_mix(self):
        """0.30*1 + 0.25*2 + 0.25*3 + 0.20*4 = 2.35."""
        result = score_assessment(
            _assessment({"eba_status": 1, "union_respect": 2, "safety": 3, "subcontractor_use": 4}), DEFAULT
        )
        assert result.score == pytest.approx(2.35)

    def test_partial_assessment_renormalises(self):
        """Missing criteria drop out of numerator and denominator: (0.3*1 + 0.25*3) / 0.55."""
        result = score_assessment(_assessment({"eba_status": 1, "safety": 3}), DEFAULT)
        assert result.score == pytest.approx(1.05 / 0.55)
        assert result.covered == ["eba_status", "safety"]
        assert result.weight_used == pytest.approx(0.55)

    def test_invalid_criterion_rejected_not_fatal(self):
        result = score_assessment(_assessment({"eba_status": 2, "safety": 7}), DEFAULT)
        assert result.score == pytest.approx(2.0)
        assert result.rejected == ["safety"]
        assert result.covered == ["eba_status"]

    def test_strict_mode_raises(self):
        with pytest.raises(InvalidCriterionScore):
            score_assessment(_assessment({"eba_status": 2, "safety": 7}), DEFAULT, strict=True)

    def test_unweighted_criterion_ignored(self):
        """role_specific has no weight in the default table."""
        result = score_assessment(_assessment({"eba_status": 3, "role_specific": 1}), DEFAULT)
        assert result.score == pytest.approx(3.0)
        assert result.unweighted == ["role_specific"]

    def test_zero_weight_criterion_ignored(self):
        weights = RoleWeights(role="x", weights={"eba_status": 1.0, "safety": 0.0})
        result = score_assessment(_assessment({"eba_status": 2, "safety": 4}), weights)
        assert result.score == pytest.approx(2.0)
        assert result.unweighted == ["safety"]

    def test_no_criteria_raises_empty(self):
        with pytest.raises(EmptyAssessment):
            score_assessment(_assessment({}), DEFAULT)

    def test_all_rejected_raises_empty(self):
        a = _assessment({"safety": 0, "eba_status": 5})
        with pytest.raises(EmptyAssessment) as exc:
            score_assessment(a, DEFAULT)
        assert exc.value.assessment_id == a.assessment_id
        assert sorted(exc.value.rejected) == ["eba_status", "safety"]

    def test_only_unweighted_raises_empty(self):
        with pytest.raises(EmptyAssessment):
            score_assessment(_assessment({"role_specific": 2}), DEFAULT)

    def test_worse_score_never_lowers_subtotal(self):
        """Raising one criterion from 1 to 4 never decreases the subtotal."""
        base = {"eba_status": 2, "union_respect": 2, "safety": 2, "subcontractor_use": 2}
        for criterion in base:
            previous = None
            for value in (1, 2, 3, 4):
                score = score_assessment(_assessment({**base, criterion: value}), DEFAULT).score
                if previous is not None:
                    assert score > previous
                previous = score
