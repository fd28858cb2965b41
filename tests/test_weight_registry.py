"""Tests for the YAML-backed weight registry and scoring parameters."""

from pathlib import Path

import pytest
import yaml

from traffic_light.errors import MissingRoleWeights, WeightConfigError
from traffic_light.schemas.rating import EmployerRole
from traffic_light.scorers import weight_registry
from traffic_light.scorers.weight_registry import (
    ScoringParameters,
    WeightConfig,
    get_role_weights,
    get_scoring_parameters,
    list_roles,
    load_rating_config,
    parse_rating_config,
)

REPO_CONFIG = Path(__file__).parent.parent / "config" / "rating_weights.yaml"


def _write_config(tmp_path, data: dict):
    path = tmp_path / "rating_weights.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestRepoConfig:
    """The shipped config/rating_weights.yaml."""

    def test_loads(self):
        config = load_rating_config(REPO_CONFIG)
        assert config.weights.default is not None
        assert config.params.track_weights == {"project_data": 0.65, "organiser_expertise": 0.35}

    def test_every_table_sums_to_one(self):
        config = load_rating_config(REPO_CONFIG)
        tables = [config.weights.default, *config.weights.roles.values()]
        for table in tables:
            assert sum(table.weights.values()) == pytest.approx(1.0), table.role

    def test_role_tables(self):
        config = load_rating_config(REPO_CONFIG)
        head = config.weights.weights_for_role(EmployerRole.HEAD_CONTRACTOR)
        assert head.weight_for("subcontractor_use") == pytest.approx(0.25)
        consultant = config.weights.weights_for_role("consultant")
        assert consultant.weight_for("subcontractor_use") is None

    def test_other_role_falls_back_to_default(self):
        config = load_rating_config(REPO_CONFIG)
        assert config.weights.weights_for_role(EmployerRole.OTHER).role == "default"

    def test_matches_builtin_parameters(self):
        """The YAML scoring section restates the built-in defaults."""
        loaded = load_rating_config(REPO_CONFIG).params
        builtin = ScoringParameters()
        assert loaded.color_thresholds == builtin.color_thresholds
        assert loaded.decay_bands == builtin.decay_bands
        assert loaded.confidence_factors == builtin.confidence_factors
        assert loaded.data_quality_thresholds == builtin.data_quality_thresholds


class TestWeightConfig:
    def test_unknown_role_uses_default(self, default_weights):
        assert default_weights.weights_for_role("labour_hire").role == "default"

    def test_none_role_uses_default(self, default_weights):
        assert default_weights.weights_for_role(None).weight_for("eba_status") == pytest.approx(0.30)

    def test_missing_table_and_default(self):
        with pytest.raises(MissingRoleWeights) as exc:
            WeightConfig(roles={}, default=None).weights_for_role("subcontractor")
        assert exc.value.role == "subcontractor"

    def test_weights_must_sum_to_one(self):
        with pytest.raises(WeightConfigError, match="sums to"):
            WeightConfig.from_dict({"default": {"weights": {"eba_status": 0.5, "safety": 0.4}}})

    def test_unknown_criterion_rejected(self):
        with pytest.raises(WeightConfigError, match="unknown criteria"):
            WeightConfig.from_dict({"default": {"weights": {"eba_status": 0.5, "morale": 0.5}}})

    def test_unknown_role_rejected(self):
        with pytest.raises(WeightConfigError, match="Unknown role"):
            WeightConfig.from_dict({"roles": {"architect": {"weights": {"safety": 1.0}}}})

    def test_negative_weight_rejected(self):
        with pytest.raises(WeightConfigError, match="negative"):
            WeightConfig.from_dict({"default": {"weights": {"eba_status": 1.5, "safety": -0.5}}})


class TestScoringParameters:
    def test_defaults_valid(self):
        params = ScoringParameters()
        assert params.decay_floor == pytest.approx(0.4)

    def test_track_weights_must_sum_to_one(self):
        with pytest.raises(WeightConfigError):
            ScoringParameters(track_weights={"project_data": 0.7, "organiser_expertise": 0.4})

    def test_thresholds_must_ascend(self):
        with pytest.raises(WeightConfigError):
            ScoringParameters(color_thresholds={"green": 2.5, "yellow": 1.75, "amber": 3.25})

    def test_confidence_factor_inside_range(self):
        with pytest.raises(WeightConfigError):
            ScoringParameters(confidence_factors={"high": 1.0, "medium": 0.95, "low": 0.65, "very_low": 0.45})

    def test_decay_bands_sorted(self):
        with pytest.raises(WeightConfigError):
            ScoringParameters(decay_bands=[(180, 0.8), (90, 1.0)])

    def test_data_quality_thresholds_descend(self):
        with pytest.raises(WeightConfigError):
            ScoringParameters(data_quality_thresholds={"high": 0.6, "medium": 0.8, "low": 0.4})

    def test_partial_scoring_section_keeps_defaults(self):
        config = parse_rating_config({"scoring": {"discrepancy_threshold": 0.75}})
        assert config.params.discrepancy_threshold == pytest.approx(0.75)
        assert config.params.track_weights["project_data"] == pytest.approx(0.65)


class TestLoading:
    def test_custom_file(self, tmp_path):
        path = _write_config(
            tmp_path,
            {
                "criterion_weights": {"default": {"weights": {"safety": 0.5, "union_respect": 0.5}}},
                "scoring": {"track_weights": {"project_data": 0.6, "organiser_expertise": 0.4}},
            },
        )
        config = load_rating_config(path)
        assert config.weights.default.weights == {"safety": 0.5, "union_respect": 0.5}
        assert config.params.track_weights["organiser_expertise"] == pytest.approx(0.4)

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        config = load_rating_config(tmp_path / "nope.yaml")
        assert config.weights.default.weight_for("eba_status") == pytest.approx(0.30)
        assert config.weights.roles == {}

    def test_malformed_file_raises(self, tmp_path):
        path = _write_config(tmp_path, {"criterion_weights": {"default": {"weights": {"safety": 0.3}}}})
        with pytest.raises(WeightConfigError):
            load_rating_config(path)

    def test_env_dir_and_cache(self, tmp_path, monkeypatch):
        _write_config(
            tmp_path,
            {"criterion_weights": {"roles": {"consultant": {"weights": {"safety": 1.0}}}}},
        )
        monkeypatch.setenv("TRAFFIC_LIGHT_CONFIG_DIR", str(tmp_path))

        assert list_roles() == ["consultant"]
        assert get_role_weights("consultant").weight_for("safety") == pytest.approx(1.0)
        assert weight_registry._registry_cache is not None

        # Cached: edits on disk are not seen until the cache is cleared
        _write_config(tmp_path, {})
        assert list_roles() == ["consultant"]
        weight_registry.clear_cache()
        assert list_roles() == []

    def test_explicit_path_not_cached(self, tmp_path):
        load_rating_config(_write_config(tmp_path, {}))
        assert weight_registry._registry_cache is None

    def test_scoring_parameters_accessor(self, tmp_path, monkeypatch):
        _write_config(tmp_path, {"scoring": {"decay_floor": 0.3}})
        monkeypatch.setenv("TRAFFIC_LIGHT_CONFIG_DIR", str(tmp_path))
        assert get_scoring_parameters().decay_floor == pytest.approx(0.3)
