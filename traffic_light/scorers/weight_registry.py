"""Weight Registry - per-role criterion weights and scoring parameters.

Maps employer roles to criterion weight tables (each summing to 1.0) and
holds the tunable scoring parameters: track blend, colour thresholds, decay
bands and confidence factors. Everything is data, loaded from YAML, so that
the criterion scorer stays identical across roles.

Usage:
    from traffic_light.scorers.weight_registry import get_weight_config, get_scoring_parameters

    weights = get_weight_config().weights_for_role("head_contractor")
    # weights.weights["eba_status"] == 0.30
    params = get_scoring_parameters()
    # params.track_weights["project_data"] == 0.65
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from ..config import get_weights_path
from ..constants import (
    DEFAULT_COLOR_THRESHOLDS,
    DEFAULT_CONFIDENCE_FACTORS,
    DEFAULT_CONFIDENCE_RANGES,
    DEFAULT_CRITERION_WEIGHTS,
    DEFAULT_DATA_QUALITY_THRESHOLDS,
    DEFAULT_DECAY_BANDS,
    DEFAULT_DECAY_FLOOR,
    DEFAULT_DISCREPANCY_LEVELS,
    DEFAULT_DISCREPANCY_THRESHOLD,
    DEFAULT_TRACK_WEIGHTS,
    MAX_SCORE,
    MIN_SCORE,
    WEIGHT_SUM_TOLERANCE,
)
from ..errors import MissingRoleWeights, WeightConfigError
from ..schemas.rating import ConfidenceLevel, CriterionCategory, EmployerRole, Track

logger = logging.getLogger(__name__)

CRITERION_KEYS = [c.value for c in CriterionCategory]
ROLE_KEYS = [r.value for r in EmployerRole]
TRACK_KEYS = [t.value for t in Track]
CONFIDENCE_KEYS = [c.value for c in ConfidenceLevel]
COLOR_BAND_KEYS = ["green", "yellow", "amber"]
DISCREPANCY_BAND_KEYS = ["none", "minor", "moderate", "major"]
DATA_QUALITY_KEYS = ["high", "medium", "low"]

RoleKey = Union[EmployerRole, str, None]


@dataclass(frozen=True)
class RoleWeights:
    """Criterion weight table for a single role (or the default table)."""

    role: str
    weights: dict[str, float] = field(default_factory=dict)
    description: str = ""

    def weight_for(self, criterion: str) -> Optional[float]:
        """Weight of a criterion, or None when this table does not weight it."""
        return self.weights.get(criterion)


@dataclass
class WeightConfig:
    """Role -> weight table lookup with a fallback default table."""

    roles: dict[str, RoleWeights] = field(default_factory=dict)
    default: Optional[RoleWeights] = None

    def weights_for_role(self, role: RoleKey = None) -> RoleWeights:
        """Resolve the weight table for a role.

        Falls back to the default table for roles without their own.

        Raises:
            MissingRoleWeights: neither a role table nor a default exists
        """
        key = role.value if isinstance(role, EmployerRole) else role
        if key is not None and key in self.roles:
            return self.roles[key]
        if self.default is not None:
            if key is not None:
                logger.debug(f"No weight table for role '{key}', using default")
            return self.default
        raise MissingRoleWeights(key)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "WeightConfig":
        """Build from the `criterion_weights` section of the YAML file."""
        default = None
        default_raw = raw.get("default")
        if default_raw is not None:
            weights = _coerce_weights(default_raw.get("weights", {}))
            _validate_weights("default", weights)
            default = RoleWeights(role="default", weights=weights, description=default_raw.get("description", ""))

        roles: dict[str, RoleWeights] = {}
        for name, data in (raw.get("roles") or {}).items():
            if name not in ROLE_KEYS:
                raise WeightConfigError(f"Unknown role '{name}' in weight config (expected one of {ROLE_KEYS})")
            weights = _coerce_weights(data.get("weights", {}))
            _validate_weights(name, weights)
            roles[name] = RoleWeights(role=name, weights=weights, description=data.get("description", ""))

        return cls(roles=roles, default=default)

    @classmethod
    def defaults(cls) -> "WeightConfig":
        """Default table only (EBA 30%, Union Respect 25%, Safety 25%, Subcontractor Use 20%)."""
        return cls(
            roles={},
            default=RoleWeights(role="default", weights=dict(DEFAULT_CRITERION_WEIGHTS), description="Built-in default"),
        )


@dataclass
class ScoringParameters:
    """Tunable scoring constants.

    The documented product ranges (confidence 80-90% etc.) only pin these
    loosely; treat them as configuration, not invariants.
    """

    track_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TRACK_WEIGHTS))
    color_thresholds: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_COLOR_THRESHOLDS))
    decay_bands: list[tuple[int, float]] = field(default_factory=lambda: list(DEFAULT_DECAY_BANDS))
    decay_floor: float = DEFAULT_DECAY_FLOOR
    confidence_factors: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_CONFIDENCE_FACTORS))
    confidence_ranges: dict[str, tuple[float, float]] = field(
        default_factory=lambda: dict(DEFAULT_CONFIDENCE_RANGES)
    )
    discrepancy_threshold: float = DEFAULT_DISCREPANCY_THRESHOLD
    discrepancy_levels: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_DISCREPANCY_LEVELS))
    data_quality_thresholds: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_DATA_QUALITY_THRESHOLDS)
    )

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check internal consistency; raises WeightConfigError."""
        if set(self.track_weights) != set(TRACK_KEYS):
            raise WeightConfigError(f"track_weights must define exactly {TRACK_KEYS}")
        if any(w < 0 for w in self.track_weights.values()):
            raise WeightConfigError("track_weights must be non-negative")
        total = sum(self.track_weights.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise WeightConfigError(f"track_weights sum to {total:.4f}, expected 1.0")

        bounds = [self.color_thresholds.get(k) for k in COLOR_BAND_KEYS]
        if any(b is None for b in bounds):
            raise WeightConfigError(f"color_thresholds must define {COLOR_BAND_KEYS}")
        if not (MIN_SCORE < bounds[0] < bounds[1] < bounds[2] <= MAX_SCORE):
            raise WeightConfigError(f"color_thresholds must ascend within ({MIN_SCORE}, {MAX_SCORE}]: {bounds}")

        previous_age = -1
        for max_age, factor in self.decay_bands:
            if max_age <= previous_age:
                raise WeightConfigError("decay_bands must be sorted by ascending max_age_days")
            if not 0 < factor <= 1:
                raise WeightConfigError(f"decay factor {factor} outside (0, 1]")
            previous_age = max_age
        if not 0 < self.decay_floor <= 1:
            raise WeightConfigError(f"decay_floor {self.decay_floor} outside (0, 1]")

        for key in CONFIDENCE_KEYS:
            if key not in self.confidence_factors or key not in self.confidence_ranges:
                raise WeightConfigError(f"confidence level '{key}' missing a factor or range")
            lo, hi = self.confidence_ranges[key]
            if not 0 < lo <= self.confidence_factors[key] <= hi <= 1:
                raise WeightConfigError(
                    f"confidence factor for '{key}' ({self.confidence_factors[key]}) outside range [{lo}, {hi}]"
                )

        if self.discrepancy_threshold <= 0:
            raise WeightConfigError("discrepancy_threshold must be positive")
        levels = [self.discrepancy_levels.get(k) for k in DISCREPANCY_BAND_KEYS]
        if any(v is None for v in levels) or levels != sorted(levels):
            raise WeightConfigError(f"discrepancy_levels must define ascending {DISCREPANCY_BAND_KEYS}")

        quality = [self.data_quality_thresholds.get(k) for k in DATA_QUALITY_KEYS]
        if any(q is None for q in quality) or not (1 >= quality[0] > quality[1] > quality[2] > 0):
            raise WeightConfigError(f"data_quality_thresholds must define descending {DATA_QUALITY_KEYS} within (0, 1]")

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ScoringParameters":
        """Build from the `scoring` section of the YAML file; missing keys keep defaults."""
        kwargs: dict[str, Any] = {}
        if "track_weights" in raw:
            kwargs["track_weights"] = {k: float(v) for k, v in raw["track_weights"].items()}
        if "color_thresholds" in raw:
            kwargs["color_thresholds"] = {k: float(v) for k, v in raw["color_thresholds"].items()}
        if "decay_bands" in raw:
            kwargs["decay_bands"] = [(int(b["max_age_days"]), float(b["factor"])) for b in raw["decay_bands"]]
        if "decay_floor" in raw:
            kwargs["decay_floor"] = float(raw["decay_floor"])
        if "confidence_factors" in raw:
            kwargs["confidence_factors"] = {k: float(v) for k, v in raw["confidence_factors"].items()}
        if "confidence_ranges" in raw:
            kwargs["confidence_ranges"] = {k: (float(v[0]), float(v[1])) for k, v in raw["confidence_ranges"].items()}
        if "discrepancy_threshold" in raw:
            kwargs["discrepancy_threshold"] = float(raw["discrepancy_threshold"])
        if "discrepancy_levels" in raw:
            kwargs["discrepancy_levels"] = {k: float(v) for k, v in raw["discrepancy_levels"].items()}
        if "data_quality_thresholds" in raw:
            kwargs["data_quality_thresholds"] = {k: float(v) for k, v in raw["data_quality_thresholds"].items()}
        return cls(**kwargs)


@dataclass
class RatingConfig:
    """Everything loaded from rating_weights.yaml."""

    weights: WeightConfig
    params: ScoringParameters


def _coerce_weights(weights: dict[str, Any]) -> dict[str, float]:
    return {str(k): float(v) for k, v in weights.items()}


def _validate_weights(table_name: str, weights: dict[str, float]) -> None:
    """Validate that a weight table uses known categories and sums to 1.0."""
    if not weights:
        raise WeightConfigError(f"Weight table '{table_name}' is empty")
    extra = set(weights) - set(CRITERION_KEYS)
    if extra:
        raise WeightConfigError(f"Weight table '{table_name}' has unknown criteria: {sorted(extra)}")
    negative = [k for k, v in weights.items() if v < 0]
    if negative:
        raise WeightConfigError(f"Weight table '{table_name}' has negative weights: {negative}")
    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise WeightConfigError(f"Weight table '{table_name}' sums to {total:.4f}, expected 1.0")


# Module-level cache
_registry_cache: Optional[RatingConfig] = None


def parse_rating_config(raw: dict[str, Any]) -> RatingConfig:
    """Build a RatingConfig from an already-parsed YAML mapping."""
    weights_raw = raw.get("criterion_weights")
    weights = WeightConfig.from_dict(weights_raw) if weights_raw is not None else WeightConfig.defaults()
    params = ScoringParameters.from_dict(raw.get("scoring") or {})
    return RatingConfig(weights=weights, params=params)


def load_rating_config(path: Optional[Path] = None) -> RatingConfig:
    """Load rating configuration from YAML.

    With no path, loads the configured file once and caches it. A missing
    file falls back to the built-in defaults; a malformed one raises
    WeightConfigError.
    """
    global _registry_cache
    if path is None and _registry_cache is not None:
        return _registry_cache

    config_path = path or get_weights_path()
    if not config_path.exists():
        logger.warning(f"Rating weights config not found at {config_path}, using defaults")
        config = RatingConfig(weights=WeightConfig.defaults(), params=ScoringParameters())
    else:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        config = parse_rating_config(raw)
        logger.info(
            f"Loaded rating config from {config_path}: {len(config.weights.roles)} role tables, "
            f"default table {'present' if config.weights.default else 'absent'}"
        )

    if path is None:
        _registry_cache = config
    return config


def get_weight_config() -> WeightConfig:
    """Get the cached role weight configuration."""
    return load_rating_config().weights


def get_scoring_parameters() -> ScoringParameters:
    """Get the cached scoring parameters."""
    return load_rating_config().params


def get_role_weights(role: RoleKey = None) -> RoleWeights:
    """Convenience: role -> RoleWeights via the cached configuration."""
    return get_weight_config().weights_for_role(role)


def list_roles() -> list[str]:
    """List roles with their own weight table."""
    return list(get_weight_config().roles.keys())


def clear_cache():
    """Clear the registry cache (useful for testing)."""
    global _registry_cache
    _registry_cache = None
