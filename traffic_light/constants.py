"""
Rating engine constants.

These are the built-in defaults. The YAML file in config/ overrides them;
see scorers/weight_registry.py.
"""

# =============================================================================
# Engine Version (semver)
# =============================================================================
# Major: scale or state machine change (ratings not comparable)
# Minor: default weights / thresholds changed (ratings shift)
# Patch: bug fix (ratings shouldn't change)
ENGINE_VERSION = "1.0.0"

# 4-point scale: 1 = Good ... 4 = Terrible
MIN_SCORE = 1
MAX_SCORE = 4
VALID_SCORES = frozenset(range(MIN_SCORE, MAX_SCORE + 1))

# Fallback criterion weights, used when a role has no table of its own
DEFAULT_CRITERION_WEIGHTS = {
    "eba_status": 0.30,
    "union_respect": 0.25,
    "safety": 0.25,
    "subcontractor_use": 0.20,
}

# Track blend (documented ranges: Track 1 60-70%, Track 2 30-40%)
DEFAULT_TRACK_WEIGHTS = {
    "project_data": 0.65,
    "organiser_expertise": 0.35,
}

# Upper bound (exclusive) of each colour band on the 1-4 scale.
# RED covers everything from the AMBER bound up to 4.0.
DEFAULT_COLOR_THRESHOLDS = {
    "green": 1.75,
    "yellow": 2.5,
    "amber": 3.25,
}

# (max_age_days inclusive, factor); ages beyond the last band get the floor
DEFAULT_DECAY_BANDS = [
    (90, 1.00),
    (180, 0.80),
    (365, 0.60),
]
DEFAULT_DECAY_FLOOR = 0.40

# Midpoints of the documented ranges
DEFAULT_CONFIDENCE_FACTORS = {
    "high": 1.00,
    "medium": 0.85,
    "low": 0.65,
    "very_low": 0.45,
}

# Documented ranges; organiser-specific multipliers are clamped into these
DEFAULT_CONFIDENCE_RANGES = {
    "high": (1.00, 1.00),
    "medium": (0.80, 0.90),
    "low": (0.60, 0.70),
    "very_low": (0.40, 0.50),
}

# |track1 - track2| above this flags the rating for manual review
DEFAULT_DISCREPANCY_THRESHOLD = 1.0

# Upper bound (inclusive) of each discrepancy level; above MAJOR is CRITICAL
DEFAULT_DISCREPANCY_LEVELS = {
    "none": 0.25,
    "minor": 0.5,
    "moderate": 1.0,
    "major": 2.0,
}

# Minimum criterion coverage (share of the role weight scored) for each data
# quality level; anything lower is very_low
DEFAULT_DATA_QUALITY_THRESHOLDS = {
    "high": 0.80,
    "medium": 0.60,
    "low": 0.40,
}

# Tolerance when checking that weights sum to 1.0
WEIGHT_SUM_TOLERANCE = 1e-6
