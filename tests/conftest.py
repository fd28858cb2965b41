"""Shared fixtures for rating engine tests.

Database tests never touch MySQL: they monkeypatch execute_query.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Make the package importable without installing it
sys.path.insert(0, str(Path(__file__).parent.parent))

from traffic_light.scorers.weight_registry import ScoringParameters, WeightConfig, clear_cache  # noqa: E402
from traffic_light.utils.scoring_audit import RatingAuditLog  # noqa: E402


@pytest.fixture
def now():
    """Fixed reference time for decay calculations."""
    return datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def params():
    return ScoringParameters()


@pytest.fixture
def default_weights():
    """Built-in default weight table only (EBA 30 / Union 25 / Safety 25 / Subbies 20)."""
    return WeightConfig.defaults()


@pytest.fixture
def audit_log():
    return RatingAuditLog()


@pytest.fixture(autouse=True)
def _isolate_global_state():
    """Fresh registry cache for every test."""
    clear_cache()
    yield
    clear_cache()
