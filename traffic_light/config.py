"""
Central configuration for paths.

The weight/threshold YAML lives in config/ at the repository root unless
TRAFFIC_LIGHT_CONFIG_DIR points elsewhere. Local output (audit exports,
logs) goes to ~/.traffic-light-data/ unless TRAFFIC_LIGHT_DATA_DIR is set.

Database settings are read in db/client.py:
  - RATING_DB_HOST (default: 127.0.0.1)
  - RATING_DB_PORT (default: 3306)
  - RATING_DB_USER (default: root)
  - RATING_DB_DATABASE (default: traffic_light)
"""

import os
from pathlib import Path

WEIGHTS_FILENAME = "rating_weights.yaml"


def get_config_dir() -> Path:
    """
    Get the directory holding rating_weights.yaml.

    Returns:
        Path to config directory
    """
    env_path = os.environ.get("TRAFFIC_LIGHT_CONFIG_DIR")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path(__file__).parent.parent / "config"


def get_weights_path() -> Path:
    """Get the path of the weight/threshold configuration file."""
    return get_config_dir() / WEIGHTS_FILENAME


def get_data_dir() -> Path:
    """Get the local data directory for audit exports and logs."""
    env_path = os.environ.get("TRAFFIC_LIGHT_DATA_DIR")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".traffic-light-data"


def get_log_dir() -> Path:
    """Get the log directory."""
    return get_data_dir() / "logs"
