"""
Engine configuration persistence.

Stores tunables like timing defaults and flag-timestamp policy in a JSON
file next to the saves.
"""

import json
import logging
from pathlib import Path
from typing import TypedDict

logger = logging.getLogger(__name__)


class EngineConfig(TypedDict, total=False):
    """Engine configuration."""
    refresh_flag_set_time: bool  # Re-setting a set flag updates its timestamp
    max_auto_advance: int  # Consecutive unattended segment advances before a call is cut
    default_ring_seconds: float  # Ring duration for calls that don't specify one
    log_level: str  # DEBUG, INFO, WARNING, ...
    saves_dir: str


DEFAULT_CONFIG: EngineConfig = {
    "refresh_flag_set_time": False,
    "max_auto_advance": 16,
    "default_ring_seconds": 30.0,
    "log_level": "WARNING",
    "saves_dir": "saves",
}


def get_config_path(saves_dir: Path | str = "saves") -> Path:
    """Get path to config file."""
    return Path(saves_dir) / ".nightline_config.json"


def load_config(saves_dir: Path | str = "saves") -> EngineConfig:
    """Load config from file, or return defaults if not found."""
    path = get_config_path(saves_dir)

    if not path.exists():
        return DEFAULT_CONFIG.copy()

    try:
        with open(path, "r", encoding="utf-8") as f:
            saved = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return DEFAULT_CONFIG.copy()

    if not isinstance(saved, dict):
        logger.warning(f"Ignoring config {path}: expected an object")
        return DEFAULT_CONFIG.copy()

    # Merge with defaults to handle missing keys
    config = DEFAULT_CONFIG.copy()
    config.update({k: v for k, v in saved.items() if k in DEFAULT_CONFIG})
    return config


def save_config(config: EngineConfig, saves_dir: Path | str = "saves") -> bool:
    """Save config to file. Returns True on success."""
    path = get_config_path(saves_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        return True
    except OSError as e:
        logger.warning(f"Could not save config to {path}: {e}")
        return False


def set_refresh_flag_set_time(enabled: bool, saves_dir: Path | str = "saves") -> None:
    """Save the flag-timestamp policy."""
    config = load_config(saves_dir)
    config["refresh_flag_set_time"] = enabled
    save_config(config, saves_dir)
