"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
# Configuration is loaded in layers (later layers override earlier):
#
#   1. config/config.yaml  -- Static defaults checked into the repo
#   2. .env file           -- Local developer overrides (not committed)
#   3. Environment vars    -- Set at deploy time
#
# The YAML file is grouped into sections (``embedding``, ``search``...)
# whose keys are Settings field names.  Only values actually provided
# through the environment override YAML; Settings defaults never do.
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path
from typing import Any

import yaml

from src.config.settings import Settings
from src.utils.errors import ConfigurationError


def load_config(path: str = "config/config.yaml") -> dict:
    """Load YAML config and merge with environment-based Settings.

    Environment variables (via Settings) override YAML values where keys overlap.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Fully resolved configuration dictionary keyed by section.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    if not isinstance(yaml_config, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")

    settings = Settings()
    explicit = settings.model_dump(include=settings.model_fields_set)

    # Place every explicitly-set env value in the section that already
    # declares it, or under "app" when YAML does not mention it.
    env_overrides: dict[str, dict[str, Any]] = {}
    for key, value in explicit.items():
        section = _find_section(yaml_config, key) or "app"
        env_overrides.setdefault(section, {})[key] = value

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def settings_from_config(config: dict) -> Settings:
    """Flatten a sectioned config dict into a :class:`Settings` instance.

    Unknown keys are ignored so the YAML file can carry comments-as-keys
    for operators without breaking startup.
    """
    known = set(Settings.model_fields)
    flat: dict[str, Any] = {}
    for section in config.values():
        if not isinstance(section, dict):
            continue
        for key, value in section.items():
            if key in known:
                flat[key] = value
    return Settings(**flat)


def _find_section(config: dict, key: str) -> str | None:
    for section, values in config.items():
        if isinstance(values, dict) and key in values:
            return section
    return None


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
