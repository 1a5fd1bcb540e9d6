"""Configuration module -- exports Settings and the YAML/env loader."""

from src.config.loader import load_config, settings_from_config
from src.config.settings import Settings

__all__ = ["Settings", "load_config", "settings_from_config"]
