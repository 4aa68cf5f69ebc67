"""Configuration system for ghe-backup-ng.

This module provides config file discovery, flat ``KEY=value`` parsing,
environment overrides and validation for backup runs.
"""

from ..__util__ import ConfigError
from .loader import config_candidates, find_config_file, load_config
from .schema import Config, ConfigCandidate

__all__ = [
    "Config",
    "ConfigCandidate",
    "ConfigError",
    "config_candidates",
    "find_config_file",
    "load_config",
]
