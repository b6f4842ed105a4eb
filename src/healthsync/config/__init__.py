"""
Configuration loading and resolution.
"""

from healthsync.config.loader import CONFIG_FILENAME, Config, load_config
from healthsync.config.resolver import resolve_config

__all__ = ["CONFIG_FILENAME", "Config", "load_config", "resolve_config"]
