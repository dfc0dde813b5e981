"""
Configuration management for docsync

Handles loading, validation, environment overrides and saving.
"""

from .loader import ConfigurationLoader
from .defaults import DEFAULT_SETTINGS, ENV_VAR_MAPPING

__all__ = ["ConfigurationLoader", "DEFAULT_SETTINGS", "ENV_VAR_MAPPING"]
