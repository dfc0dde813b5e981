"""
Configuration loading and management.

Merges built-in defaults, an optional JSON config file and environment
variable overrides into a validated ServiceConfig.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from docsync.errors import ValidationError
from docsync.models.config import GlobalSettings, ServiceConfig
from .defaults import DEFAULT_CONFIG_FILE, DEFAULT_SETTINGS, ENV_VAR_MAPPING

logger = logging.getLogger(__name__)


class ConfigurationLoader:
    """Load, cache and save service configurations"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()
        self.config_cache: Dict[str, ServiceConfig] = {}

    def resolve_config_file(self, config_file: Optional[Union[str, Path]] = None) -> Optional[Path]:
        """Explicit path first, then DOCSYNC_CONFIG_FILE, then ./docsync.json if present"""
        if config_file:
            return Path(config_file).expanduser().resolve()
        if self.global_settings.config_file:
            return Path(self.global_settings.config_file).expanduser().resolve()

        default = Path.cwd() / DEFAULT_CONFIG_FILE
        return default if default.exists() else None

    def load_config(self, config_file: Optional[Union[str, Path]] = None) -> ServiceConfig:
        """
        Load configuration.

        Raises:
            ValidationError: the config file is unreadable or the merged
                values do not validate
        """
        path = self.resolve_config_file(config_file)

        cache_key = str(path) if path else "<defaults>"
        if cache_key in self.config_cache:
            return self.config_cache[cache_key]

        config_data = copy.deepcopy(DEFAULT_SETTINGS)
        if path is not None:
            self._merge(config_data, self._read_config_file(path))

        config_data = self._apply_env_overrides(config_data)

        try:
            config = ServiceConfig(**config_data)
        except PydanticValidationError as e:
            logger.error(f"Invalid configuration ({cache_key}): {e}")
            raise ValidationError(f"Invalid configuration: {e}", e.errors()) from e

        self.config_cache[cache_key] = config
        return config

    def _read_config_file(self, config_file: Path) -> Dict[str, Any]:
        if not config_file.exists():
            raise ValidationError(f"Config file not found: {config_file}")

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load config from {config_file}: {e}")
            raise ValidationError(f"Cannot read config file {config_file}: {e}") from e

        if not isinstance(data, dict):
            raise ValidationError(f"Config file {config_file} must contain a JSON object")

        logger.debug(f"Loaded configuration from {config_file}")
        return data

    def _merge(self, base: Dict[str, Any], overrides: Dict[str, Any]) -> None:
        """Recursively merge overrides into base in place"""
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                self._merge(base[key], value)
            else:
                base[key] = value

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """
        Normalize an environment string.

        Type coercion is left to the pydantic models, which know the target
        type of every field.
        """
        value = value.strip()
        if value.lower() in ('', 'none', 'null'):
            return None
        return value

    def save_config(self, config: ServiceConfig, config_file: Union[str, Path]) -> bool:
        """Save configuration to disk as JSON; secrets are not written"""
        config_file = Path(config_file)
        try:
            config_file.parent.mkdir(parents=True, exist_ok=True)

            config_data = config.to_dict()
            config_data.get("qdrant", {}).pop("api_key", None)
            config_data.get("embeddings", {}).pop("api_key", None)

            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config_data, f, indent=2, ensure_ascii=False)

            logger.info(f"Saved configuration to {config_file}")
            self.config_cache[str(config_file.resolve())] = config
            return True

        except OSError as e:
            logger.error(f"Failed to save config to {config_file}: {e}")
            return False

    def clear_cache(self) -> None:
        """Clear configuration cache"""
        self.config_cache.clear()
        logger.info("Configuration cache cleared")
