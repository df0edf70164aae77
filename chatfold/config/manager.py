"""
Configuration manager for Chatfold
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from loguru import logger

from ..utils.exceptions import ConfigurationError
from .settings import CONFIG_PATH_ENV, ChatfoldSettings


class ConfigManager:
    """Central configuration manager for Chatfold"""

    _instance: ConfigManager | None = None
    _settings: ChatfoldSettings | None = None

    def __new__(cls) -> ConfigManager:
        """Singleton pattern for configuration manager"""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize configuration manager"""
        if not hasattr(self, "_initialized"):
            self._initialized = True
            self._config_sources: list[str] = []
            self._loaded_config_path: str | None = None
            self._env_overrides: list[str] = []
            self._load_default_config()

    def _load_default_config(self) -> None:
        """Load default configuration"""
        try:
            self._settings = ChatfoldSettings()
            self._config_sources.append("defaults")
            self._env_overrides = []
            logger.debug("Loaded default configuration")
        except Exception as e:
            raise ConfigurationError(f"Failed to load default configuration: {e}")

    def load_from_env(self) -> None:
        """Load configuration from environment variables"""
        try:
            settings, used_keys = ChatfoldSettings.from_env_with_metadata()
        except Exception as e:
            logger.warning(f"Failed to load configuration from environment: {e}")
            raise ConfigurationError(f"Environment configuration error: {e}")

        self._settings = settings
        if used_keys:
            if "environment" not in self._config_sources:
                self._config_sources.append("environment")
            self._env_overrides = sorted(used_keys)
            logger.info(
                "Configuration loaded from environment variables: {}",
                ", ".join(self._env_overrides),
            )
        else:
            self._env_overrides = []
            logger.info(
                "Environment load requested but no CHATFOLD_* variables were set"
            )

    def load_from_file(self, config_path: str | Path) -> None:
        """Load configuration from file"""
        config_path = Path(config_path)
        try:
            self._settings = ChatfoldSettings.from_file(config_path)
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {config_path}")
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        except Exception as e:
            logger.error(f"Failed to load configuration from file {config_path}: {e}")
            raise ConfigurationError(f"File configuration error: {e}")

        self._config_sources.append(str(config_path))
        self._loaded_config_path = str(config_path)
        logger.info(f"Configuration loaded from file: {config_path}")

    def auto_load(self) -> None:
        """Automatically load configuration from multiple sources in priority order"""
        self._env_overrides = []
        config_locations = [
            os.getenv(CONFIG_PATH_ENV),
            "chatfold.json",
            "chatfold.yaml",
            "chatfold.yml",
            "config/chatfold.json",
            "config/chatfold.yaml",
            Path.home() / ".chatfold" / "config.json",
            Path.home() / ".chatfold" / "config.yaml",
        ]

        for config_path in config_locations:
            if config_path and Path(config_path).exists():
                try:
                    self.load_from_file(config_path)
                    break
                except ConfigurationError:
                    continue

        try:
            env_settings, used_keys = ChatfoldSettings.from_env_with_metadata()
        except Exception as e:
            logger.warning(f"Failed to parse environment configuration: {e}")
            return

        if not used_keys:
            return

        self._merge_settings(env_settings, ChatfoldSettings._collect_env_data()[0])
        if "environment" not in self._config_sources:
            self._config_sources.append("environment")
        self._env_overrides = sorted(used_keys)
        logger.info(
            "Environment variables merged into configuration: {}",
            ", ".join(self._env_overrides),
        )

    def _merge_settings(
        self, new_settings: ChatfoldSettings, overrides: dict[str, Any]
    ) -> None:
        """Overlay only the explicitly provided ``overrides`` onto current settings"""
        if self._settings is None:
            self._settings = new_settings
            return

        merged = self._deep_merge_dicts(self._settings.export(), overrides)
        try:
            self._settings = ChatfoldSettings(**merged)
        except Exception as e:
            logger.warning(f"Failed to merge environment configuration: {e}")

    def _deep_merge_dicts(
        self, base: dict[str, Any], override: dict[str, Any]
    ) -> dict[str, Any]:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge_dicts(result[key], value)
            else:
                result[key] = value

        return result

    def get_settings(self) -> ChatfoldSettings:
        """Return the active settings, loading defaults if necessary"""
        if self._settings is None:
            self._load_default_config()
        return self._settings  # type: ignore[return-value]

    def get_config_info(self) -> dict[str, Any]:
        """Describe where the active configuration came from"""
        return {
            "sources": list(self._config_sources),
            "config_path": self._loaded_config_path,
            "env_overrides": list(self._env_overrides),
        }

    def reset_to_defaults(self) -> None:
        """Reset configuration to defaults"""
        self._settings = ChatfoldSettings()
        self._config_sources = ["defaults"]
        self._loaded_config_path = None
        self._env_overrides = []
        logger.info("Configuration reset to defaults")

    def setup_logging(self) -> None:
        """Setup logging based on current configuration"""
        if self._settings is None:
            raise ConfigurationError("Configuration not loaded")

        try:
            from ..utils.logging import LoggingManager

            LoggingManager.setup_logging(
                self._settings.logging, verbose=self._settings.verbose
            )
        except Exception as e:
            logger.error(f"Failed to setup logging: {e}")
            raise ConfigurationError(f"Logging setup error: {e}")

    @classmethod
    def get_instance(cls) -> ConfigManager:
        """Get singleton instance"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance
