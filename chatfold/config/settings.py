from __future__ import annotations

"""
Pydantic-based configuration settings for Chatfold
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, validator

ENV_PREFIX = "CHATFOLD_"
ENV_NESTED_DELIMITER = "__"
CONFIG_PATH_ENV = "CHATFOLD_CONFIG_PATH"
ENV_ALIASES = {
    "CHATFOLD_DATABASE_URL": "storage__database_url",
    "CHATFOLD_LOG_LEVEL": "logging__level",
    "CHATFOLD_DEFAULT_NAMESPACE": "identity__default_namespace",
}


class LogLevel(str, Enum):
    """Logging levels"""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageBackendType(str, Enum):
    """Persistence substrates shipped with Chatfold."""

    MEMORY = "memory"
    SQLALCHEMY = "sqlalchemy"


class LoggingSettings(BaseModel):
    """Logging configuration settings"""

    level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        description="Log message format",
    )
    log_to_file: bool = Field(default=False, description="Enable logging to file")
    log_file_path: str = Field(
        default="logs/chatfold.log", description="Log file path"
    )
    log_rotation: str = Field(default="10 MB", description="Log rotation size")
    log_retention: str = Field(default="30 days", description="Log retention period")
    log_compression: str = Field(default="gz", description="Log compression format")
    structured_logging: bool = Field(
        default=False, description="Enable structured JSON logging"
    )

    @validator("level", pre=True)
    def _normalize_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class StorageSettings(BaseModel):
    """Persistence substrate configuration"""

    backend: StorageBackendType = Field(
        default=StorageBackendType.MEMORY,
        description="Key-value backend holding projects and associations",
    )
    database_url: str = Field(
        default="sqlite:///chatfold.db",
        description="SQLAlchemy URL used by the 'sqlalchemy' backend",
    )
    key_prefix: str = Field(
        default="gcm_", description="Prefix applied to every persisted key"
    )
    quota_bytes: int | None = Field(
        default=102400,
        ge=1,
        description="Total capacity of the key-value store (None disables the limit)",
    )
    item_quota_bytes: int | None = Field(
        default=8192,
        ge=1,
        description="Capacity of a single stored item (None disables the limit)",
    )

    @validator("backend", pre=True)
    def _normalize_backend(cls, value: Any) -> StorageBackendType:
        if isinstance(value, StorageBackendType):
            return value
        if isinstance(value, str) and value.strip():
            normalized = value.strip().lower()
            for member in StorageBackendType:
                if normalized == member.value:
                    return member
            if normalized in {"inmemory", "in-memory"}:
                return StorageBackendType.MEMORY
            if normalized in {"sql", "sqlite", "database"}:
                return StorageBackendType.SQLALCHEMY
        return StorageBackendType.MEMORY

    @validator("database_url")
    def _validate_database_url(cls, value: str) -> str:
        stripped = (value or "").strip()
        return stripped or "sqlite:///chatfold.db"

    @validator("key_prefix")
    def _validate_key_prefix(cls, value: str) -> str:
        if value is None:
            return "gcm_"
        return value.strip()


class IdentitySettings(BaseModel):
    """Namespace and title heuristics"""

    default_namespace: str = Field(
        default="default",
        description="Namespace used when the active identity cannot be detected",
    )
    extra_placeholder_titles: list[str] = Field(
        default_factory=list,
        description="Additional host UI labels that must never be stored as titles",
    )

    @validator("default_namespace")
    def _validate_default_namespace(cls, value: str) -> str:
        cleaned = (value or "").strip()
        return cleaned or "default"

    @validator("extra_placeholder_titles", pre=True)
    def _coerce_titles(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, (list, tuple, set)):
            items = list(value)
        else:
            raise TypeError("extra_placeholder_titles must be a string or a list")
        return [str(item).strip().lower() for item in items if str(item).strip()]


class ReconcileSettings(BaseModel):
    """Timing of the reconciliation loop and its periodic helpers"""

    scan_debounce_ms: int = Field(
        default=300, ge=0, description="Quiescence window before a re-scan"
    )
    render_debounce_ms: int = Field(
        default=200, ge=0, description="Quiescence window before a re-render"
    )
    hover_retry_ms: int = Field(
        default=150,
        gt=0,
        description="Retry interval while the pointer rests on the project widget",
    )
    settle_delay_ms: int = Field(
        default=150,
        ge=0,
        description=(
            "Delay before an auto-assignment is committed so the host application"
            " can finish populating the conversation title"
        ),
    )
    seed_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Delay before the known-conversation set is seeded at startup",
    )
    title_sync_interval_s: float = Field(
        default=3.0, gt=0, description="Interval between title refreshes"
    )
    namespace_check_interval_s: float = Field(
        default=2.0,
        ge=0,
        description="Minimum interval between two namespace detections",
    )
    auto_assign_enabled: bool = Field(
        default=True,
        description="File new conversations created under a linked context automatically",
    )


class ChatfoldSettings(BaseModel):
    """Main Chatfold configuration"""

    version: str = Field(default="1.0.0", description="Configuration version")
    verbose: bool = Field(
        default=False, description="Enable verbose logging (loguru only)"
    )

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    reconcile: ReconcileSettings = Field(default_factory=ReconcileSettings)

    @classmethod
    def _collect_env_data(cls) -> tuple[dict[str, Any], set[str]]:
        """Return environment driven configuration data and the originating keys."""

        prefix = ENV_PREFIX.lower()
        alias_mapping = {alias.lower(): target for alias, target in ENV_ALIASES.items()}

        def _split_path(path: str) -> list[str]:
            if ENV_NESTED_DELIMITER in path:
                parts = path.split(ENV_NESTED_DELIMITER)
            else:
                parts = [path]
            return [part for part in parts if part]

        def _assign(data: dict[str, Any], keys: list[str], value: Any) -> None:
            current = data
            for part in keys[:-1]:
                if part not in current or not isinstance(current[part], dict):
                    current[part] = {}
                current = current[part]
            current[keys[-1]] = value

        env_data: dict[str, Any] = {}
        used_keys: set[str] = set()

        for env_key, env_value in os.environ.items():
            compare_key = env_key.lower()

            if compare_key in alias_mapping:
                parts = _split_path(alias_mapping[compare_key])
                if parts:
                    _assign(env_data, parts, env_value)
                    used_keys.add(env_key)
                continue

            if not compare_key.startswith(prefix) or compare_key == CONFIG_PATH_ENV.lower():
                continue
            parts = _split_path(compare_key[len(prefix) :])
            if not parts:
                continue
            _assign(env_data, parts, env_value)
            used_keys.add(env_key)

        return env_data, used_keys

    @classmethod
    def from_env(cls) -> "ChatfoldSettings":
        """Create settings from environment variables"""

        env_data, _ = cls._collect_env_data()
        return cls(**env_data)

    @classmethod
    def from_env_with_metadata(cls) -> tuple["ChatfoldSettings", set[str]]:
        """Return settings from the environment along with the keys that were used."""

        env_data, used_keys = cls._collect_env_data()
        return cls(**env_data), used_keys

    @classmethod
    def from_file(cls, config_path: str | Path) -> "ChatfoldSettings":
        """Load settings from JSON/YAML file"""

        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            if config_path.suffix.lower() == ".json":
                data = json.load(f)
            elif config_path.suffix.lower() in [".yml", ".yaml"]:
                import yaml

                data = yaml.safe_load(f)
            else:
                raise ValueError(
                    f"Unsupported configuration file format: {config_path.suffix}"
                )

        return cls(**(data or {}))

    def to_file(self, config_path: str | Path, format: str = "json") -> None:
        """Save settings to file"""

        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = json.loads(json.dumps(self.export(), default=str))

        with open(config_path, "w") as f:
            if format.lower() == "json":
                json.dump(data, f, indent=2)
            elif format.lower() in ["yml", "yaml"]:
                import yaml

                yaml.safe_dump(data, f, default_flow_style=False)
            else:
                raise ValueError(f"Unsupported format: {format}")

    def export(self) -> dict[str, Any]:
        """Return a serialisable representation of the settings."""

        return self.model_dump(mode="json")


__all__ = [
    "ChatfoldSettings",
    "IdentitySettings",
    "LogLevel",
    "LoggingSettings",
    "ReconcileSettings",
    "StorageBackendType",
    "StorageSettings",
]
