"""
Configuration management for Chatfold
"""

from .manager import ConfigManager
from .settings import (
    ChatfoldSettings,
    IdentitySettings,
    LoggingSettings,
    ReconcileSettings,
    StorageBackendType,
    StorageSettings,
)

__all__ = [
    "ChatfoldSettings",
    "ConfigManager",
    "IdentitySettings",
    "LoggingSettings",
    "ReconcileSettings",
    "StorageBackendType",
    "StorageSettings",
]
