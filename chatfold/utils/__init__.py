"""
Utils package for Chatfold - exceptions and logging helpers
"""

from .exceptions import (
    ChatfoldError,
    ConfigurationError,
    ExceptionHandler,
    ProjectNotFoundError,
    SessionClosedError,
    StorageError,
    StorageQuotaExceededError,
    StorageUnavailableError,
    StoreNotReadyError,
    ValidationError,
)
from .logging import LoggingManager

__all__ = [
    # Exceptions
    "ChatfoldError",
    "ConfigurationError",
    "ValidationError",
    "StorageError",
    "StorageUnavailableError",
    "StorageQuotaExceededError",
    "StoreNotReadyError",
    "SessionClosedError",
    "ProjectNotFoundError",
    "ExceptionHandler",
    # Logging
    "LoggingManager",
]
