"""
Exception hierarchy for Chatfold
"""

from __future__ import annotations

from typing import Any

from loguru import logger as _default_logger


class ChatfoldError(Exception):
    """Base error carrying a machine readable code and structured context."""

    default_code = "CHATFOLD_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.context = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation of the error."""

        payload: dict[str, Any] = {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.context:
            payload["context"] = dict(self.context)
        return payload

    def __str__(self) -> str:
        return self.message


class ConfigurationError(ChatfoldError):
    default_code = "CONFIGURATION_ERROR"


class ValidationError(ChatfoldError):
    default_code = "VALIDATION_ERROR"


class StorageError(ChatfoldError):
    """Raised by storage backends when a read or write cannot be completed."""

    default_code = "STORAGE_ERROR"


class StorageUnavailableError(StorageError):
    """The persistence session is gone (disconnected, closed or invalidated)."""

    default_code = "STORAGE_UNAVAILABLE"


class StorageQuotaExceededError(StorageError):
    default_code = "STORAGE_QUOTA_EXCEEDED"


class StoreNotReadyError(ChatfoldError):
    """A mutation reached the association store before ``load`` completed."""

    default_code = "STORE_NOT_READY"


class SessionClosedError(ChatfoldError):
    """The session that owned this object was discarded by a namespace switch."""

    default_code = "SESSION_CLOSED"


class ProjectNotFoundError(ChatfoldError):
    default_code = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str) -> None:
        super().__init__(
            f"Unknown project: {project_id}",
            context={"project_id": project_id},
        )
        self.project_id = project_id


class ExceptionHandler:
    """Helpers for logging Chatfold errors consistently."""

    @staticmethod
    def log_exception(
        error: BaseException,
        *,
        logger: Any = None,
        level: str = "ERROR",
        message: str | None = None,
    ) -> None:
        """Log ``error`` with structured fields attached to the record."""

        target = logger or _default_logger
        if isinstance(error, ChatfoldError):
            data = error.to_dict()
        else:
            data = {"error_type": type(error).__name__, "message": str(error)}
        target.bind(
            exception_data=data,
            error_type=data["error_type"],
        ).log(level, message or "{}: {}", data["error_type"], data["message"])


__all__ = [
    "ChatfoldError",
    "ConfigurationError",
    "ExceptionHandler",
    "ProjectNotFoundError",
    "SessionClosedError",
    "StorageError",
    "StorageQuotaExceededError",
    "StorageUnavailableError",
    "StoreNotReadyError",
    "ValidationError",
]
