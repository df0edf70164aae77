"""
Chatfold - file conversations of a third-party chat application into projects

Chatfold keeps a per-account mapping from conversation ids to user-defined
projects and continuously reconciles it with the conversation list the host
application renders, hiding filed conversations from the native list and
auto-filing new conversations started from a linked Gem.
"""

__version__ = "0.3.0"
__author__ = "Chatfold Contributors"

from .config.manager import ConfigManager
from .config.settings import ChatfoldSettings
from .core.engine import ChatfoldEngine
from .identity.extractor import RecordNode, extract_id, extract_title
from .identity.normalizer import normalize_all, normalize_id
from .storage.association_store import AssociationStore
from .storage.models import Association, Project
from .utils.exceptions import (
    ChatfoldError,
    ConfigurationError,
    ProjectNotFoundError,
    SessionClosedError,
    StorageError,
    StoreNotReadyError,
    ValidationError,
)

__all__ = [
    "Association",
    "AssociationStore",
    "ChatfoldEngine",
    "ChatfoldError",
    "ChatfoldSettings",
    "ConfigManager",
    "ConfigurationError",
    "Project",
    "ProjectNotFoundError",
    "RecordNode",
    "SessionClosedError",
    "StorageError",
    "StoreNotReadyError",
    "ValidationError",
    "__version__",
    "extract_id",
    "extract_title",
    "normalize_all",
    "normalize_id",
]
