"""Conversation identifiers and identity namespaces."""

from .extractor import (
    RecordNode,
    context_id_from_path,
    extract_id,
    extract_title,
    id_from_path,
    id_from_url,
)
from .namespace import (
    DEFAULT_NAMESPACE,
    NamespaceMonitor,
    namespace_from_labels,
    sanitize_namespace,
)
from .normalizer import (
    CANONICAL_PREFIX,
    MIN_ID_SUFFIX_LENGTH,
    conversation_path,
    is_likely_id,
    normalize_all,
    normalize_id,
)

__all__ = [
    "CANONICAL_PREFIX",
    "DEFAULT_NAMESPACE",
    "MIN_ID_SUFFIX_LENGTH",
    "NamespaceMonitor",
    "RecordNode",
    "context_id_from_path",
    "conversation_path",
    "extract_id",
    "extract_title",
    "id_from_path",
    "id_from_url",
    "is_likely_id",
    "namespace_from_labels",
    "normalize_all",
    "normalize_id",
    "sanitize_namespace",
]
