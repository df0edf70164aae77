"""Projects, associations and their persisted representation."""

from __future__ import annotations

import secrets
import string
import time
from collections.abc import Container, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

# Labels the host application uses for its own UI; never conversation titles.
PLACEHOLDER_TITLES = frozenset(
    {
        "projects",
        "chats",
        "gemini",
        "recent",
        "starred",
        "untitled",
        "untitled chat",
    }
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""

    return int(time.time() * 1000)


def generate_project_id(existing: Container[str] = ()) -> str:
    """Return a fresh project id that does not collide with ``existing``."""

    while True:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
        candidate = f"p_{now_ms()}_{suffix}"
        if candidate not in existing:
            return candidate


def is_placeholder_title(title: Any, extra: Iterable[str] = ()) -> bool:
    """Whether ``title`` is a host UI label rather than a conversation title."""

    if not isinstance(title, str):
        return False
    lowered = title.strip().lower()
    return lowered in PLACEHOLDER_TITLES or lowered in set(extra)


@dataclass
class Project:
    """A user-defined folder of conversations."""

    id: str
    name: str
    order: int = 0
    created_at: int = 0
    linked_context_id: str | None = None
    linked_context_name: str | None = None
    is_expanded: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialise using the persisted camelCase layout."""

        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "order": self.order,
            "createdAt": self.created_at,
            "isExpanded": self.is_expanded,
        }
        if self.linked_context_id is not None:
            payload["gemId"] = self.linked_context_id
        if self.linked_context_name is not None:
            payload["gemName"] = self.linked_context_name
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Project | None:
        """Rebuild a project; returns ``None`` for entries without an id."""

        project_id = payload.get("id")
        if not isinstance(project_id, str) or not project_id:
            return None
        try:
            order = int(payload.get("order") or 0)
        except (TypeError, ValueError):
            order = 0
        try:
            created_at = int(payload.get("createdAt") or 0)
        except (TypeError, ValueError):
            created_at = 0
        context_id = payload.get("gemId")
        context_name = payload.get("gemName")
        return cls(
            id=project_id,
            name=str(payload.get("name") or ""),
            order=order,
            created_at=created_at,
            linked_context_id=str(context_id) if context_id else None,
            linked_context_name=str(context_name) if context_name else None,
            is_expanded=bool(payload.get("isExpanded", False)),
        )


@dataclass
class Association:
    """Filing of one conversation into a project."""

    project_id: str
    title: str
    added_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectId": self.project_id,
            "title": self.title,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> Association | None:
        """Rebuild an association; returns ``None`` for malformed entries."""

        if not isinstance(payload, Mapping):
            return None
        project_id = payload.get("projectId")
        if not isinstance(project_id, str) or not project_id:
            return None
        title = payload.get("title")
        try:
            added_at = int(payload.get("addedAt") or 0)
        except (TypeError, ValueError):
            added_at = 0
        return cls(
            project_id=project_id,
            title=title if isinstance(title, str) else "",
            added_at=added_at,
        )


def prune_associations(
    associations: Mapping[str, Association],
    valid_project_ids: Container[str],
    extra_placeholders: Iterable[str] = (),
) -> tuple[dict[str, Association], dict[str, Association]]:
    """Split ``associations`` into ``(kept, removed)``.

    An association survives only when its project exists and its title is a
    real title: non-empty and not one of the host UI placeholders.
    """

    extra = tuple(extra_placeholders)
    kept: dict[str, Association] = {}
    removed: dict[str, Association] = {}
    for chat_id, association in associations.items():
        valid_project = association.project_id in valid_project_ids
        valid_title = bool(association.title) and not is_placeholder_title(
            association.title, extra
        )
        if valid_project and valid_title:
            kept[chat_id] = association
        else:
            removed[chat_id] = association
    return kept, removed


__all__ = [
    "Association",
    "PLACEHOLDER_TITLES",
    "Project",
    "generate_project_id",
    "is_placeholder_title",
    "now_ms",
    "prune_associations",
]
