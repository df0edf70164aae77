"""Namespace-scoped store of projects and conversation associations.

The store owns the in-memory copy of one namespace's projects and
associations. Every mutation performs its read-modify-write and the
persisted write-back while holding a single :class:`asyncio.Lock`, so two
concurrent mutations never interleave. Mutations are refused until
:meth:`AssociationStore.load` has completed, and for good once the owning
session closes the store.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from loguru import logger

from ..identity.namespace import DEFAULT_NAMESPACE
from ..identity.normalizer import normalize_all, normalize_id
from ..utils.exceptions import (
    ProjectNotFoundError,
    SessionClosedError,
    StoreNotReadyError,
    ValidationError,
)
from .base import CHAT_MAPPINGS_KEY, PROJECTS_KEY, NamespacedStorage
from .migration import migrate_legacy_keys
from .models import (
    Association,
    Project,
    generate_project_id,
    is_placeholder_title,
    now_ms,
    prune_associations,
)


class AssociationStore:
    """In-memory projects and associations backed by namespaced storage."""

    def __init__(
        self,
        storage: NamespacedStorage,
        *,
        extra_placeholder_titles: Iterable[str] = (),
        default_namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self._storage = storage
        self._extra_placeholders = tuple(
            title.strip().lower() for title in extra_placeholder_titles if title
        )
        self._default_namespace = default_namespace
        self._lock = asyncio.Lock()
        self._projects: list[Project] = []
        self._associations: dict[str, Association] = {}
        self.namespace: str | None = None
        self._initialized = False
        self._closed = False

    @property
    def storage(self) -> NamespacedStorage:
        return self._storage

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    async def load(self, namespace: str) -> None:
        """Load, normalize and prune the data persisted for ``namespace``.

        Associations that reference an unknown project or carry a
        placeholder title are dropped, and the surviving set is written back
        immediately whenever pruning or normalization changed it.
        """

        if self._closed:
            raise SessionClosedError("Association store has been closed")
        if self._initialized and namespace != self.namespace:
            raise ValidationError(
                "An association store is bound to one namespace; open a new session",
                context={"loaded": self.namespace, "requested": namespace},
            )

        async with self._lock:
            await migrate_legacy_keys(
                self._storage, namespace, default_namespace=self._default_namespace
            )
            raw_projects, projects_read = await self._storage.read_namespaced_value(
                namespace, PROJECTS_KEY, []
            )
            raw_mappings, mappings_read = await self._storage.read_namespaced_value(
                namespace, CHAT_MAPPINGS_KEY, {}
            )

            projects = self._parse_projects(raw_projects)
            parsed: dict[str, Association] = {}
            malformed = 0
            mappings = raw_mappings if isinstance(raw_mappings, dict) else {}
            for chat_id, payload in normalize_all(mappings).items():
                association = Association.from_dict(payload)
                if association is None:
                    malformed += 1
                    continue
                parsed[chat_id] = association

            if projects_read:
                kept, removed = prune_associations(
                    parsed, {project.id for project in projects}, self._extra_placeholders
                )
            else:
                # Without the project list every association would look dangling.
                logger.warning(
                    "Projects of namespace '{}' could not be read; keeping stored associations",
                    namespace,
                )
                kept, removed = parsed, []
                malformed = 0
            if removed or malformed:
                logger.info(
                    "Pruned {} invalid association(s) from namespace '{}'",
                    len(removed) + malformed,
                    namespace,
                )

            self.namespace = namespace
            self._projects = projects
            self._associations = kept
            self._initialized = True
            self._renumber()

            if projects_read and mappings_read:
                if [p.to_dict() for p in self._projects] != raw_projects:
                    await self._persist_projects()
                if self._serialize_associations() != raw_mappings:
                    await self._persist_associations()

        logger.debug(
            "Loaded {} project(s) and {} association(s) for namespace '{}'",
            len(self._projects),
            len(self._associations),
            namespace,
        )

    @staticmethod
    def _parse_projects(raw: Any) -> list[Project]:
        if not isinstance(raw, list):
            return []
        projects: list[Project] = []
        seen: set[str] = set()
        for payload in raw:
            if not isinstance(payload, dict):
                continue
            project = Project.from_dict(payload)
            if project is None or project.id in seen:
                continue
            seen.add(project.id)
            projects.append(project)
        projects.sort(key=lambda project: project.order)
        return projects

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------
    async def add(self, chat_id: str, project_id: str, title: str) -> Association:
        """File ``chat_id`` into ``project_id``.

        Re-filing overwrites the project and title but keeps ``added_at``.
        """

        canonical = self._require_id(chat_id)
        clean_title = " ".join((title or "").split())
        if not clean_title or is_placeholder_title(clean_title, self._extra_placeholders):
            raise ValidationError(
                "Conversation title is empty or a placeholder",
                context={"chat_id": canonical, "title": title},
            )

        async with self._lock:
            self._ensure_ready()
            self._require_project(project_id)
            existing = self._associations.get(canonical)
            association = Association(
                project_id=project_id,
                title=clean_title,
                added_at=existing.added_at if existing else now_ms(),
            )
            self._associations[canonical] = association
            await self._persist_associations()
        return replace(association)

    async def remove(self, chat_id: str) -> bool:
        """Unfile ``chat_id``; returns ``False`` when it was not filed."""

        canonical = normalize_id(chat_id)
        async with self._lock:
            self._ensure_ready()
            if canonical is None or canonical not in self._associations:
                return False
            del self._associations[canonical]
            await self._persist_associations()
        return True

    async def update_title(self, chat_id: str, title: str) -> bool:
        """Refresh the stored title; ``True`` only when it actually changed."""

        canonical = normalize_id(chat_id)
        clean_title = " ".join((title or "").split())
        if not clean_title or is_placeholder_title(clean_title, self._extra_placeholders):
            return False
        async with self._lock:
            self._ensure_ready()
            association = self._associations.get(canonical) if canonical else None
            if association is None or association.title == clean_title:
                return False
            association.title = clean_title
            await self._persist_associations()
        return True

    async def prune_invalid(
        self, valid_project_ids: Iterable[str] | None = None
    ) -> list[str]:
        """Drop associations whose project is not in ``valid_project_ids``.

        Defaults to the ids of the currently known projects. Returns the
        removed conversation ids.
        """

        async with self._lock:
            self._ensure_ready()
            valid = (
                set(valid_project_ids)
                if valid_project_ids is not None
                else {project.id for project in self._projects}
            )
            kept, removed = prune_associations(
                self._associations, valid, self._extra_placeholders
            )
            if removed:
                self._associations = kept
                await self._persist_associations()
                logger.info("Pruned {} association(s)", len(removed))
        return sorted(removed)

    def get(self, chat_id: str) -> Association | None:
        canonical = normalize_id(chat_id)
        association = self._associations.get(canonical) if canonical else None
        return replace(association) if association else None

    def is_associated(self, chat_id: str | None) -> bool:
        canonical = normalize_id(chat_id)
        return canonical is not None and canonical in self._associations

    def associated_ids(self) -> frozenset[str]:
        """Snapshot of every associated conversation id."""

        return frozenset(self._associations)

    def associations(self) -> dict[str, Association]:
        return {chat_id: replace(a) for chat_id, a in self._associations.items()}

    def list_by_project(self, project_id: str) -> list[tuple[str, Association]]:
        """Associations filed into ``project_id``, newest first."""

        rows = [
            (chat_id, replace(association))
            for chat_id, association in self._associations.items()
            if association.project_id == project_id
        ]
        rows.sort(key=lambda row: row[1].added_at, reverse=True)
        return rows

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------
    def list_projects(self) -> list[Project]:
        return [replace(project) for project in self._projects]

    def get_project(self, project_id: str) -> Project | None:
        for project in self._projects:
            if project.id == project_id:
                return replace(project)
        return None

    def project_for_context(self, context_id: str | None) -> Project | None:
        """Return the project linked to ``context_id``, if any."""

        if not context_id:
            return None
        for project in self._projects:
            if project.linked_context_id == context_id:
                return replace(project)
        return None

    async def create_project(self, name: str) -> Project:
        clean_name = self._require_name(name)
        async with self._lock:
            self._ensure_ready()
            project = Project(
                id=generate_project_id({p.id for p in self._projects}),
                name=clean_name,
                order=len(self._projects),
                created_at=now_ms(),
            )
            self._projects.append(project)
            await self._persist_projects()
        logger.info("Created project '{}' ({})", clean_name, project.id)
        return replace(project)

    async def rename_project(self, project_id: str, name: str) -> Project:
        clean_name = self._require_name(name)
        async with self._lock:
            self._ensure_ready()
            project = self._require_project(project_id)
            project.name = clean_name
            await self._persist_projects()
        return replace(project)

    async def delete_project(self, project_id: str) -> list[str]:
        """Delete a project and unfile every conversation filed into it."""

        async with self._lock:
            self._ensure_ready()
            project = self._require_project(project_id)
            self._projects.remove(project)
            self._renumber()
            unfiled = sorted(
                chat_id
                for chat_id, association in self._associations.items()
                if association.project_id == project_id
            )
            for chat_id in unfiled:
                del self._associations[chat_id]
            await self._persist_projects()
            if unfiled:
                await self._persist_associations()
        logger.info(
            "Deleted project {} and unfiled {} conversation(s)", project_id, len(unfiled)
        )
        return unfiled

    async def link_project_to_context(
        self, project_id: str, context_id: str, context_name: str | None = None
    ) -> Project:
        """Link a project to an external context; a context has one project."""

        if not isinstance(context_id, str) or not context_id.strip():
            raise ValidationError("Context id must not be empty")
        context_id = context_id.strip()
        async with self._lock:
            self._ensure_ready()
            project = self._require_project(project_id)
            for other in self._projects:
                if other is not project and other.linked_context_id == context_id:
                    other.linked_context_id = None
                    other.linked_context_name = None
            project.linked_context_id = context_id
            project.linked_context_name = (context_name or "").strip() or None
            await self._persist_projects()
        return replace(project)

    async def unlink_project(self, project_id: str) -> Project:
        async with self._lock:
            self._ensure_ready()
            project = self._require_project(project_id)
            project.linked_context_id = None
            project.linked_context_name = None
            await self._persist_projects()
        return replace(project)

    async def set_project_expanded(self, project_id: str, expanded: bool) -> Project:
        async with self._lock:
            self._ensure_ready()
            project = self._require_project(project_id)
            if project.is_expanded != bool(expanded):
                project.is_expanded = bool(expanded)
                await self._persist_projects()
        return replace(project)

    async def move_project(self, project_id: str, new_index: int) -> list[Project]:
        """Move a project to ``new_index`` (clamped) and renumber ``order``."""

        async with self._lock:
            self._ensure_ready()
            project = self._require_project(project_id)
            self._projects.remove(project)
            index = max(0, min(int(new_index), len(self._projects)))
            self._projects.insert(index, project)
            self._renumber()
            await self._persist_projects()
        return self.list_projects()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Refuse every further mutation; in-memory state is discarded."""

        self._closed = True
        self._projects = []
        self._associations = {}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _ensure_ready(self) -> None:
        if self._closed:
            raise SessionClosedError(
                "Association store has been closed",
                context={"namespace": self.namespace},
            )
        if not self._initialized:
            raise StoreNotReadyError("Association store has not been loaded yet")

    def _require_project(self, project_id: str) -> Project:
        for project in self._projects:
            if project.id == project_id:
                return project
        raise ProjectNotFoundError(project_id)

    @staticmethod
    def _require_id(chat_id: str) -> str:
        canonical = normalize_id(chat_id)
        if canonical is None:
            raise ValidationError("Conversation id must not be empty")
        return canonical

    @staticmethod
    def _require_name(name: str) -> str:
        clean_name = (name or "").strip() if isinstance(name, str) else ""
        if not clean_name:
            raise ValidationError("Project name must not be empty")
        return clean_name

    def _renumber(self) -> None:
        for index, project in enumerate(self._projects):
            project.order = index

    def _serialize_associations(self) -> dict[str, Any]:
        return {
            chat_id: association.to_dict()
            for chat_id, association in self._associations.items()
        }

    async def _persist_projects(self) -> bool:
        return await self._storage.set_namespaced_value(
            self.namespace, PROJECTS_KEY, [p.to_dict() for p in self._projects]
        )

    async def _persist_associations(self) -> bool:
        return await self._storage.set_namespaced_value(
            self.namespace, CHAT_MAPPINGS_KEY, self._serialize_associations()
        )


__all__ = ["AssociationStore"]
