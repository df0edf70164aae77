"""Keep stored conversation titles in step with the open conversation."""

from __future__ import annotations

import re
from collections.abc import Iterable

from loguru import logger

from ..identity.extractor import id_from_path
from ..storage.association_store import AssociationStore
from ..storage.models import is_placeholder_title
from .collection import HostView

# Host branding and list headers that show up where a title is expected.
_REJECTED_TITLES = frozenset({"gemini", "chats"})
_DOCUMENT_TITLE_SUFFIX = re.compile(r"\s*[-|]\s*gemini.*$", re.IGNORECASE)


def clean_title(title: str | None) -> str:
    """Collapse whitespace; return ``""`` for blank or branding-only text."""

    if not isinstance(title, str):
        return ""
    cleaned = " ".join(title.split())
    if cleaned.lower() in _REJECTED_TITLES:
        return ""
    return cleaned


def title_from_document_title(document_title: str | None) -> str:
    """Strip the trailing `` - Gemini`` suffix from a page title."""

    if not document_title:
        return ""
    return clean_title(_DOCUMENT_TITLE_SUFFIX.sub("", document_title).strip())


def current_title(headings: Iterable[str], document_title: str | None) -> str:
    """First usable heading, falling back to the page title."""

    for heading in headings:
        cleaned = clean_title(heading)
        if cleaned:
            return cleaned
    return title_from_document_title(document_title)


class TitleSync:
    """Copy the visible title of the open conversation into its association."""

    def __init__(
        self,
        store: AssociationStore,
        host_view: HostView,
        *,
        extra_placeholder_titles: Iterable[str] = (),
    ) -> None:
        self._store = store
        self._host_view = host_view
        self._extra_placeholders = tuple(extra_placeholder_titles)

    async def sync_title(self) -> bool:
        """Return ``True`` when a stored title was changed."""

        chat_id = id_from_path(self._host_view.current_path())
        if chat_id is None or not self._store.is_associated(chat_id):
            return False

        title = current_title(
            self._host_view.heading_candidates(), self._host_view.document_title()
        )
        if not title or is_placeholder_title(title, self._extra_placeholders):
            return False

        changed = await self._store.update_title(chat_id, title)
        if changed:
            logger.debug("Synced title of {} to '{}'", chat_id, title)
        return changed


__all__ = ["TitleSync", "clean_title", "current_title", "title_from_document_title"]
