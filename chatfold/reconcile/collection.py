"""Interfaces for the externally owned conversation list and host page."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

from ..identity.extractor import RecordNode

ChangeHandler = Callable[[], None]


class LiveRecord(Protocol):
    """One conversation row currently rendered by the host application."""

    @property
    def descriptor(self) -> RecordNode:
        """Read-only snapshot of the row's markup."""

    @property
    def suppressed(self) -> bool:
        """Whether the row is currently hidden from the native list."""

    def set_suppressed(self, value: bool) -> None:
        """Hide or show the row; the only write the engine ever performs."""


class CollectionSubscription(Protocol):
    """Active subscription returned by :meth:`ForeignCollection.subscribe`."""

    def close(self) -> None:
        """Stop delivering change notifications."""


class ForeignCollection(Protocol):
    """Lazily populated list of conversation rows owned by the host."""

    def records(self) -> Sequence[LiveRecord]:
        """Rows present right now, in display order."""

    def subscribe(self, handler: ChangeHandler) -> CollectionSubscription:
        """Call ``handler`` whenever something in the list changed.

        Notifications are coarse: they carry no description of the change.
        """


class HostView(Protocol):
    """Presentation state of the host page outside the conversation list."""

    def current_path(self) -> str:
        """Path of the page being viewed (e.g. ``/gem/{ctx}/{id}``)."""

    def heading_candidates(self) -> Sequence[str]:
        """Texts of elements that may show the open conversation's title."""

    def document_title(self) -> str | None:
        """The page title."""

    def pointer_inside_widget(self) -> bool:
        """Whether the user's pointer is over the engine-rendered folder list."""


class NullSubscription:
    """Subscription implementation that performs no work."""

    def close(self) -> None:  # pragma: no cover - trivial
        return None


class NullHostView:
    """Host view for headless use: nothing open, pointer never inside."""

    def current_path(self) -> str:
        return "/"

    def heading_candidates(self) -> Sequence[str]:
        return ()

    def document_title(self) -> str | None:
        return None

    def pointer_inside_widget(self) -> bool:
        return False


__all__ = [
    "ChangeHandler",
    "CollectionSubscription",
    "ForeignCollection",
    "HostView",
    "LiveRecord",
    "NullHostView",
    "NullSubscription",
]
