"""Observation of the live conversation list and the work driven by it."""

from .collection import (
    CollectionSubscription,
    ForeignCollection,
    HostView,
    LiveRecord,
    NullHostView,
    NullSubscription,
)
from .loop import ReconciliationLoop, ScanResult
from .scheduler import CoalescingScheduler
from .title_sync import TitleSync, clean_title, title_from_document_title

__all__ = [
    "CoalescingScheduler",
    "CollectionSubscription",
    "ForeignCollection",
    "HostView",
    "LiveRecord",
    "NullHostView",
    "NullSubscription",
    "ReconciliationLoop",
    "ScanResult",
    "TitleSync",
    "clean_title",
    "title_from_document_title",
]
