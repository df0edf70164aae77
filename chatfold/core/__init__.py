"""Engine and per-namespace session state."""

from .engine import ChatfoldEngine
from .session import SessionContext

__all__ = ["ChatfoldEngine", "SessionContext"]
