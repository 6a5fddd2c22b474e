"""Event bus: identifier-routed publish/subscribe on a dispatch thread."""

from chunk_ledger.bus.dispatcher import EventBus, HaltReport
from chunk_ledger.bus.events import Event, EventKind

__all__ = ["Event", "EventBus", "EventKind", "HaltReport"]
