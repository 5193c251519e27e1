"""
In-process event system.

The application context owns the EventBus instance; there is no module-level
singleton.
"""

from .bus import EventBus
from .registry import ListenerRegistry, matches_event
from .types import CallbackType, EventListener, EventPayload, ListenerPriority

__all__ = [
    "EventBus",
    "ListenerRegistry",
    "matches_event",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "CallbackType",
]
