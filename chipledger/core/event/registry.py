"""
Listener storage for the EventBus.

Listeners are kept per subscription key, which is either an exact event name
(``ledger.chips_changed``) or a glob pattern (``ranking.*``, ``*``).
Dispatch order is ``(priority, identifier)`` so it is deterministic. All
mutation happens on one event loop between awaits; there is no lock.
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Dict, Iterator, List, Tuple

from chipledger.core.event.types import EventListener


def matches_event(event_name: str, pattern: str) -> bool:
    """Case-sensitive match; ``*`` spans any characters, dots included."""
    if "*" not in pattern:
        return event_name == pattern
    return fnmatchcase(event_name, pattern)


def _dispatch_order(listener: EventListener) -> Tuple[int, str]:
    return (listener.priority.value, listener.identifier)


class ListenerRegistry:
    def __init__(self) -> None:
        self._by_key: Dict[str, List[EventListener]] = {}

    def add(self, key: str, listener: EventListener, *, allow_duplicates: bool) -> bool:
        """Returns False when an identical identifier is already subscribed."""
        listeners = self._by_key.setdefault(key, [])
        if not allow_duplicates and any(
            existing.identifier == listener.identifier for existing in listeners
        ):
            return False
        listeners.append(listener)
        listeners.sort(key=_dispatch_order)
        return True

    def remove(self, key: str, identifier: str) -> bool:
        listeners = self._by_key.get(key)
        if not listeners:
            return False
        kept = [listener for listener in listeners if listener.identifier != identifier]
        self._set(key, kept)
        return len(kept) < len(listeners)

    def clear(self) -> int:
        total = self.total()
        self._by_key.clear()
        return total

    def take_for_event(self, event_name: str) -> List[EventListener]:
        """
        Collect every listener subscribed to ``event_name`` and unregister the
        one-shot ones in the same pass, so two publishes in flight can never
        both run a ``once`` listener.
        """
        selected: List[EventListener] = []
        for key, listeners in list(self._matching(event_name)):
            selected.extend(listeners)
            if any(listener.once for listener in listeners):
                self._set(key, [listener for listener in listeners if not listener.once])
        selected.sort(key=_dispatch_order)
        return selected

    def count_for_event(self, event_name: str) -> int:
        return sum(len(listeners) for _, listeners in self._matching(event_name))

    def total(self) -> int:
        return sum(len(listeners) for listeners in self._by_key.values())

    def keys(self) -> List[str]:
        return sorted(self._by_key)

    def _matching(self, event_name: str) -> Iterator[Tuple[str, List[EventListener]]]:
        for key, listeners in self._by_key.items():
            if matches_event(event_name, key):
                yield key, listeners

    def _set(self, key: str, listeners: List[EventListener]) -> None:
        if listeners:
            self._by_key[key] = listeners
        else:
            self._by_key.pop(key, None)
