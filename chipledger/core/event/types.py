"""
EventBus value types.

Priority tiers
--------------
- CRITICAL, HIGH: run one after another, awaited, each under a timeout
- NORMAL: run together, awaited
- LOW: background tasks; the post-mutation ranking recomputation runs here
  so its failures never reach the ledger call that published the event
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

EventPayload = Dict[str, Any]

CallbackType = Union[
    Callable[[EventPayload], Any],
    Callable[[EventPayload], Awaitable[Any]],
]


class ListenerPriority(Enum):
    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


@dataclass(frozen=True, slots=True)
class EventListener:
    callback: CallbackType
    priority: ListenerPriority
    identifier: str
    once: bool = False

    @staticmethod
    def default_identifier(key: str, callback: CallbackType) -> str:
        owner = getattr(callback, "__module__", None) or "unknown"
        name = getattr(callback, "__qualname__", None) or getattr(
            callback, "__name__", type(callback).__name__
        )
        return f"{owner}.{name}@{key}"

    @classmethod
    def build(
        cls,
        key: str,
        callback: CallbackType,
        priority: ListenerPriority,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> "EventListener":
        return cls(
            callback=callback,
            priority=priority,
            identifier=identifier or cls.default_identifier(key, callback),
            once=once,
        )
