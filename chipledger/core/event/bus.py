"""
EventBus: in-process publish/subscribe for ChipLedger.

Purpose
-------
Decouple the ledger from its secondary effects. The ledger publishes
``ledger.chips_changed`` after a successful mutation; the ranking module
subscribes at LOW priority and recomputes the current snapshots in the
background, with its own error channel. Failed automatic recalculations are
published as ``ranking.recalculation_failed`` for whatever notification
surface is attached.

Responsibilities
----------------
- Subscription management (exact names, glob patterns, one-shot listeners)
- Tiered dispatch through `EventScheduler`
- Listener signature validation at subscription time
- ``drain()`` for shutdown and tests to await background listeners

Non-Responsibilities
--------------------
- Persistence or replay of events
- Cross-process delivery
"""

from __future__ import annotations

import inspect
from typing import Any, List, Optional

from chipledger.core.config.manager import ConfigManager
from chipledger.core.event.registry import ListenerRegistry
from chipledger.core.event.scheduler import EventScheduler
from chipledger.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from chipledger.core.logging.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LISTENER_TIMEOUT = 5.0


class EventBus:
    """
    All methods must be called from the event loop that publishes.

    Timeouts for CRITICAL and HIGH listeners resolve as explicit argument,
    then ``core.event.listener_timeout.*`` config, then 5 seconds.
    """

    def __init__(
        self,
        config_manager: Optional[type[ConfigManager]] = None,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._config_manager = config_manager
        self._registry = ListenerRegistry()
        self._scheduler = EventScheduler(logger)
        self._critical_timeout = self._timeout("critical", critical_timeout_seconds)
        self._high_timeout = self._timeout("high", high_timeout_seconds)

    def _timeout(self, tier: str, override: Optional[float]) -> float:
        if override is not None:
            return float(override)
        if self._config_manager is None:
            return DEFAULT_LISTENER_TIMEOUT
        key = f"core.event.listener_timeout.{tier}_seconds"
        value = self._config_manager.get(key, DEFAULT_LISTENER_TIMEOUT)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid listener timeout in config, using default",
                extra={"config_key": key, "value": value},
            )
            return DEFAULT_LISTENER_TIMEOUT

    # ========================================================================
    # SUBSCRIPTION
    # ========================================================================

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
        allow_duplicates: bool = False,
    ) -> str:
        """
        Subscribe ``callback(payload)`` to an event name or glob pattern and
        return the listener identifier for `unsubscribe`.

        Raises:
            ValueError: If the callback does not take exactly one argument
        """
        _check_signature(callback)
        listener = EventListener.build(event_name, callback, priority, identifier, once)

        if self._registry.add(event_name, listener, allow_duplicates=allow_duplicates):
            logger.debug(
                "Event listener subscribed",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": priority.name,
                },
            )
        else:
            logger.warning(
                "Duplicate event listener ignored",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        return self._registry.remove(event_name, identifier)

    def clear(self) -> None:
        removed = self._registry.clear()
        logger.info("Event listeners cleared", extra={"removed": removed})

    # ========================================================================
    # PUBLISH
    # ========================================================================

    async def publish(self, event_name: str, data: EventPayload) -> List[Any]:
        """
        Returns the results of CRITICAL, HIGH and NORMAL listeners. LOW
        listeners are scheduled and not awaited.
        """
        listeners = self._registry.take_for_event(event_name)
        if not listeners:
            return []

        logger.debug(
            "Publishing event",
            extra={
                "event_name": event_name,
                "listener_count": len(listeners),
                "payload_keys": sorted(data),
            },
        )
        return await self._scheduler.execute(
            event_name,
            data,
            listeners,
            critical_timeout=self._critical_timeout,
            high_timeout=self._high_timeout,
        )

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Await in-flight LOW listeners. Returns how many finished."""
        return await self._scheduler.drain(timeout=timeout)

    async def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        await self.drain(timeout=timeout)
        cancelled = await self._scheduler.cancel_background()
        if cancelled:
            logger.warning(
                "Background event listeners cancelled on shutdown",
                extra={"cancelled": cancelled},
            )
        self.clear()

    # ========================================================================
    # INTROSPECTION
    # ========================================================================

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name:
            return self._registry.count_for_event(event_name)
        return self._registry.total()

    def get_background_task_count(self) -> int:
        return self._scheduler.background_count

    def get_all_events(self) -> List[str]:
        return self._registry.keys()


def _check_signature(callback: CallbackType) -> None:
    try:
        params = inspect.signature(callback).parameters
    except (TypeError, ValueError):
        return
    if len(params) != 1:
        name = getattr(callback, "__qualname__", None) or repr(callback)
        raise ValueError(
            f"Event listener '{name}' must accept exactly one payload argument, "
            f"got {len(params)}"
        )
