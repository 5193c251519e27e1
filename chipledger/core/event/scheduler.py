"""
Tiered listener execution for the EventBus.

A listener that raises or times out is logged with the event name and its
identifier and contributes ``None`` to the results; it never propagates to
the publisher. LOW listeners are tracked as tasks so they are not garbage
collected mid-flight and so `drain` can wait for them.
"""

from __future__ import annotations

import asyncio
import inspect
from logging import Logger
from typing import Any, List, Optional, Set

from chipledger.core.event.types import EventListener, EventPayload, ListenerPriority


class EventScheduler:
    def __init__(self, logger: Logger) -> None:
        self.log = logger
        self._background: Set[asyncio.Task[Any]] = set()

    async def execute(
        self,
        event_name: str,
        payload: EventPayload,
        listeners: List[EventListener],
        *,
        critical_timeout: Optional[float],
        high_timeout: Optional[float],
    ) -> List[Any]:
        """Returns results of the awaited tiers in dispatch order."""
        timeouts = {
            ListenerPriority.CRITICAL: critical_timeout,
            ListenerPriority.HIGH: high_timeout,
        }
        results: List[Any] = []
        concurrent: List[EventListener] = []
        background: List[EventListener] = []

        for listener in listeners:
            if listener.priority in timeouts:
                results.append(
                    await self._invoke(event_name, payload, listener, timeouts[listener.priority])
                )
            elif listener.priority is ListenerPriority.NORMAL:
                concurrent.append(listener)
            else:
                background.append(listener)

        if concurrent:
            results.extend(
                await asyncio.gather(
                    *(self._invoke(event_name, payload, listener) for listener in concurrent)
                )
            )
        for listener in background:
            self._spawn(event_name, payload, listener)
        return results

    def _spawn(self, event_name: str, payload: EventPayload, listener: EventListener) -> None:
        task = asyncio.get_running_loop().create_task(
            self._invoke(event_name, payload, listener),
            name=f"event:{event_name}:{listener.identifier}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _invoke(
        self,
        event_name: str,
        payload: EventPayload,
        listener: EventListener,
        timeout: Optional[float] = None,
    ) -> Any:
        try:
            if timeout is not None and timeout > 0:
                return await asyncio.wait_for(self._call(listener, payload), timeout)
            return await self._call(listener, payload)
        except asyncio.TimeoutError:
            self.log.error(
                "Event listener timed out",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "timeout_seconds": timeout,
                },
            )
        except Exception as exc:
            self.log.error(
                "Event listener failed",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
        return None

    @staticmethod
    async def _call(listener: EventListener, payload: EventPayload) -> Any:
        if inspect.iscoroutinefunction(listener.callback):
            return await listener.callback(payload)
        # Sync listeners run in the default executor to keep the loop free
        return await asyncio.get_running_loop().run_in_executor(
            None, listener.callback, payload
        )

    @property
    def background_count(self) -> int:
        return len(self._background)

    async def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for in-flight background listeners, including ones they schedule
        while being awaited. Returns how many finished; stops early on timeout.
        """
        finished = 0
        while self._background:
            pending = set(self._background)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            finished += len(done)
            self._background.difference_update(done)
            if not_done:
                break
        return finished

    async def cancel_background(self) -> int:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)
