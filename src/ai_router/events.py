"""
ai-router: Observer-style event notifications.

The router and usage tracker publish events; consumers subscribe with
plain callables or coroutine functions. Listeners cannot block or veto
routing: their exceptions are logged and dropped, and coroutine listeners
run as independent tasks.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

INITIALIZED = "initialized"
RESPONSE_GENERATED = "response_generated"
BUDGET_ALERT = "budget_alert"
PROVIDER_SWITCHED = "provider_switched"
USAGE_TRACKED = "usage_tracked"

EventCallback = Callable[[Any], Any]


class EventEmitter:
    """Minimal publish/subscribe hub.

    Example::

        events = EventEmitter()
        events.on(BUDGET_ALERT, lambda alert: print(alert.percentage_used))
        events.emit(BUDGET_ALERT, alert)
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventCallback]] = defaultdict(list)
        self._tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, callback: EventCallback) -> EventCallback:
        """Subscribe ``callback`` to ``event``. Returns the callback."""
        self._listeners[event].append(callback)
        return callback

    def off(self, event: str, callback: EventCallback) -> bool:
        """Unsubscribe. Returns False if the callback was not subscribed."""
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)
            return True
        return False

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, payload: Any = None) -> int:
        """Notify every listener of ``event``.

        Returns:
            Number of listeners notified.
        """
        listeners = list(self._listeners.get(event, []))
        for callback in listeners:
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                logger.warning(f"Listener for '{event}' raised: {e}")
        return len(listeners)

    def _schedule(self, event: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                f"Async listener for '{event}' dropped: no running event loop"
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._run_listener(event, awaitable))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _run_listener(event: str, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.warning(f"Async listener for '{event}' raised: {e}")
