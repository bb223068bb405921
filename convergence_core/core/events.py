"""
In-process event fan-out.

Every subsystem publishes its lifecycle events through an EventEmitter.
Handlers are plain callables or coroutine functions; coroutine handlers
are scheduled on the running loop and tracked until they finish. A handler
registered under "*" receives every event as (event, payload).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Union[None, Awaitable[None]]]

WILDCARD = "*"


class EventEmitter:
    """Observer registration with synchronous and asynchronous handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._once: Set[int] = set()
        self._pending: Set[asyncio.Task] = set()

    def on(self, event: str, handler: EventHandler) -> EventHandler:
        """Register a handler and return it."""
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def once(self, event: str, handler: EventHandler) -> EventHandler:
        self.on(event, handler)
        self._once.add(id(handler))
        return handler

    def off(self, event: str, handler: EventHandler) -> bool:
        handlers = self._handlers.get(event)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        self._once.discard(id(handler))
        if not handlers:
            del self._handlers[event]
        return True

    def listeners(self, event: str) -> List[EventHandler]:
        return list(self._handlers.get(event, []))

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._handlers.clear()
            self._once.clear()
        else:
            self._handlers.pop(event, None)

    def emit(self, event: str, payload: Any = None) -> int:
        """
        Deliver an event to its handlers, then to wildcard handlers.

        Returns the number of handlers invoked. Handler errors are logged
        and never reach the caller.
        """
        invoked = 0
        for handler in self._take(event):
            self._invoke(event, handler, (payload,))
            invoked += 1

        if event != WILDCARD:
            for handler in self._take(WILDCARD):
                self._invoke(event, handler, (event, payload))
                invoked += 1

        return invoked

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _take(self, event: str) -> List[EventHandler]:
        handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            if id(handler) in self._once:
                self.off(event, handler)
        return handlers

    def _invoke(self, event: str, handler: EventHandler, args: tuple) -> None:
        try:
            result = handler(*args)
        except Exception as e:
            logger.error(f"Event handler error for '{event}': {e}")
            return

        if asyncio.iscoroutine(result):
            try:
                task = asyncio.get_running_loop().create_task(result)
            except RuntimeError:
                result.close()
                logger.warning(f"No running loop for async handler of '{event}'")
                return
            self._pending.add(task)
            task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Async event handler error: {exc}")


__all__ = ["EventEmitter", "EventHandler", "WILDCARD"]
