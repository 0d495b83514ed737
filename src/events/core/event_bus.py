"""Asynchronous event bus for shipment notifications."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Union

from .event import Event, EventType, event_key
from .exceptions import HandlerExecutionError, HandlerFailure

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """
    Asynchronous event bus.

    Handlers run in subscription order, concurrently bounded by
    ``max_concurrent_handlers``. A failing handler does not stop the others:
    failures are collected and raised together as HandlerExecutionError.
    """

    def __init__(self, *, max_concurrent_handlers: Optional[int] = None) -> None:
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self._semaphore = (
            asyncio.Semaphore(max_concurrent_handlers)
            if max_concurrent_handlers and max_concurrent_handlers > 0
            else None
        )

    async def subscribe(self, event_type: Union[EventType, str], handler: EventHandler) -> None:
        """Register a handler for the specified event type (once)."""

        if not inspect.iscoroutinefunction(handler):
            raise TypeError("Event handler must be an async function")

        key = event_key(event_type)
        async with self._lock:
            if handler not in self._handlers[key]:
                self._handlers[key].append(handler)
                logger.debug("Handler %s subscribed to event '%s'", handler, key)

    async def unsubscribe(self, event_type: Union[EventType, str], handler: EventHandler) -> None:
        """Remove a handler for the specified event type."""

        key = event_key(event_type)
        async with self._lock:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)
                logger.debug("Handler %s unsubscribed from event '%s'", handler, key)
            if not handlers:
                self._handlers.pop(key, None)

    def handler_count(self, event_type: Union[EventType, str]) -> int:
        return len(self._handlers.get(event_key(event_type), ()))

    async def publish(self, event: Event) -> None:
        """Emit an event to all registered handlers."""

        async with self._lock:
            handlers = list(self._handlers.get(event.event_type, ()))

        if not handlers:
            logger.debug("No handlers registered for event '%s'", event.event_type)
            return

        await self._dispatch(event, handlers)

    async def _dispatch(self, event: Event, handlers: List[EventHandler]) -> None:
        async def _run_handler(handler: EventHandler) -> None:
            if self._semaphore:
                async with self._semaphore:
                    await handler(event)
            else:
                await handler(event)

        results = await asyncio.gather(
            *(_run_handler(handler) for handler in handlers), return_exceptions=True
        )

        failures: List[HandlerFailure] = [
            HandlerFailure(handler=handler, event=event, exception=result)
            for handler, result in zip(handlers, results)
            if isinstance(result, Exception)
        ]

        for failure in failures:
            logger.error(
                "Error while executing handler %s for event '%s'",
                failure.handler,
                failure.event.event_type,
                exc_info=failure.exception,
            )

        error = HandlerExecutionError.merge(failures)
        if error is not None:
            raise error
