"""Runtime helpers to access the event bus singleton."""

from __future__ import annotations

import logging
from typing import Optional

from .core.event import Event
from .core.event_bus import EventBus
from .core.exceptions import HandlerExecutionError

logger = logging.getLogger(__name__)

_event_bus: Optional[EventBus] = None


def set_event_bus(event_bus: Optional[EventBus]) -> None:
    global _event_bus
    _event_bus = event_bus


def get_event_bus() -> EventBus:
    if _event_bus is None:
        raise RuntimeError("EventBus has not been initialised")
    return _event_bus


async def publish_safely(event_bus: Optional[EventBus], event: Event) -> None:
    """
    Publish an event without letting handler failures reach the caller.

    Shipment flows never fail because a listener did: errors are logged.
    """
    if event_bus is None:
        return
    logger.debug(f"[RUNTIME] publish {event.event_type}, data={event.data}")
    try:
        await event_bus.publish(event)
    except HandlerExecutionError as e:
        logger.warning(f"{len(e.failures)} handler(s) failed for event {event.event_type}: {e}")
