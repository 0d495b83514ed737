"""Event system package."""

from .core.event import Event, EventType
from .core.event_bus import EventBus
from .runtime import get_event_bus, publish_safely, set_event_bus

__all__ = ["Event", "EventType", "EventBus", "get_event_bus", "publish_safely", "set_event_bus"]
