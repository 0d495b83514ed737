"""Core components of the event system."""

from .event import Event, EventType
from .event_bus import EventBus
from .exceptions import HandlerExecutionError

__all__ = ["Event", "EventType", "EventBus", "HandlerExecutionError"]
