"""Errors raised by the shipment event bus."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from .event import Event


class EventBusError(Exception):
    """Base exception for the event system."""


@dataclass(slots=True)
class HandlerFailure:
    """A listener that raised while reacting to a shipment event."""

    handler: Callable[[Event], Any]
    event: Event
    exception: Exception

    @property
    def handler_name(self) -> str:
        return getattr(self.handler, "__qualname__", repr(self.handler))

    @property
    def shipment_id(self) -> Any:
        return self.event.shipment_id

    def __str__(self) -> str:
        target = f" (shipment {self.shipment_id})" if self.shipment_id is not None else ""
        return f"{self.handler_name} on '{self.event.event_type}'{target}: {self.exception!r}"


class HandlerExecutionError(EventBusError):
    """
    Raised by ``EventBus.publish`` after every handler has run, when at least
    one of them failed. All failures belong to the same published event.
    """

    def __init__(self, event: Event, failures: List[HandlerFailure]):
        self.event = event
        self.failures = failures
        super().__init__("; ".join(str(failure) for failure in failures))

    @property
    def event_type(self) -> str:
        return self.event.event_type

    @property
    def handler_names(self) -> List[str]:
        return [failure.handler_name for failure in self.failures]

    @classmethod
    def merge(cls, failures: Iterable[HandlerFailure]) -> Optional["HandlerExecutionError"]:
        """Group failures of one publish; None when nothing failed"""
        failures = list(failures)
        if not failures:
            return None
        return cls(failures[0].event, failures)
