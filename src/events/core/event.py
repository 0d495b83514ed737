"""Definitions for events emitted by the shipment core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, MutableMapping, Optional, Union


class EventType(str, Enum):
    """Types of events published by the shipment flows."""

    SHIPMENTS_REFRESHED = "shipments_refreshed"
    SHIPMENT_SAVED = "shipment_saved"
    SHIPMENT_RECONCILED = "shipment_reconciled"
    RECONCILIATION_DISCREPANCY = "reconciliation_discrepancy"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_DELETED = "document_deleted"
    SHIPMENT_REMOVED = "shipment_removed"
    INVOICE_SYNCED = "invoice_synced"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Return True if the enum already defines the given value."""

        try:
            cls(value)
        except ValueError:
            return False
        return True


MetadataMapping = Mapping[str, Any]


def event_key(event_type: Union[EventType, str]) -> str:
    """Subscription key for an event type given as enum or plain string."""

    return event_type.value if isinstance(event_type, EventType) else str(event_type)


@dataclass(frozen=True, slots=True)
class Event:
    """Event data structure shared across the event system."""

    event_type: str
    data: Dict[str, Any]
    metadata: MetadataMapping = field(default_factory=dict)
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        """Normalise the event type and metadata."""

        object.__setattr__(self, "event_type", event_key(self.event_type))

        if not isinstance(self.metadata, dict):
            object.__setattr__(self, "metadata", dict(self.metadata))

        if "idempotency_key" not in self.metadata:
            object.__setattr__(
                self,
                "metadata",
                {**self.metadata, "idempotency_key": self._generate_idempotency_key()},
            )

    @classmethod
    def for_shipment(
        cls,
        event_type: Union[EventType, str],
        shipment_id: Any,
        source: Optional[str] = None,
        **data: Any,
    ) -> "Event":
        """Build an event about one shipment; `source` ends up in metadata."""

        metadata = {"source": source} if source else {}
        return cls(event_type=event_key(event_type), data={"shipment_id": shipment_id, **data}, metadata=metadata)

    @property
    def shipment_id(self) -> Any:
        return self.data.get("shipment_id")

    @property
    def idempotency_key(self) -> str:
        """Convenience accessor for the idempotency key."""

        return str(self.metadata.get("idempotency_key", ""))

    def with_metadata(self, **updates: Any) -> "Event":
        """Return a copy of the event with updated metadata."""

        merged: MutableMapping[str, Any] = dict(self.metadata)
        merged.update(updates)
        return Event(
            event_type=self.event_type,
            data=self.data,
            metadata=dict(merged),
            timestamp=self.timestamp,
        )

    def _generate_idempotency_key(self) -> str:
        shipment = self.data.get("shipment_id", "-")
        return f"{self.event_type}:{shipment}:{int(self.timestamp.timestamp() * 1_000_000)}"
