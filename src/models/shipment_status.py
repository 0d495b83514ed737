"""
Stati di una spedizione e grafo delle transizioni
"""

from enum import Enum
from typing import Dict, FrozenSet


class ShipmentStatus(str, Enum):
    """Lifecycle status of a shipment"""
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value) -> "ShipmentStatus":
        """Accept enum members, API keys, legacy API keys and display labels."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown shipment status: {value!r}")
        key = value.strip().lower()
        try:
            return cls(key)
        except ValueError:
            pass
        if key in _ALIASES:
            return _ALIASES[key]
        raise ValueError(f"Unknown shipment status: {value!r}")

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @property
    def priority(self) -> int:
        return STATUS_PRIORITY[self]


# Chiavi usate dal backend originale e etichette visualizzate
_ALIASES: Dict[str, ShipmentStatus] = {
    "pendiente": ShipmentStatus.PENDING,
    "en_transito": ShipmentStatus.IN_TRANSIT,
    "en tránsito": ShipmentStatus.IN_TRANSIT,
    "entregado": ShipmentStatus.DELIVERED,
    "cancelado": ShipmentStatus.CANCELLED,
    "in transit": ShipmentStatus.IN_TRANSIT,
    "canceled": ShipmentStatus.CANCELLED,
}

STATUS_LABELS: Dict[ShipmentStatus, str] = {
    ShipmentStatus.PENDING: "Pending",
    ShipmentStatus.IN_TRANSIT: "In transit",
    ShipmentStatus.DELIVERED: "Delivered",
    ShipmentStatus.CANCELLED: "Cancelled",
}

# Ordine di priorità per la vista dell'autista
STATUS_PRIORITY: Dict[ShipmentStatus, int] = {
    ShipmentStatus.PENDING: 0,
    ShipmentStatus.IN_TRANSIT: 1,
    ShipmentStatus.DELIVERED: 2,
    ShipmentStatus.CANCELLED: 3,
}

TERMINAL_STATUSES: FrozenSet[ShipmentStatus] = frozenset({
    ShipmentStatus.DELIVERED,
    ShipmentStatus.CANCELLED,
})

# Single source of truth for status transitions
STATUS_TRANSITIONS: Dict[ShipmentStatus, FrozenSet[ShipmentStatus]] = {
    ShipmentStatus.PENDING: frozenset({ShipmentStatus.IN_TRANSIT, ShipmentStatus.CANCELLED}),
    ShipmentStatus.IN_TRANSIT: frozenset({ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED}),
    ShipmentStatus.DELIVERED: frozenset(),  # Terminal
    ShipmentStatus.CANCELLED: frozenset(),  # Terminal
}
