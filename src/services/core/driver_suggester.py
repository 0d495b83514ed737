"""
Driver load-balance suggestions for manual assignment.

Only an ordering aid: nothing here assigns a driver, and two admins may pick
the same "least loaded" driver at the same time.
"""
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional

from src.models.role import Role
from src.models.shipment_status import ShipmentStatus
from src.schemas.shipment_schema import UNASSIGNED_DRIVER_ID, ShipmentSchema
from src.schemas.user_schema import UserSchema

UNASSIGNED_LABEL = "Unassigned"


@dataclass(frozen=True)
class DriverLoad:
    driver_id: int
    name: str
    pending_count: int

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.pending_count} pending shipments)"

    @property
    def is_unassigned(self) -> bool:
        return self.driver_id == UNASSIGNED_DRIVER_ID

    @property
    def assignable_id(self) -> Optional[int]:
        """Value to store on the shipment: None for the unassigned entry"""
        return None if self.is_unassigned else self.driver_id


def pending_counts(shipments: Iterable[ShipmentSchema]) -> Counter:
    return Counter(
        shipment.driver_id
        for shipment in shipments
        if shipment.driver_id is not None and shipment.status is ShipmentStatus.PENDING
    )


def suggest_drivers(
    drivers: Iterable[UserSchema],
    shipments: Iterable[ShipmentSchema],
) -> List[DriverLoad]:
    """
    Drivers sorted by pending-shipment count, ascending.

    Ties keep the order in which drivers were given. A synthetic unassigned
    entry with count 0 always comes first.
    """
    counts = pending_counts(shipments)
    loads = [
        DriverLoad(driver_id=user.id, name=user.display_name, pending_count=counts.get(user.id, 0))
        for user in drivers
        if user.role is Role.DRIVER
    ]
    loads.sort(key=lambda load: load.pending_count)
    return [DriverLoad(UNASSIGNED_DRIVER_ID, UNASSIGNED_LABEL, 0)] + loads
