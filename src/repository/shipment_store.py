"""
In-memory shipment list shared by every flow (status edit, driver reassignment,
item edit, document mutation).

All writes go through ``apply_patch`` or ``replace_all`` so the
non-destructive merge rule for items/documents is enforced in one place.
"""
import logging
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional, Union

from src.core.exceptions import ExceptionFactory
from src.schemas.shipment_schema import ShipmentSchema
from src.services.core.reconciliation import SUB_COLLECTIONS, merge_refetched

logger = logging.getLogger(__name__)

Patch = Union[ShipmentSchema, Mapping[str, Any]]


class ShipmentStore:
    """Shipments indexed by id, in the order the collaborator listed them"""

    def __init__(self, shipments: Optional[Iterable[ShipmentSchema]] = None):
        self._shipments: Dict[int, ShipmentSchema] = {}
        for shipment in shipments or ():
            self.upsert(shipment)

    def all(self) -> List[ShipmentSchema]:
        return list(self._shipments.values())

    def get(self, shipment_id: int) -> Optional[ShipmentSchema]:
        return self._shipments.get(shipment_id)

    def require(self, shipment_id: int) -> ShipmentSchema:
        shipment = self.get(shipment_id)
        if shipment is None:
            raise ExceptionFactory.shipment_not_found(shipment_id)
        return shipment

    def __contains__(self, shipment_id: object) -> bool:
        return shipment_id in self._shipments

    def __len__(self) -> int:
        return len(self._shipments)

    def upsert(self, shipment: ShipmentSchema) -> ShipmentSchema:
        """Insert a new shipment, or merge it non-destructively into the known one"""
        if shipment.id is None:
            raise ValueError("Cannot store a shipment without id")
        existing = self._shipments.get(shipment.id)
        stored = shipment if existing is None else merge_refetched(existing, shipment)
        self._shipments[shipment.id] = stored
        return stored

    def replace_all(self, shipments: Iterable[ShipmentSchema]) -> List[ShipmentSchema]:
        """
        Apply a list refresh.

        List responses may omit sub-collections, so each summary is merged with
        the known entry. Shipments missing from the response are dropped.
        """
        refreshed: Dict[int, ShipmentSchema] = {}
        for shipment in shipments:
            if shipment.id is None:
                logger.warning("Skipping shipment without id in list response")
                continue
            existing = self._shipments.get(shipment.id)
            refreshed[shipment.id] = shipment if existing is None else merge_refetched(existing, shipment)

        dropped = set(self._shipments) - set(refreshed)
        if dropped:
            logger.info(f"List refresh dropped {len(dropped)} shipment(s): {sorted(dropped)}")
        self._shipments = refreshed
        return self.all()

    def apply_patch(
        self,
        shipment_id: int,
        partial: Patch,
        *,
        explicit: Collection[str] = (),
    ) -> ShipmentSchema:
        """
        Patch one shipment, preserving every field the patch does not carry.

        Args:
            shipment_id: shipment to patch
            partial: mapping of fields, or a full ShipmentSchema (all its fields count as set)
            explicit: sub-collections the caller owns authoritatively; these are replaced
                even when empty (e.g. deleting the last document)

        Raises:
            NotFoundException: the shipment is not in the store
        """
        current = self.require(shipment_id)
        changes = partial.model_dump() if isinstance(partial, ShipmentSchema) else dict(partial)
        changes.pop("id", None)

        for key in SUB_COLLECTIONS:
            if key in changes and key not in explicit and not changes[key]:
                changes.pop(key)

        unknown = set(changes) - set(ShipmentSchema.model_fields)
        if unknown:
            raise ValueError(f"Unknown shipment fields in patch: {sorted(unknown)}")

        patched = ShipmentSchema.model_validate({**current.model_dump(), **changes, "id": shipment_id})
        self._shipments[shipment_id] = patched
        return patched

    def remove(self, shipment_id: int) -> Optional[ShipmentSchema]:
        removed = self._shipments.pop(shipment_id, None)
        if removed is not None:
            logger.info(f"Shipment {shipment_id} removed from the local list")
        return removed
