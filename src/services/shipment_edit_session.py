"""
Buffer di modifica di una singola spedizione.

Le modifiche restano locali finché ShipmentService.save non le invia; ogni
mutazione passa dal Permission Guard dell'attore della sessione.
"""
import logging
from typing import Any, List, Optional, Union

from src.core.exceptions import ExceptionFactory, ValidationException
from src.models.role import Actor
from src.schemas.shipment_schema import UNASSIGNED_DRIVER_ID, ItemSchema, ShipmentSchema
from src.services.core import permission_guard
from src.services.core.reconciliation import merge_refetched
from src.services.core.totals import ensure_cost_editable, total

logger = logging.getLogger(__name__)

# Campi che non si modificano con set_field
_PROTECTED_FIELDS = {
    "id", "items", "documents", "status", "driver_id", "driver_name", "shipping_cost",
    "created_at", "updated_at", "invoice_id",
}
_FINANCIAL_ITEM_FIELDS = {"value"}

ItemKey = Union[int, str]


class ShipmentEditSession:
    """
    Staging buffer for one shipment opened by one actor.

    Attributes:
        draft (ShipmentSchema): current local version, including placeholder rows
        actor (Actor): who is editing
    """

    def __init__(self, shipment: ShipmentSchema, actor: Actor):
        self.draft = shipment.model_copy(deep=True)
        self.actor = actor

    @property
    def shipment_id(self) -> Optional[int]:
        return self.draft.id

    @property
    def can_edit(self) -> bool:
        return permission_guard.can_actor_edit(self.draft, self.actor)

    @property
    def can_show_financials(self) -> bool:
        return permission_guard.can_show_financials(self.actor.role)

    def _ensure_editable(self) -> None:
        permission_guard.ensure_can_edit(self.draft, self.actor)

    def _update(self, **changes: Any) -> ShipmentSchema:
        self.draft = self.draft.model_copy(update=changes)
        return self.draft

    def set_field(self, name: str, value: Any) -> ShipmentSchema:
        """Set a plain scalar field (customer, comments, addresses, ...)"""
        self._ensure_editable()
        if name in _PROTECTED_FIELDS or name not in ShipmentSchema.model_fields:
            raise ValueError(f"Field '{name}' cannot be set directly")
        # Revalidate so blank strings and numeric strings are normalised
        self.draft = ShipmentSchema.model_validate({**self.draft.model_dump(), name: value})
        return self.draft

    def set_origin(self, address: Optional[str], lat: Any, lng: Any) -> ShipmentSchema:
        self._ensure_editable()
        self.draft = ShipmentSchema.model_validate({
            **self.draft.model_dump(),
            "origin_address": address,
            "origin_lat": lat,
            "origin_lng": lng,
        })
        return self.draft

    def set_destination(self, address: Optional[str], lat: Any, lng: Any) -> ShipmentSchema:
        self._ensure_editable()
        self.draft = ShipmentSchema.model_validate({
            **self.draft.model_dump(),
            "destination_address": address,
            "destination_lat": lat,
            "destination_lng": lng,
        })
        return self.draft

    def assign_driver(self, driver_id: Optional[int], driver_name: Optional[str] = None) -> ShipmentSchema:
        """Admin only; the unassigned picker entry clears the driver"""
        if not self.actor.is_admin:
            raise ExceptionFactory.forbidden("assign drivers", self.actor.role.value)
        if driver_id is None or driver_id == UNASSIGNED_DRIVER_ID:
            return self._update(driver_id=None, driver_name=None)
        return self._update(driver_id=driver_id, driver_name=driver_name)

    # Items

    def add_item(self) -> ItemSchema:
        """Append an empty placeholder row; it is dropped at save if left empty"""
        self._ensure_editable()
        item = ItemSchema.placeholder()
        self._update(items=self.draft.items + [item])
        return item

    def _find_item(self, key: ItemKey) -> int:
        for index, item in enumerate(self.draft.items):
            if item.temp_id is not None and item.temp_id == key:
                return index
            if item.id is not None and item.id == key:
                return index
        raise ExceptionFactory.required_field_missing(f"items[{key}]")

    def update_item(self, key: ItemKey, **changes: Any) -> ItemSchema:
        """
        Update one item by server id or temporary id.

        Drivers can change description, quantity and weight but never value.
        """
        self._ensure_editable()
        if not self.can_show_financials and _FINANCIAL_ITEM_FIELDS & changes.keys():
            raise ExceptionFactory.forbidden("change item value", self.actor.role.value)
        unknown = set(changes) - {"description", "quantity", "weight", "value"}
        if unknown:
            raise ValueError(f"Unknown item fields: {sorted(unknown)}")

        index = self._find_item(key)
        items: List[ItemSchema] = list(self.draft.items)
        try:
            items[index] = ItemSchema.model_validate({**items[index].model_dump(), **changes})
        except ValueError as e:
            raise ValidationException(
                f"Invalid item data: {e}", details={"field": f"items.{index}"}
            ) from e
        self._update(items=items)
        return items[index]

    def remove_item(self, key: ItemKey) -> ShipmentSchema:
        self._ensure_editable()
        index = self._find_item(key)
        items = list(self.draft.items)
        del items[index]
        return self._update(items=items)

    def set_shipping_cost(self, cost: Any) -> ShipmentSchema:
        """Manual cost, only while the shipment has no real items"""
        self._ensure_editable()
        permission_guard.ensure_can_show_financials(self.actor)
        ensure_cost_editable(self.draft.items)
        self.draft = ShipmentSchema.model_validate({**self.draft.model_dump(), "shipping_cost": cost})
        return self.draft

    def current_total(self) -> float:
        """Live total shown while editing; placeholders count zero"""
        if not self.draft.real_items:
            return self.draft.shipping_cost
        return total(self.draft.items)

    def apply_remote(self, remote: ShipmentSchema) -> ShipmentSchema:
        """Merge a refetch without losing visible items or documents"""
        self.draft = merge_refetched(self.draft, remote)
        return self.draft
