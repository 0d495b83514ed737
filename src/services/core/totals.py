"""
Derived shipping cost.

The cost is a one-way derivation from the items: once a shipment has any real
item, a separately typed cost is never trusted. Shipments without items keep
whatever cost was last set.
"""
from typing import Any, Iterable, List

from src.core.exceptions import ErrorCode, ExceptionFactory, ValidationException
from src.schemas.shipment_schema import ItemSchema, ShipmentSchema
from src.services.core.tool import safe_float


def total(items: Iterable[ItemSchema]) -> float:
    """Sum of value x quantity over the buffer; placeholders contribute zero"""
    return sum((item.value * item.quantity for item in items), 0.0)


def filter_placeholders(items: Iterable[ItemSchema]) -> List[ItemSchema]:
    return [item for item in items if not item.is_placeholder]


def validate_items(items: Iterable[ItemSchema]) -> None:
    """Every persisted item needs a quantity of at least one"""
    for index, item in enumerate(items):
        if item.quantity < 1:
            raise ValidationException(
                f"Item {index + 1} must have a quantity of at least 1",
                ErrorCode.INVALID_ITEM,
                {"field": f"items.{index}.quantity", "index": index},
            )


def prepare_for_save(shipment: ShipmentSchema) -> ShipmentSchema:
    """
    Drop placeholder rows and overwrite shipping_cost with the items total.

    Returns a new ShipmentSchema; the input is not modified.
    """
    items = filter_placeholders(shipment.items)
    validate_items(items)
    update = {"items": [item.model_copy() for item in items]}
    if items:
        update["shipping_cost"] = total(items)
    return shipment.model_copy(update=update)


def ensure_cost_editable(items: Iterable[ItemSchema]) -> None:
    """Refuse manual cost edits once a real item exists"""
    real_items = filter_placeholders(items)
    if real_items:
        raise ExceptionFactory.cost_locked(len(real_items))


def format_shipping_cost(cost: Any) -> str:
    """Two-decimal rendering tolerant of strings and missing values"""
    return f"{safe_float(cost):.2f}"
