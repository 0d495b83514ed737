"""
Filter/sort pipeline producing the list a viewer sees.

Pure: the result is re-derivable from (shipments, query, status filter, actor)
plus the optional advanced filters, with no hidden state.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Callable, Iterable, List, Optional, Union

from src.models.role import Actor, Role
from src.models.shipment_status import ShipmentStatus
from src.schemas.shipment_schema import UNASSIGNED_DRIVER_ID, ShipmentSchema

ALL = "all"
_ALL_ALIASES = {ALL, "todos", ""}

SORT_FIELDS = ("id", "status", "customer", "destination", "date", "driver")


@dataclass(frozen=True)
class ShipmentPage:
    items: List[ShipmentSchema]
    page: int
    per_page: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.per_page else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def _is_all(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in _ALL_ALIASES)


def matches_query(shipment: ShipmentSchema, query: Optional[str]) -> bool:
    """Case-insensitive substring on customer, destination address or reference code"""
    if not query:
        return True
    needle = query.lower()
    haystack = (shipment.customer, shipment.destination_address, shipment.ref_code)
    return any(value and needle in value.lower() for value in haystack)


def matches_status(shipment: ShipmentSchema, status_filter: Union[str, ShipmentStatus, None]) -> bool:
    if _is_all(status_filter):
        return True
    return shipment.status is ShipmentStatus.parse(status_filter)


def matches_driver(shipment: ShipmentSchema, driver_filter: Union[str, int, None]) -> bool:
    if _is_all(driver_filter):
        return True
    if str(driver_filter) == str(UNASSIGNED_DRIVER_ID):
        return shipment.driver_id is None
    return str(shipment.driver_id) == str(driver_filter)


def _as_datetime(value: Union[date, datetime, None], end_of_day: bool) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max if end_of_day else time.min)


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None) if value.tzinfo else value


def matches_dates(
    shipment: ShipmentSchema,
    date_from: Union[date, datetime, None],
    date_to: Union[date, datetime, None],
) -> bool:
    """Inclusive whole-day range on created_at; shipments without a date pass only an open range"""
    start = _as_datetime(date_from, end_of_day=False)
    end = _as_datetime(date_to, end_of_day=True)
    if start is None and end is None:
        return True
    if shipment.created_at is None:
        return False
    created = _naive(shipment.created_at)
    if start is not None and created < _naive(start):
        return False
    if end is not None and created > _naive(end):
        return False
    return True


def is_visible_to(shipment: ShipmentSchema, actor: Actor) -> bool:
    if actor.role is Role.DRIVER:
        return shipment.driver_id is not None and shipment.driver_id == actor.id
    return True


def default_sort(shipments: Iterable[ShipmentSchema], role: Role) -> List[ShipmentSchema]:
    """Drivers: status priority then newest first. Everyone else: newest first."""
    def newest_first(shipment: ShipmentSchema) -> int:
        return -(shipment.id or 0)

    if role is Role.DRIVER:
        return sorted(shipments, key=lambda s: (s.status.priority, newest_first(s)))
    return sorted(shipments, key=newest_first)


def _sort_key(sort_field: str) -> Callable[[ShipmentSchema], Any]:
    if sort_field == "id":
        return lambda s: s.id or 0
    if sort_field == "status":
        return lambda s: s.status.label
    if sort_field == "customer":
        return lambda s: (s.customer or "").lower()
    if sort_field == "destination":
        return lambda s: (s.destination_address or "").lower()
    if sort_field == "date":
        return lambda s: _naive(s.created_at) if s.created_at else datetime.min
    if sort_field == "driver":
        return lambda s: (s.driver_name or "").lower()
    raise ValueError(f"Unknown sort field: {sort_field!r}")


def filter_shipments(
    shipments: Iterable[ShipmentSchema],
    query: Optional[str],
    status_filter: Union[str, ShipmentStatus, None],
    actor: Actor,
    *,
    driver_filter: Union[str, int, None] = ALL,
    date_from: Union[date, datetime, None] = None,
    date_to: Union[date, datetime, None] = None,
    sort_field: Optional[str] = None,
    sort_direction: str = "desc",
) -> List[ShipmentSchema]:
    """
    Visible, filtered and sorted shipments for a viewer.

    A driver only ever sees their own shipments; the driver filter is ignored
    for them. An explicit sort_field is applied as a stable sort on top of the
    default order.
    """
    visible = [
        shipment for shipment in shipments
        if shipment is not None
        and is_visible_to(shipment, actor)
        and matches_query(shipment, query)
        and matches_status(shipment, status_filter)
        and (actor.role is Role.DRIVER or matches_driver(shipment, driver_filter))
        and matches_dates(shipment, date_from, date_to)
    ]
    ordered = default_sort(visible, actor.role)
    if sort_field:
        ordered = sorted(ordered, key=_sort_key(sort_field), reverse=sort_direction == "desc")
    return ordered


def paginate(shipments: List[ShipmentSchema], page: int = 1, per_page: int = 10) -> ShipmentPage:
    if per_page < 1:
        raise ValueError("per_page must be positive")
    page = max(page, 1)
    start = (page - 1) * per_page
    return ShipmentPage(
        items=shipments[start:start + per_page],
        page=page,
        per_page=per_page,
        total=len(shipments),
    )
