"""
Permission guard for shipments.

Pure decision functions of (role, shipment, actor). They hold no state and
are safe to call with a stale shipment snapshot: the collaborator API stays
the real authority and may still reject a mutation on its own.

Every function matches the closed ``Role`` enum exhaustively, so a new role
fails loudly instead of falling through to "allowed".
"""
from typing import Optional

from src.core.exceptions import ExceptionFactory
from src.models.role import Actor, Role, unhandled_role
from src.models.shipment_status import ShipmentStatus
from src.schemas.shipment_schema import ShipmentSchema


def can_edit(shipment: Optional[ShipmentSchema], role: Role) -> bool:
    if shipment is None:
        return False
    if role is Role.ADMIN:
        return True
    if role is Role.DRIVER or role is Role.ACCOUNTANT:
        return not shipment.status.is_terminal
    if role is Role.CLIENT_VIEWER:
        # Capabilities not defined yet: read-only until confirmed
        return False
    unhandled_role(role)


def can_driver_edit(
    shipment: Optional[ShipmentSchema],
    role: Role,
    actor_is_assigned_driver: bool,
) -> bool:
    if role is Role.DRIVER:
        return can_edit(shipment, role) and actor_is_assigned_driver
    if role in (Role.ADMIN, Role.ACCOUNTANT, Role.CLIENT_VIEWER):
        return can_edit(shipment, role)
    unhandled_role(role)


def can_show_financials(role: Role) -> bool:
    """Drivers see quantity and weight, never item value or shipping cost"""
    if role is Role.ADMIN:
        return True
    if role in (Role.DRIVER, Role.ACCOUNTANT, Role.CLIENT_VIEWER):
        return False
    unhandled_role(role)


def can_show_invoice(shipment: Optional[ShipmentSchema], role: Role) -> bool:
    if shipment is None:
        return False
    return can_show_financials(role) and shipment.status is ShipmentStatus.DELIVERED


def can_delete(role: Role) -> bool:
    if role is Role.ADMIN:
        return True
    if role in (Role.DRIVER, Role.ACCOUNTANT, Role.CLIENT_VIEWER):
        return False
    unhandled_role(role)


def can_create(role: Role) -> bool:
    return can_delete(role)


def is_assigned_driver(shipment: Optional[ShipmentSchema], actor: Actor) -> bool:
    if shipment is None or shipment.driver_id is None:
        return False
    return shipment.driver_id == actor.id


def can_view(shipment: Optional[ShipmentSchema], actor: Actor) -> bool:
    """A driver only ever sees shipments assigned to them"""
    if shipment is None:
        return False
    if actor.role is Role.DRIVER:
        return is_assigned_driver(shipment, actor)
    if actor.role in (Role.ADMIN, Role.ACCOUNTANT, Role.CLIENT_VIEWER):
        return True
    unhandled_role(actor.role)


def can_actor_edit(shipment: Optional[ShipmentSchema], actor: Actor) -> bool:
    """can_driver_edit with the assignment check resolved from the actor"""
    return can_driver_edit(shipment, actor.role, is_assigned_driver(shipment, actor))


# Pre-flight checks: raise AuthorizationException before a request is built

def ensure_can_edit(shipment: ShipmentSchema, actor: Actor) -> None:
    if can_actor_edit(shipment, actor):
        return
    if shipment.status.is_terminal:
        raise ExceptionFactory.shipment_locked(shipment.id, shipment.status.value)
    raise ExceptionFactory.forbidden("edit this shipment", actor.role.value)


def ensure_can_delete(actor: Actor) -> None:
    if not can_delete(actor.role):
        raise ExceptionFactory.forbidden("delete shipments", actor.role.value)


def ensure_can_create(actor: Actor) -> None:
    if not can_create(actor.role):
        raise ExceptionFactory.forbidden("create shipments", actor.role.value)


def ensure_can_show_financials(actor: Actor) -> None:
    if not can_show_financials(actor.role):
        raise ExceptionFactory.forbidden("change financial fields", actor.role.value)


def ensure_can_show_invoice(shipment: ShipmentSchema, actor: Actor) -> None:
    if not can_show_invoice(shipment, actor.role):
        raise ExceptionFactory.forbidden("invoice this shipment", actor.role.value)
