"""
Status transition engine.

A transition is not a separate endpoint: it produces the full shipment record
with only the status changed, submitted through the same update path as any
other edit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from src.core.exceptions import ExceptionFactory, InvalidTransitionException
from src.models.role import Actor, Role, unhandled_role
from src.models.shipment_status import STATUS_TRANSITIONS, ShipmentStatus
from src.schemas.shipment_schema import ShipmentSchema
from src.services.core.permission_guard import is_assigned_driver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionPlan:
    """Record to submit plus the flags the update path must carry"""

    shipment: ShipmentSchema
    previous_status: ShipmentStatus
    target_status: ShipmentStatus
    admin_override: bool = False

    @property
    def is_noop(self) -> bool:
        return self.previous_status is self.target_status

    @property
    def reopens_terminal(self) -> bool:
        return self.previous_status.is_terminal and not self.is_noop


def is_valid_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    if current is target:
        return True
    return target in STATUS_TRANSITIONS[current]


def validate_transition(current: ShipmentStatus, target: ShipmentStatus) -> None:
    """Raise InvalidTransitionException if target is not reachable from current."""
    if not is_valid_transition(current, target):
        raise InvalidTransitionException(current.value, target.value)


def allowed_targets(current: ShipmentStatus, role: Role) -> List[ShipmentStatus]:
    """Statuses offered to a role for a shipment currently in `current`"""
    if role is Role.ADMIN:
        return list(ShipmentStatus)
    if role is Role.DRIVER or role is Role.ACCOUNTANT:
        if current.is_terminal:
            return []
        return [current] + [s for s in ShipmentStatus if s in STATUS_TRANSITIONS[current]]
    if role is Role.CLIENT_VIEWER:
        return []
    unhandled_role(role)


def plan_transition(
    shipment: ShipmentSchema,
    target,
    actor: Actor,
    now: Optional[datetime] = None,
) -> TransitionPlan:
    """
    Validate a status change request and build the record to submit.

    Args:
        shipment: current snapshot (may be stale; the collaborator still decides)
        target: target status, enum or any accepted alias
        actor: who is asking
        now: clock override used to stamp delivery_date

    Returns:
        TransitionPlan with the shipment copy carrying only the new status
        (and delivery_date when entering delivered for the first time)

    Raises:
        AuthorizationException: terminal lock or role not allowed, before any network call
        InvalidTransitionException: target not reachable for a non-admin
    """
    target_status = ShipmentStatus.parse(target)
    current = shipment.status
    role = actor.role

    if role is Role.ADMIN:
        admin_override = True
        if current.is_terminal and current is not target_status:
            # TODO: confirm whether admin overrides should still follow the graph
            logger.warning(
                f"Admin {actor.id} reopening shipment {shipment.id}: {current.value} -> {target_status.value}"
            )
    elif role is Role.DRIVER:
        admin_override = False
        if current.is_terminal:
            raise ExceptionFactory.shipment_locked(shipment.id, current.value)
        if not is_assigned_driver(shipment, actor):
            raise ExceptionFactory.forbidden("change the status of a shipment not assigned to them", role.value)
        validate_transition(current, target_status)
    elif role is Role.ACCOUNTANT:
        admin_override = False
        if current.is_terminal:
            raise ExceptionFactory.shipment_locked(shipment.id, current.value)
        validate_transition(current, target_status)
    elif role is Role.CLIENT_VIEWER:
        raise ExceptionFactory.forbidden("change shipment status", role.value)
    else:
        unhandled_role(role)

    update = {"status": target_status}
    if target_status is ShipmentStatus.DELIVERED and shipment.delivery_date is None:
        update["delivery_date"] = now or datetime.now(timezone.utc)

    return TransitionPlan(
        shipment=shipment.model_copy(update=update, deep=True),
        previous_status=current,
        target_status=target_status,
        admin_override=admin_override,
    )
