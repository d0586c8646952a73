"""
Delivery extension and cancellation negotiation.

Both negotiations follow the same request / resolve pattern: one party files
a request (at most one outstanding at a time), the other side approves or
declines it. Functions here mutate the order in place and return the side
effects to dispatch after commit.
"""

from datetime import datetime, timedelta
from typing import Any, List, Optional

from gigmarket.core.exceptions import (
    AlreadyRequestedError,
    ForbiddenError,
    InvalidArgumentError,
    TerminalStateError,
)
from gigmarket.core.logging import get_logger
from gigmarket.database.models.notification import NotificationEvent
from gigmarket.services.orders.effects import SideEffect
from gigmarket.services.orders.enums import ActorRole, CancellationStatus, OrderStatus
from gigmarket.services.orders.records import append_message
from gigmarket.services.orders.state_machine import (
    Actor,
    OrderStateMachine,
    counterparties,
)

logger = get_logger(__name__)


def derive_due_date(
    created_at: datetime, delivery_time: int, approved_extension_days: int = 0
) -> datetime:
    """Due date from the creation time, package delivery time and approved extensions."""
    return created_at + timedelta(days=delivery_time + approved_extension_days)


def ensure_open(order: Any, action: str) -> None:
    """Raise TerminalStateError if ``order`` is Completed or Cancelled."""
    if order.is_closed:
        raise TerminalStateError(
            f"Cannot {action} a {order.status.value.lower()} order",
            order_id=order.id,
            current_status=order.status.value,
        )


def ensure_role(order: Any, role: ActorRole, allowed: set, action: str) -> None:
    if role not in allowed:
        raise ForbiddenError(
            f"Role '{role.value}' cannot {action}",
            order_id=order.id,
            role=role.value,
            permitted_roles=sorted(r.value for r in allowed),
        )


# Delivery extension


def request_extension(
    order: Any,
    actor: Actor,
    role: ActorRole,
    additional_days: int,
    reason: Optional[str],
    now: datetime,
) -> List[SideEffect]:
    """
    Seller asks the buyer for more delivery time.

    Raises:
        ForbiddenError: Actor is not the seller
        TerminalStateError: Order is closed
        InvalidArgumentError: ``additional_days`` is not positive
        AlreadyRequestedError: An extension is already awaiting the buyer
    """
    ensure_role(order, role, {ActorRole.SELLER}, "request a delivery extension")
    ensure_open(order, "extend")

    if additional_days is None or additional_days <= 0:
        raise InvalidArgumentError(
            "Additional days must be a positive number",
            order_id=order.id,
            field="additional_days",
            value=additional_days,
        )

    if order.has_pending_extension:
        raise AlreadyRequestedError(
            "A delivery extension is already awaiting approval",
            order_id=order.id,
            field="extended_delivery",
        )

    order.extended_delivery = {
        "is_requested": True,
        "additional_days": additional_days,
        "reason": reason,
        "requested_at": now.isoformat(),
        "approved_at": None,
    }
    append_message(
        order,
        role,
        actor.user_id,
        f"Requested a delivery extension of {additional_days} days. Reason: {reason}",
        now,
    )

    logger.info(
        "Delivery extension requested",
        order_id=order.id,
        actor_id=actor.user_id,
        additional_days=additional_days,
    )
    return [
        SideEffect.notify(
            order.buyer_id,
            NotificationEvent.EXTENSION_REQUESTED,
            order_id=order.id,
            additional_days=additional_days,
            reason=reason,
        )
    ]


def _require_extension(order: Any) -> dict:
    extension = order.extended_delivery or {}
    if not extension.get("is_requested") and extension.get("approved_at") is None:
        raise InvalidArgumentError(
            "No delivery extension has been requested",
            order_id=order.id,
            field="extended_delivery",
        )
    return extension


def approve_extension(
    order: Any, actor: Actor, role: ActorRole, now: datetime
) -> List[SideEffect]:
    """
    Buyer approves the pending extension and the due date moves out.

    A retried approval of an already approved extension changes nothing.
    """
    ensure_role(order, role, {ActorRole.BUYER}, "approve a delivery extension")
    ensure_open(order, "extend")
    extension = _require_extension(order)

    if extension.get("approved_at") is not None:
        logger.info(
            "Delivery extension already approved",
            order_id=order.id,
            actor_id=actor.user_id,
        )
        return []

    days = int(extension.get("additional_days") or 0)
    order.extended_delivery = {
        **extension,
        "is_requested": False,
        "approved_at": now.isoformat(),
    }
    order.approved_extension_days = (order.approved_extension_days or 0) + days
    order.due_date = derive_due_date(
        order.created_at, order.delivery_time, order.approved_extension_days
    )
    append_message(
        order,
        role,
        actor.user_id,
        f"Approved the delivery extension of {days} days",
        now,
    )

    logger.info(
        "Delivery extension approved",
        order_id=order.id,
        actor_id=actor.user_id,
        additional_days=days,
        due_date=order.due_date.isoformat(),
    )
    return [
        SideEffect.notify(
            order.seller_id,
            NotificationEvent.EXTENSION_RESOLVED,
            order_id=order.id,
            approved=True,
            due_date=order.due_date.isoformat(),
        )
    ]


def decline_extension(
    order: Any, actor: Actor, role: ActorRole, now: datetime
) -> List[SideEffect]:
    """Buyer declines the pending extension; the due date is unchanged."""
    ensure_role(order, role, {ActorRole.BUYER}, "decline a delivery extension")
    ensure_open(order, "extend")

    if not order.has_pending_extension:
        raise InvalidArgumentError(
            "No delivery extension is awaiting approval",
            order_id=order.id,
            field="extended_delivery",
        )

    order.extended_delivery = {
        **order.extended_delivery,
        "is_requested": False,
        "declined_at": now.isoformat(),
    }
    append_message(order, role, actor.user_id, "Declined the delivery extension", now)

    logger.info("Delivery extension declined", order_id=order.id, actor_id=actor.user_id)
    return [
        SideEffect.notify(
            order.seller_id,
            NotificationEvent.EXTENSION_RESOLVED,
            order_id=order.id,
            approved=False,
        )
    ]


# Cancellation


def request_cancellation(
    order: Any,
    actor: Actor,
    role: ActorRole,
    reason: Optional[str],
    now: datetime,
) -> List[SideEffect]:
    """
    Buyer or seller asks to cancel the order.

    Raises:
        ForbiddenError: Actor is not a party to the order
        TerminalStateError: Order is closed
        AlreadyRequestedError: A cancellation request is still pending
    """
    ensure_role(
        order, role, {ActorRole.BUYER, ActorRole.SELLER}, "request cancellation"
    )
    ensure_open(order, "cancel")

    if order.has_pending_cancellation:
        raise AlreadyRequestedError(
            "Cancellation has already been requested for this order",
            order_id=order.id,
            field="cancellation_request",
            requested_by=order.cancellation_request.get("requested_by"),
        )

    order.cancellation_request = {
        "is_requested": True,
        "requested_by": role.value,
        "reason": reason,
        "request_date": now.isoformat(),
        "status": CancellationStatus.PENDING.value,
        "resolved_date": None,
    }
    append_message(
        order, role, actor.user_id, f"Requested cancellation. Reason: {reason}", now
    )

    logger.info(
        "Cancellation requested",
        order_id=order.id,
        actor_id=actor.user_id,
        requested_by=role.value,
    )
    return [
        SideEffect.notify(
            user_id,
            NotificationEvent.CANCELLATION_REQUESTED,
            order_id=order.id,
            requested_by=role.value,
            reason=reason,
        )
        for user_id in counterparties(order, role)
    ]


def resolve_cancellation(
    order: Any,
    actor: Actor,
    role: ActorRole,
    approve: bool,
    state_machine: OrderStateMachine,
    now: datetime,
    note: Optional[str] = None,
) -> List[SideEffect]:
    """
    Approve or reject the pending cancellation request.

    Only the counterparty of the requester, or an admin, may resolve it.
    Approval cancels the order through the state machine, which also marks
    the request approved.
    """
    ensure_open(order, "cancel")

    if not order.has_pending_cancellation:
        raise InvalidArgumentError(
            "No cancellation request is pending",
            order_id=order.id,
            field="cancellation_request",
        )

    requested_by = ActorRole(order.cancellation_request.get("requested_by"))
    allowed = {ActorRole.BUYER, ActorRole.SELLER, ActorRole.ADMIN} - {requested_by}
    ensure_role(order, role, allowed, "resolve this cancellation request")

    if approve:
        result = state_machine.apply_transition(
            order,
            OrderStatus.CANCELLED,
            actor,
            role,
            note=note or "Cancellation request approved",
        )
        effects = result.side_effects
    else:
        order.cancellation_request = {
            **order.cancellation_request,
            "is_requested": False,
            "status": CancellationStatus.REJECTED.value,
            "resolved_date": now.isoformat(),
        }
        effects = []

    append_message(
        order,
        role,
        actor.user_id,
        "Approved the cancellation request"
        if approve
        else "Rejected the cancellation request",
        now,
    )

    logger.info(
        "Cancellation resolved",
        order_id=order.id,
        actor_id=actor.user_id,
        approved=approve,
    )
    effects.extend(
        SideEffect.notify(
            user_id,
            NotificationEvent.CANCELLATION_RESOLVED,
            order_id=order.id,
            approved=approve,
        )
        for user_id in counterparties(order, role)
    )
    return effects
