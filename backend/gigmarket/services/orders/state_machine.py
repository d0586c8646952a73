"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class for moving an order along
its lifecycle graph: role gating per target status, terminal state checks,
transition guards, the history entry appended by every transition and the
cross-aggregate side effects each transition produces.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from gigmarket.core.exceptions import (
    ForbiddenError,
    InvalidStatusError,
    RevisionLimitExceededError,
    TerminalStateError,
)
from gigmarket.core.logging import get_logger
from gigmarket.database.base import utcnow
from gigmarket.database.models.notification import NotificationEvent
from gigmarket.services.orders.enums import (
    ActorRole,
    CancellationStatus,
    OrderStatus,
    get_allowed_order_transitions,
    get_permitted_roles,
    validate_order_status_transition,
)
from gigmarket.services.orders.effects import SideEffect
from gigmarket.services.orders.records import append_history, history_entry

logger = get_logger(__name__)


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""

    user_id: str
    is_admin: bool = False
    is_seller: bool = False


def resolve_role(order: Any, actor: Actor) -> ActorRole:
    """Resolve the actor's role on ``order``; the admin flag overrides party identity."""
    if actor.is_admin:
        return ActorRole.ADMIN
    if actor.user_id == order.buyer_id:
        return ActorRole.BUYER
    if actor.user_id == order.seller_id:
        return ActorRole.SELLER
    return ActorRole.NONE


def counterparties(order: Any, role: ActorRole) -> List[str]:
    """Users to notify about an action taken by ``role``."""
    if role == ActorRole.BUYER:
        return [order.seller_id]
    if role == ActorRole.SELLER:
        return [order.buyer_id]
    return [order.buyer_id, order.seller_id]


@dataclass
class TransitionResult:
    previous_status: OrderStatus
    new_status: OrderStatus
    first_completion: bool = False
    side_effects: List[SideEffect] = field(default_factory=list)


Guard = Callable[[Any], None]
Effect = Callable[[Any, ActorRole], List[SideEffect]]


class OrderStateMachine:
    """State machine for order lifecycle transitions.

    Validates role, current state and transition guards, then mutates the
    order and describes the side effects to dispatch once the order is
    committed.
    """

    def __init__(
        self,
        enforce_revision_limit: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.enforce_revision_limit = enforce_revision_limit
        self.clock = clock
        self._transition_guards: Dict[
            Tuple[OrderStatus, OrderStatus], Guard
        ] = self._initialize_guards()
        self._side_effects: Dict[OrderStatus, Effect] = self._initialize_side_effects()

    def _initialize_guards(self) -> Dict[Tuple[OrderStatus, OrderStatus], Guard]:
        return {
            (OrderStatus.DELIVERED, OrderStatus.REVISION_REQUESTED): (
                self._guard_revision_allowance
            ),
        }

    def _initialize_side_effects(self) -> Dict[OrderStatus, Effect]:
        return {
            OrderStatus.COMPLETED: self._effect_completed,
            OrderStatus.CANCELLED: self._effect_cancelled,
        }

    def validate_transition(
        self,
        order: Any,
        target_status: Union[OrderStatus, str],
        role: ActorRole,
    ) -> OrderStatus:
        """Validate that ``role`` may move ``order`` into ``target_status``.

        Checks run in a fixed order: unknown status, role permission,
        terminal current state, graph edge, transition guard.

        Returns:
            The parsed target status

        Raises:
            InvalidStatusError: Unknown status or transition outside the graph
            ForbiddenError: Role not permitted for the target status
            TerminalStateError: Order is already Completed or Cancelled
            RevisionLimitExceededError: Revision allowance used up
        """
        target_status = OrderStatus.from_string(target_status)
        current_status = order.status

        permitted = get_permitted_roles(target_status)
        if role not in permitted:
            raise ForbiddenError(
                f"Role '{role.value}' cannot move an order to {target_status.value}",
                order_id=order.id,
                role=role.value,
                target_status=target_status.value,
                permitted_roles=sorted(r.value for r in permitted),
            )

        if current_status.is_terminal():
            raise TerminalStateError(
                f"Order is already {current_status.value}",
                order_id=order.id,
                current_status=current_status.value,
                target_status=target_status.value,
            )

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise InvalidStatusError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                order_id=order.id,
                current_status=current_status.value,
                target_status=target_status.value,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None:
            guard(order)

        return target_status

    def apply_transition(
        self,
        order: Any,
        target_status: Union[OrderStatus, str],
        actor: Actor,
        role: ActorRole,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """Validate and apply a status change.

        Appends exactly one history entry, stamps ``completed_at`` on the first
        arrival at Completed and counts a revision when a revised delivery
        lands.

        Returns:
            TransitionResult with the side effects to dispatch
        """
        target_status = self.validate_transition(order, target_status, role)
        previous_status = order.status
        now = self.clock()

        first_completion = (
            target_status == OrderStatus.COMPLETED and order.completed_at is None
        )
        if first_completion:
            order.completed_at = now

        if (
            previous_status == OrderStatus.REVISION_REQUESTED
            and target_status == OrderStatus.DELIVERED
        ):
            order.revisions_used = (order.revisions_used or 0) + 1

        if target_status == OrderStatus.CANCELLED and order.has_pending_cancellation:
            order.cancellation_request = {
                **order.cancellation_request,
                "is_requested": False,
                "status": CancellationStatus.APPROVED.value,
                "resolved_date": now.isoformat(),
            }

        order.status = target_status
        append_history(
            order,
            history_entry(
                target_status,
                note or f"Status changed to {target_status.value}",
                changed_by=actor.user_id,
                changed_at=now,
            ),
        )

        effects = self._status_notifications(order, role, previous_status)
        handler = self._side_effects.get(target_status)
        if handler is not None and (
            target_status != OrderStatus.COMPLETED or first_completion
        ):
            effects.extend(handler(order, role))

        logger.info(
            "Order status changed",
            order_id=order.id,
            actor_id=actor.user_id,
            role=role.value,
            previous_status=previous_status.value,
            new_status=target_status.value,
        )

        return TransitionResult(
            previous_status=previous_status,
            new_status=target_status,
            first_completion=first_completion,
            side_effects=effects,
        )

    # Guards

    def _guard_revision_allowance(self, order: Any) -> None:
        if not self.enforce_revision_limit:
            return
        used = order.revisions_used or 0
        available = order.revisions_available or 0
        if used >= available:
            raise RevisionLimitExceededError(
                "No revisions left on this order",
                order_id=order.id,
                field="revisions",
                revisions_used=used,
                revisions_available=available,
            )

    # Side effects

    def _status_notifications(
        self, order: Any, role: ActorRole, previous_status: OrderStatus
    ) -> List[SideEffect]:
        event = NotificationEvent.ORDER_STATUS_CHANGED
        if order.status == OrderStatus.CANCELLED:
            event = NotificationEvent.ORDER_CANCELLED
        return [
            SideEffect.notify(
                user_id,
                event,
                order_id=order.id,
                previous_status=previous_status.value,
                status=order.status.value,
            )
            for user_id in counterparties(order, role)
        ]

    def _effect_completed(self, order: Any, role: ActorRole) -> List[SideEffect]:
        return [
            SideEffect.seller_counter(order.seller_id, "completed_projects", 1),
            SideEffect.seller_counter(order.seller_id, "ongoing_projects", -1),
            SideEffect.service_sale(order.service_id),
            SideEffect.notify(
                order.buyer_id,
                NotificationEvent.ORDER_COMPLETED,
                order_id=order.id,
                service_id=order.service_id,
                can_review=True,
            ),
        ]

    def _effect_cancelled(self, order: Any, role: ActorRole) -> List[SideEffect]:
        return [SideEffect.seller_counter(order.seller_id, "ongoing_projects", -1)]
