"""
Test suite for OrderStateMachine.

Tests cover role resolution, transition validation order, guards, history
entries, completion stamping and the side effects each transition produces.
Orders are transient model instances; no database is involved.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import Mock

import pytest

from gigmarket.core.exceptions import (
    ForbiddenError,
    InvalidStatusError,
    RevisionLimitExceededError,
    TerminalStateError,
)
from gigmarket.database.models.order import Order
from gigmarket.services.orders.effects import SideEffectKind
from gigmarket.services.orders.enums import ActorRole, OrderStatus, PackageName
from gigmarket.services.orders.state_machine import (
    Actor,
    OrderStateMachine,
    counterparties,
    resolve_role,
)

NOW = datetime(2026, 5, 4, 15, 30, tzinfo=timezone.utc)
BUYER_ID = "a" * 24
SELLER_ID = "b" * 24
ADMIN_ID = "c" * 24


# ============================================================================
# Test Fixtures
# ============================================================================


def make_order(**overrides: Any) -> Order:
    """Build a transient order with sensible defaults."""
    created_at = NOW - timedelta(days=1)
    fields = dict(
        id="d" * 24,
        service_id="e" * 24,
        service_title="Logo design",
        package_selected=PackageName.BASIC,
        buyer_id=BUYER_ID,
        seller_id=SELLER_ID,
        price=Decimal("50.00"),
        delivery_time=3,
        due_date=created_at + timedelta(days=3),
        approved_extension_days=0,
        revisions_available=1,
        revisions_used=0,
        status=OrderStatus.PENDING,
        progress=0,
        completed_at=None,
        status_history=[],
        milestones=[],
        messages=[],
        files=[],
        review=None,
        extended_delivery=None,
        cancellation_request=None,
        created_at=created_at,
    )
    fields.update(overrides)
    return Order(**fields)


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=NOW)


@pytest.fixture
def state_machine(clock: Mock) -> OrderStateMachine:
    return OrderStateMachine(clock=clock)


@pytest.fixture
def buyer() -> Actor:
    return Actor(user_id=BUYER_ID)


@pytest.fixture
def seller() -> Actor:
    return Actor(user_id=SELLER_ID, is_seller=True)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=ADMIN_ID, is_admin=True)


# ============================================================================
# Initialization Tests
# ============================================================================


class TestOrderStateMachineInitialization:
    """Test OrderStateMachine initialization and setup."""

    def test_guards_initialization(self, state_machine: OrderStateMachine) -> None:
        """Test the revision guard is registered on its edge."""
        assert set(state_machine._transition_guards) == {
            (OrderStatus.DELIVERED, OrderStatus.REVISION_REQUESTED)
        }

    def test_side_effects_initialization(self, state_machine: OrderStateMachine) -> None:
        assert set(state_machine._side_effects) == {
            OrderStatus.COMPLETED,
            OrderStatus.CANCELLED,
        }

    def test_revision_limit_enforced_by_default(self) -> None:
        assert OrderStateMachine().enforce_revision_limit is True


# ============================================================================
# Role Resolution Tests
# ============================================================================


class TestRoleResolution:
    """Test resolution of the actor's role on an order."""

    def test_buyer(self, buyer: Actor) -> None:
        assert resolve_role(make_order(), buyer) == ActorRole.BUYER

    def test_seller(self, seller: Actor) -> None:
        assert resolve_role(make_order(), seller) == ActorRole.SELLER

    def test_admin(self, admin: Actor) -> None:
        assert resolve_role(make_order(), admin) == ActorRole.ADMIN

    def test_admin_flag_overrides_party_identity(self) -> None:
        actor = Actor(user_id=BUYER_ID, is_admin=True)
        assert resolve_role(make_order(), actor) == ActorRole.ADMIN

    def test_stranger_has_no_role(self) -> None:
        actor = Actor(user_id="f" * 24, is_seller=True)
        assert resolve_role(make_order(), actor) == ActorRole.NONE

    @pytest.mark.parametrize(
        "role,expected",
        [
            (ActorRole.BUYER, [SELLER_ID]),
            (ActorRole.SELLER, [BUYER_ID]),
            (ActorRole.ADMIN, [BUYER_ID, SELLER_ID]),
        ],
    )
    def test_counterparties(self, role: ActorRole, expected: list[str]) -> None:
        assert counterparties(make_order(), role) == expected

    def test_parties(self) -> None:
        assert {role for role in ActorRole if role.is_party} == {
            ActorRole.BUYER,
            ActorRole.SELLER,
        }


# ============================================================================
# Transition Validation Tests
# ============================================================================


class TestValidateTransition:
    """Test transition validation and the order in which checks run."""

    def test_unknown_status(self, state_machine: OrderStateMachine) -> None:
        with pytest.raises(InvalidStatusError) as exc_info:
            state_machine.validate_transition(make_order(), "Shipped", ActorRole.SELLER)

        assert exc_info.value.context["field"] == "status"
        assert "In Progress" in exc_info.value.context["allowed"]

    def test_member_name_accepted(self, state_machine: OrderStateMachine) -> None:
        target = state_machine.validate_transition(
            make_order(), "IN_PROGRESS", ActorRole.SELLER
        )
        assert target == OrderStatus.IN_PROGRESS

    @pytest.mark.parametrize(
        "role", [ActorRole.BUYER, ActorRole.SELLER, ActorRole.ADMIN]
    )
    def test_nobody_may_return_to_pending(
        self, state_machine: OrderStateMachine, role: ActorRole
    ) -> None:
        order = make_order(status=OrderStatus.IN_PROGRESS)
        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(order, OrderStatus.PENDING, role)

    def test_buyer_cannot_start_work(self, state_machine: OrderStateMachine) -> None:
        with pytest.raises(ForbiddenError) as exc_info:
            state_machine.validate_transition(
                make_order(), OrderStatus.IN_PROGRESS, ActorRole.BUYER
            )

        assert exc_info.value.context["permitted_roles"] == ["seller"]

    def test_seller_cannot_complete(self, state_machine: OrderStateMachine) -> None:
        order = make_order(status=OrderStatus.DELIVERED)
        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(order, OrderStatus.COMPLETED, ActorRole.SELLER)

    def test_admin_may_only_cancel(self, state_machine: OrderStateMachine) -> None:
        order = make_order(status=OrderStatus.DELIVERED)
        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(order, OrderStatus.COMPLETED, ActorRole.ADMIN)

        target = state_machine.validate_transition(
            order, OrderStatus.CANCELLED, ActorRole.ADMIN
        )
        assert target == OrderStatus.CANCELLED

    def test_no_role_is_forbidden(self, state_machine: OrderStateMachine) -> None:
        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(
                make_order(), OrderStatus.CANCELLED, ActorRole.NONE
            )

    @pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
    def test_terminal_state(
        self, state_machine: OrderStateMachine, status: OrderStatus
    ) -> None:
        order = make_order(status=status)
        with pytest.raises(TerminalStateError) as exc_info:
            state_machine.validate_transition(order, OrderStatus.CANCELLED, ActorRole.BUYER)

        assert exc_info.value.context["current_status"] == status.value

    def test_role_checked_before_terminal_state(
        self, state_machine: OrderStateMachine
    ) -> None:
        order = make_order(status=OrderStatus.COMPLETED)
        with pytest.raises(ForbiddenError):
            state_machine.validate_transition(order, OrderStatus.DELIVERED, ActorRole.BUYER)

    def test_edge_outside_graph(self, state_machine: OrderStateMachine) -> None:
        with pytest.raises(InvalidStatusError) as exc_info:
            state_machine.validate_transition(
                make_order(), OrderStatus.DELIVERED, ActorRole.SELLER
            )

        assert exc_info.value.context["allowed_transitions"] == [
            "Cancelled",
            "In Progress",
        ]

    def test_revision_limit_reached(self, state_machine: OrderStateMachine) -> None:
        order = make_order(
            status=OrderStatus.DELIVERED, revisions_available=1, revisions_used=1
        )
        with pytest.raises(RevisionLimitExceededError) as exc_info:
            state_machine.validate_transition(
                order, OrderStatus.REVISION_REQUESTED, ActorRole.BUYER
            )

        assert exc_info.value.context["revisions_available"] == 1
        assert exc_info.value.context["revisions_used"] == 1

    def test_revision_limit_not_enforced(self, clock: Mock) -> None:
        machine = OrderStateMachine(enforce_revision_limit=False, clock=clock)
        order = make_order(
            status=OrderStatus.DELIVERED, revisions_available=0, revisions_used=0
        )

        target = machine.validate_transition(
            order, OrderStatus.REVISION_REQUESTED, ActorRole.BUYER
        )
        assert target == OrderStatus.REVISION_REQUESTED


# ============================================================================
# Apply Transition Tests
# ============================================================================


class TestApplyTransition:
    """Test mutation of the order and the side effects described."""

    def test_history_entry_appended(
        self, state_machine: OrderStateMachine, seller: Actor
    ) -> None:
        order = make_order(
            status_history=[{"status": "Pending", "note": "Order created"}]
        )

        result = state_machine.apply_transition(
            order, "In Progress", seller, ActorRole.SELLER
        )

        assert result.previous_status == OrderStatus.PENDING
        assert result.new_status == OrderStatus.IN_PROGRESS
        assert order.status == OrderStatus.IN_PROGRESS
        assert len(order.status_history) == 2
        assert order.status_history[-1] == {
            "status": "In Progress",
            "note": "Status changed to In Progress",
            "changed_at": NOW.isoformat(),
            "changed_by": SELLER_ID,
        }

    def test_custom_note(self, state_machine: OrderStateMachine, seller: Actor) -> None:
        order = make_order()
        state_machine.apply_transition(
            order, OrderStatus.IN_PROGRESS, seller, ActorRole.SELLER, note="Starting"
        )
        assert order.status_history[-1]["note"] == "Starting"

    def test_failed_transition_leaves_order_untouched(
        self, state_machine: OrderStateMachine, buyer: Actor
    ) -> None:
        order = make_order()
        with pytest.raises(ForbiddenError):
            state_machine.apply_transition(
                order, OrderStatus.IN_PROGRESS, buyer, ActorRole.BUYER
            )

        assert order.status == OrderStatus.PENDING
        assert order.status_history == []

    def test_status_change_notifies_counterparty(
        self, state_machine: OrderStateMachine, seller: Actor
    ) -> None:
        result = state_machine.apply_transition(
            make_order(), OrderStatus.IN_PROGRESS, seller, ActorRole.SELLER
        )

        assert len(result.side_effects) == 1
        effect = result.side_effects[0]
        assert effect.kind == SideEffectKind.NOTIFY
        assert effect.params["user_id"] == BUYER_ID
        assert effect.params["event"] == "order.status_changed"
        assert effect.params["payload"]["previous_status"] == "Pending"
        assert effect.params["payload"]["status"] == "In Progress"

    def test_first_completion(
        self, state_machine: OrderStateMachine, buyer: Actor
    ) -> None:
        order = make_order(status=OrderStatus.DELIVERED)

        result = state_machine.apply_transition(
            order, OrderStatus.COMPLETED, buyer, ActorRole.BUYER
        )

        assert result.first_completion is True
        assert order.completed_at == NOW
        kinds = [effect.kind for effect in result.side_effects]
        assert kinds == [
            SideEffectKind.NOTIFY,
            SideEffectKind.INCREMENT_SELLER_COUNTER,
            SideEffectKind.INCREMENT_SELLER_COUNTER,
            SideEffectKind.INCREMENT_SERVICE_SALES,
            SideEffectKind.NOTIFY,
        ]
        counters = {
            effect.params["field"]: effect.params["amount"]
            for effect in result.side_effects
            if effect.kind == SideEffectKind.INCREMENT_SELLER_COUNTER
        }
        assert counters == {"completed_projects": 1, "ongoing_projects": -1}
        completion_notice = result.side_effects[-1]
        assert completion_notice.params["user_id"] == BUYER_ID
        assert completion_notice.params["payload"]["can_review"] is True

    def test_completed_at_not_restamped(
        self, state_machine: OrderStateMachine, buyer: Actor
    ) -> None:
        earlier = NOW - timedelta(days=7)
        order = make_order(status=OrderStatus.DELIVERED, completed_at=earlier)

        result = state_machine.apply_transition(
            order, OrderStatus.COMPLETED, buyer, ActorRole.BUYER
        )

        assert result.first_completion is False
        assert order.completed_at == earlier
        assert all(
            effect.kind == SideEffectKind.NOTIFY for effect in result.side_effects
        )

    def test_second_completion_is_terminal(
        self, state_machine: OrderStateMachine, buyer: Actor
    ) -> None:
        order = make_order(status=OrderStatus.DELIVERED)
        state_machine.apply_transition(order, OrderStatus.COMPLETED, buyer, ActorRole.BUYER)
        stamped = order.completed_at

        with pytest.raises(TerminalStateError):
            state_machine.apply_transition(
                order, OrderStatus.COMPLETED, buyer, ActorRole.BUYER
            )
        assert order.completed_at == stamped
        assert len(order.status_history) == 1

    def test_revised_delivery_counts_revision(
        self, state_machine: OrderStateMachine, seller: Actor
    ) -> None:
        order = make_order(status=OrderStatus.REVISION_REQUESTED, revisions_used=0)

        state_machine.apply_transition(order, OrderStatus.DELIVERED, seller, ActorRole.SELLER)

        assert order.revisions_used == 1

    def test_first_delivery_does_not_count_revision(
        self, state_machine: OrderStateMachine, seller: Actor
    ) -> None:
        order = make_order(status=OrderStatus.IN_PROGRESS)
        state_machine.apply_transition(order, OrderStatus.DELIVERED, seller, ActorRole.SELLER)
        assert order.revisions_used == 0

    def test_cancel_releases_seller_slot(
        self, state_machine: OrderStateMachine, admin: Actor
    ) -> None:
        order = make_order(status=OrderStatus.IN_PROGRESS)

        result = state_machine.apply_transition(
            order, OrderStatus.CANCELLED, admin, ActorRole.ADMIN
        )

        notified = [
            effect.params["user_id"]
            for effect in result.side_effects
            if effect.kind == SideEffectKind.NOTIFY
        ]
        assert notified == [BUYER_ID, SELLER_ID]
        assert all(
            effect.params["event"] == "order.cancelled"
            for effect in result.side_effects
            if effect.kind == SideEffectKind.NOTIFY
        )
        assert result.side_effects[-1].kind == SideEffectKind.INCREMENT_SELLER_COUNTER
        assert result.side_effects[-1].params["amount"] == -1

    def test_cancel_approves_pending_request(
        self, state_machine: OrderStateMachine, seller: Actor
    ) -> None:
        order = make_order(
            status=OrderStatus.IN_PROGRESS,
            cancellation_request={
                "is_requested": True,
                "requested_by": "buyer",
                "reason": "No longer needed",
                "request_date": (NOW - timedelta(hours=2)).isoformat(),
                "status": "pending",
                "resolved_date": None,
            },
        )

        state_machine.apply_transition(order, OrderStatus.CANCELLED, seller, ActorRole.SELLER)

        assert order.cancellation_request["is_requested"] is False
        assert order.cancellation_request["status"] == "approved"
        assert order.cancellation_request["resolved_date"] == NOW.isoformat()
        assert order.cancellation_request["reason"] == "No longer needed"

    def test_clock_used_once_per_transition(
        self, state_machine: OrderStateMachine, seller: Actor, clock: Mock
    ) -> None:
        state_machine.apply_transition(
            make_order(), OrderStatus.IN_PROGRESS, seller, ActorRole.SELLER
        )
        clock.assert_called_once_with()
