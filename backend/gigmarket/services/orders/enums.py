"""Order lifecycle enums, transition graph and role permission table.

This module defines the core enums for order management together with the
status transition graph and the table of actor roles permitted to drive an
order into each status.
"""

from enum import Enum
from typing import Dict, FrozenSet, Set

from gigmarket.core.exceptions import InvalidStatusError


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> IN_PROGRESS, CANCELLED
    - IN_PROGRESS -> DELIVERED, CANCELLED
    - DELIVERED -> REVISION_REQUESTED, COMPLETED, CANCELLED
    - REVISION_REQUESTED -> DELIVERED, CANCELLED
    - COMPLETED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    DELIVERED = "Delivered"
    REVISION_REQUESTED = "Revision Requested"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Accepts either the display value ("In Progress") or the member
        name ("IN_PROGRESS").

        Raises:
            InvalidStatusError: If value is not one of the six statuses
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            pass
        try:
            return cls[str(value).strip().upper().replace(" ", "_")]
        except KeyError:
            valid_values = ", ".join(s.value for s in cls)
            raise InvalidStatusError(
                f"Invalid order status: {value}. Valid values are: {valid_values}",
                field="status",
                value=value,
                allowed=[s.value for s in cls],
            )

    def is_terminal(self) -> bool:
        """Check if status is terminal (Completed or Cancelled)."""
        return self in TERMINAL_STATUSES


class ActorRole(str, Enum):
    """Role of the acting user relative to a specific order."""

    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    NONE = "none"

    @property
    def is_party(self) -> bool:
        """True for the buyer or seller of the order."""
        return self in (ActorRole.BUYER, ActorRole.SELLER)


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class CancellationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PackageName(str, Enum):
    """Pricing package tiers a service may offer."""

    BASIC = "Basic"
    STANDARD = "Standard"
    PREMIUM = "Premium"


class FileType(str, Enum):
    PDF = "pdf"
    IMAGE = "image"
    DOCUMENT = "document"
    ARCHIVE = "archive"
    OTHER = "other"


class FileCategory(str, Enum):
    DELIVERABLE = "deliverable"
    REFERENCE = "reference"
    DRAFT = "draft"


TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.COMPLETED, OrderStatus.CANCELLED}
)


ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.IN_PROGRESS,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.IN_PROGRESS: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.DELIVERED: frozenset({
        OrderStatus.REVISION_REQUESTED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.REVISION_REQUESTED: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


# Roles allowed to move an order INTO the keyed status. Pending is only ever
# the initial status, so nobody may transition into it.
STATUS_PERMISSIONS: Dict[OrderStatus, FrozenSet[ActorRole]] = {
    OrderStatus.PENDING: frozenset(),
    OrderStatus.IN_PROGRESS: frozenset({ActorRole.SELLER}),
    OrderStatus.DELIVERED: frozenset({ActorRole.SELLER}),
    OrderStatus.REVISION_REQUESTED: frozenset({ActorRole.BUYER}),
    OrderStatus.COMPLETED: frozenset({ActorRole.BUYER}),
    OrderStatus.CANCELLED: frozenset({
        ActorRole.BUYER,
        ActorRole.SELLER,
        ActorRole.ADMIN,
    }),
}


def validate_order_status_transition(
    current: OrderStatus, target: OrderStatus
) -> bool:
    """Check whether ``current -> target`` is an edge of the lifecycle graph."""
    return target in ORDER_STATUS_TRANSITIONS.get(current, frozenset())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get the statuses reachable in one step from ``current``."""
    return set(ORDER_STATUS_TRANSITIONS.get(current, frozenset()))


def get_permitted_roles(target: OrderStatus) -> FrozenSet[ActorRole]:
    """Get the actor roles allowed to move an order into ``target``."""
    return STATUS_PERMISSIONS.get(target, frozenset())
