"""
Notification model for queued user notifications.

Rows are written by the order lifecycle and picked up by the delivery
channel; the lifecycle never waits on delivery.
"""

import enum
from typing import Any

from sqlalchemy import Boolean, Enum as SQLEnum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from gigmarket.database.base import BaseModel, JSONType


class NotificationEvent(str, enum.Enum):
    """Notification event enumeration."""

    ORDER_CREATED = "order.created"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_COMPLETED = "order.completed"
    ORDER_CANCELLED = "order.cancelled"
    ORDER_DELETED = "order.deleted"
    MILESTONE_COMPLETED = "order.milestone_completed"
    EXTENSION_REQUESTED = "order.extension_requested"
    EXTENSION_RESOLVED = "order.extension_resolved"
    CANCELLATION_REQUESTED = "order.cancellation_requested"
    CANCELLATION_RESOLVED = "order.cancellation_resolved"
    MESSAGE_RECEIVED = "order.message_received"
    REVIEW_RECEIVED = "order.review_received"


class Notification(BaseModel):
    """
    Queued notification for a user.

    Attributes:
        user_id: Recipient
        event: Event type
        payload: Event data for rendering
        is_read: Whether the recipient has seen it
    """

    __tablename__ = "notifications"

    user_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="Recipient user",
    )

    event: Mapped[NotificationEvent] = mapped_column(
        SQLEnum(
            NotificationEvent,
            name="notification_event",
            native_enum=False,
            length=64,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        comment="Notification event type",
    )

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Event payload",
    )

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )
