"""
Order model for the marketplace order lifecycle.

This module defines the Order aggregate: the commercial terms frozen from a
service package at purchase time, the lifecycle status with its append-only
history, and the embedded value collections (milestones, messages, files)
and negotiation sub-records that the order exclusively owns.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from gigmarket.database.base import BaseModel, JSONType, UTCDateTime
from gigmarket.services.orders.enums import OrderStatus, PackageName


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Order(BaseModel):
    """
    Order placed by a buyer for a seller's service package.

    Embedded collections are stored as JSON lists of plain dictionaries and
    are always replaced wholesale on mutation, never edited in place, so the
    unit of work sees every change.

    Attributes:
        id: Opaque 24-hex order identifier
        service_id: Ordered service (immutable)
        service_title: Service title snapshot
        package_selected: Package tier purchased
        buyer_id: Purchasing user (immutable)
        seller_id: Selling user (immutable)
        price: Package price snapshot
        delivery_time: Package delivery time in days
        due_date: Derived from created_at, delivery_time and approved extensions
        approved_extension_days: Sum of approved extension days
        requirements: Buyer supplied requirements
        status: Current lifecycle status
        status_history: Append-only list of status changes
        progress: Derived milestone completion percentage
        milestones: Ordered milestone records
        messages: Append-only message thread
        files: Append-only uploaded file metadata
        review: Buyer review, at most one
        extended_delivery: Current delivery extension request
        cancellation_request: Current cancellation request
        revisions_available: Revisions included in the package
        revisions_used: Revisions delivered so far
        completed_at: Set once on first arrival at Completed
        version_id: Optimistic concurrency counter
    """

    __tablename__ = "orders"

    service_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Ordered service identifier",
    )

    service_title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Service title at purchase time",
    )

    package_selected: Mapped[PackageName] = mapped_column(
        SQLEnum(
            PackageName,
            name="package_name",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        comment="Purchased package tier",
    )

    buyer_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="User who placed the order",
    )

    seller_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="User fulfilling the order",
    )

    # Commercial terms frozen at purchase time
    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Package price at purchase time",
    )

    delivery_time: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Package delivery time in days",
    )

    due_date: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
        comment="Delivery due date",
    )

    approved_extension_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Total days added by approved extensions",
    )

    requirements: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Buyer requirements",
    )

    revisions_available: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Revisions included in the package",
    )

    revisions_used: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Revisions delivered",
    )

    # Lifecycle state
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            native_enum=False,
            length=32,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    progress: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Milestone completion percentage",
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="First arrival at Completed",
    )

    # Embedded collections and sub-records
    status_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    milestones: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    messages: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    files: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    review: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType, nullable=True
    )
    extended_delivery: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType, nullable=True
    )
    cancellation_request: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType, nullable=True
    )

    version_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic concurrency version",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("ix_orders_buyer_status", "buyer_id", "status"),
        Index("ix_orders_seller_status", "seller_id", "status"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_orders_progress_range"),
        CheckConstraint("price >= 0", name="ck_orders_price_non_negative"),
        CheckConstraint("delivery_time >= 1", name="ck_orders_delivery_time_positive"),
        CheckConstraint("revisions_used >= 0", name="ck_orders_revisions_used_non_negative"),
    )

    @property
    def is_closed(self) -> bool:
        """True once the order reached Completed or Cancelled."""
        return self.status.is_terminal()

    @property
    def has_pending_cancellation(self) -> bool:
        request = self.cancellation_request or {}
        return bool(request.get("is_requested"))

    @property
    def has_pending_extension(self) -> bool:
        extension = self.extended_delivery or {}
        return bool(extension.get("is_requested")) and extension.get("approved_at") is None
