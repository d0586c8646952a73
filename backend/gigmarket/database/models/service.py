"""
Service model for seller offerings.

The catalog itself is maintained elsewhere; the order lifecycle reads a
service's pricing packages at purchase time and keeps its review
aggregates current.
"""

from typing import Any

from sqlalchemy import Boolean, CheckConstraint, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from gigmarket.database.base import BaseModel, JSONType


class Service(BaseModel):
    """
    Service offered by a seller.

    Attributes:
        id: Opaque 24-hex service identifier
        seller_id: Owning seller
        title: Service title
        pricing_packages: List of {name, description, price, deliveryTime, revisions}
        reviews: List of {user_id, order_id, rating, comment, created_at}
        average_rating: Mean review rating rounded to one decimal
        total_reviews: Number of reviews
        total_sales: Number of completed orders
        is_active: Whether the service is listed
    """

    __tablename__ = "services"

    seller_id: Mapped[str] = mapped_column(
        String(24),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Seller offering the service",
    )

    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Service title",
    )

    pricing_packages: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Pricing packages offered",
    )

    reviews: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Buyer reviews",
    )

    average_rating: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        comment="Average review rating",
    )

    total_reviews: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of reviews",
    )

    total_sales: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of completed orders",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the service is listed",
    )

    __table_args__ = (
        CheckConstraint(
            "average_rating >= 0 AND average_rating <= 5",
            name="ck_services_average_rating_range",
        ),
    )
