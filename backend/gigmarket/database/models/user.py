"""
User model as seen by the order lifecycle.

Credentials and registration live in the identity service; this table holds
the profile flags and seller counters the lifecycle reads and updates.
"""

from typing import Any

from sqlalchemy import Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from gigmarket.database.base import BaseModel, JSONType


class User(BaseModel):
    """
    Marketplace user.

    Attributes:
        id: Opaque 24-hex user identifier
        email: User email address
        name: Display name
        is_admin: Platform administrator flag
        is_seller: Whether the user sells services
        is_active: Account active status
        completed_projects: Orders completed as seller
        ongoing_projects: Open orders as seller
        purchased_services: Order ids purchased as buyer
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="User email address",
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        comment="Display name",
    )

    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_seller: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    completed_projects: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Orders completed as seller",
    )

    ongoing_projects: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Open orders as seller",
    )

    purchased_services: Mapped[list[Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Order ids purchased as buyer",
    )

    __table_args__ = (
        CheckConstraint("completed_projects >= 0", name="ck_users_completed_projects"),
        CheckConstraint("ongoing_projects >= 0", name="ck_users_ongoing_projects"),
    )
