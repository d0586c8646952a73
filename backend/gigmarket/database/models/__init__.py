"""
Database models package initialization.

This module exports all database models so they are registered with the
Base metadata for table creation and Alembic migration generation.
"""

from gigmarket.database.base import Base, BaseModel, ObjectIdMixin, TimestampMixin
from gigmarket.database.models.notification import Notification, NotificationEvent
from gigmarket.database.models.order import Order
from gigmarket.database.models.service import Service
from gigmarket.database.models.user import User

__all__ = [
    "Base",
    "BaseModel",
    "ObjectIdMixin",
    "TimestampMixin",
    "Notification",
    "NotificationEvent",
    "Order",
    "Service",
    "User",
]
