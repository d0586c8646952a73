"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase, mixins for timestamps
and 24-hex object identifiers, a portable JSON column type and base model
utilities with async session support.
"""

import secrets
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.types import TypeDecorator

from gigmarket.core.logging import get_logger

logger = get_logger(__name__)

OBJECT_ID_LENGTH = 24

# JSONB on PostgreSQL, generic JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_object_id() -> str:
    """Generate an opaque 24-hex-character identifier."""
    return secrets.token_hex(OBJECT_ID_LENGTH // 2)


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    Values are normalized to UTC on the way in and re-labelled as UTC on the
    way out, since SQLite drops tzinfo.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides common functionality for all database models including
    async attribute loading and a primary-key repr.
    """

    __abstract__ = True

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.key, None)
            if value is not None:
                pk_values.append(f"{column.key}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class ObjectIdMixin:
    """Mixin providing a 24-hex string primary key."""

    @declared_attr
    def id(cls) -> Mapped[str]:
        return mapped_column(
            String(OBJECT_ID_LENGTH),
            primary_key=True,
            default=generate_object_id,
            comment="Opaque 24-hex identifier",
        )


class TimestampMixin:
    """
    Mixin for timestamp management.

    Timestamps are filled in application code so that derived values (such
    as an order's due date) can be computed from the same instant.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            UTCDateTime(),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            UTCDateTime(),
            nullable=False,
            default=utcnow,
            onupdate=utcnow,
            server_default=func.now(),
            comment="Timestamp when record was last updated",
        )


class BaseModel(Base, ObjectIdMixin, TimestampMixin):
    """
    Base model with object id primary key and timestamps.

    Example:
        class User(BaseModel):
            __tablename__ = "users"

            email: Mapped[str] = mapped_column(String(255), unique=True)
    """

    __abstract__ = True
