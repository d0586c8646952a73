"""
Tests for NotificationService.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.database.models import Notification, NotificationEvent
from gigmarket.services.notifications.service import (
    NotificationService,
    NotificationServiceError,
)


class TestNotify:
    """Test queuing notifications."""

    async def test_notification_queued(self, session_factory, buyer) -> None:
        async with session_factory() as session, session.begin():
            notification = await NotificationService(session).notify(
                buyer.id,
                NotificationEvent.ORDER_COMPLETED,
                {"order_id": "1" * 24, "can_review": True},
            )

        assert len(notification.id) == 24
        async with session_factory() as session:
            stored = (await session.execute(select(Notification))).scalar_one()
        assert stored.user_id == buyer.id
        assert stored.event == NotificationEvent.ORDER_COMPLETED
        assert stored.payload == {"order_id": "1" * 24, "can_review": True}

    async def test_event_value_accepted(self, session, seller) -> None:
        notification = await NotificationService(session).notify(
            seller.id, "order.created"
        )
        assert notification.event == NotificationEvent.ORDER_CREATED
        assert notification.payload == {}

    async def test_unknown_event(self, session, seller) -> None:
        with pytest.raises(ValueError):
            await NotificationService(session).notify(seller.id, "order.shipped")

    async def test_storage_failure(self) -> None:
        session = AsyncMock(spec=AsyncSession)
        session.add = MagicMock()
        session.flush.side_effect = IntegrityError("INSERT", {}, Exception("fk"))

        with pytest.raises(NotificationServiceError) as exc_info:
            await NotificationService(session).notify(
                "a" * 24, NotificationEvent.ORDER_DELETED
            )
        assert exc_info.value.context["notification_event"] == "order.deleted"
