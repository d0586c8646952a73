"""
Tests for post-commit side effect dispatch.

Handlers run against the in-memory database; retry behaviour is exercised
with a session factory whose handler is patched to fail.
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from gigmarket.database.models import Notification, NotificationEvent, Service, User
from gigmarket.services.orders.effects import (
    DispatchReport,
    SideEffect,
    SideEffectDispatcher,
    SideEffectKind,
)


@pytest.fixture
def dispatcher(session_factory) -> SideEffectDispatcher:
    return SideEffectDispatcher(session_factory, max_retries=3, retry_backoff=0.0)


class TestSideEffectConstructors:
    def test_notify_serializes_event(self) -> None:
        effect = SideEffect.notify("a" * 24, NotificationEvent.ORDER_CREATED, order_id="x")

        assert effect.kind == SideEffectKind.NOTIFY
        assert effect.params == {
            "user_id": "a" * 24,
            "event": "order.created",
            "payload": {"order_id": "x"},
        }

    def test_seller_counter(self) -> None:
        effect = SideEffect.seller_counter("b" * 24, "ongoing_projects", -1)
        assert effect.params == {
            "user_id": "b" * 24,
            "field": "ongoing_projects",
            "amount": -1,
        }

    def test_empty_report_is_ok(self) -> None:
        report = DispatchReport()
        assert report.ok is True
        assert report.warnings == []


class TestDispatchHandlers:
    """Test each effect kind against the database."""

    async def test_seller_counters(self, dispatcher, session_factory, seller) -> None:
        report = await dispatcher.dispatch([
            SideEffect.seller_counter(seller.id, "ongoing_projects", 1),
            SideEffect.seller_counter(seller.id, "ongoing_projects", 1),
            SideEffect.seller_counter(seller.id, "completed_projects", 1),
            SideEffect.seller_counter(seller.id, "ongoing_projects", -1),
        ])

        assert report.ok
        assert len(report.succeeded) == 4
        async with session_factory() as session:
            user = await session.get(User, seller.id)
        assert user.ongoing_projects == 1
        assert user.completed_projects == 1

    async def test_counter_never_negative(self, dispatcher, session_factory, seller) -> None:
        report = await dispatcher.dispatch(
            [SideEffect.seller_counter(seller.id, "ongoing_projects", -1)]
        )

        assert report.ok
        async with session_factory() as session:
            user = await session.get(User, seller.id)
        assert user.ongoing_projects == 0

    async def test_purchased_service_idempotent(
        self, dispatcher, session_factory, buyer
    ) -> None:
        effect = SideEffect.purchased_service(buyer.id, "f" * 24)

        await dispatcher.dispatch([effect, effect])

        async with session_factory() as session:
            user = await session.get(User, buyer.id)
        assert user.purchased_services == ["f" * 24]

    async def test_service_sale(self, dispatcher, session_factory, service) -> None:
        await dispatcher.dispatch([SideEffect.service_sale(service.id)])

        async with session_factory() as session:
            stored = await session.get(Service, service.id)
        assert stored.total_sales == 1

    async def test_service_review_recomputes_rating(
        self, dispatcher, session_factory, service, buyer
    ) -> None:
        await dispatcher.dispatch([
            SideEffect.service_review(
                service.id, {"order_id": "1" * 24, "user_id": buyer.id, "rating": 5}
            ),
            SideEffect.service_review(
                service.id, {"order_id": "2" * 24, "user_id": buyer.id, "rating": 4}
            ),
        ])

        async with session_factory() as session:
            stored = await session.get(Service, service.id)
        assert stored.total_reviews == 2
        assert stored.average_rating == 4.5

    async def test_notify(self, dispatcher, session_factory, seller) -> None:
        await dispatcher.dispatch([
            SideEffect.notify(
                seller.id, NotificationEvent.ORDER_CREATED, order_id="9" * 24
            )
        ])

        async with session_factory() as session:
            rows = (await session.execute(select(Notification))).scalars().all()
        assert len(rows) == 1
        assert rows[0].user_id == seller.id
        assert rows[0].event == NotificationEvent.ORDER_CREATED
        assert rows[0].payload == {"order_id": "9" * 24}
        assert rows[0].is_read is False


class TestDispatchFailures:
    """Test retry, reporting and isolation of failing effects."""

    async def test_domain_error_not_retried(self, dispatcher) -> None:
        report = await dispatcher.dispatch(
            [SideEffect.seller_counter("0" * 24, "ongoing_projects", 1)]
        )

        assert not report.ok
        assert report.failed[0].attempts == 1
        assert report.failed[0].error == "User not found"
        assert report.warnings == [
            "increment_seller_counter failed after 1 attempt(s): User not found"
        ]

    async def test_transient_error_retried(self, dispatcher, session_factory, seller) -> None:
        handler = AsyncMock(
            side_effect=[OperationalError("UPDATE users", {}, Exception("locked")), None]
        )
        dispatcher._handlers[SideEffectKind.INCREMENT_SELLER_COUNTER] = handler

        report = await dispatcher.dispatch(
            [SideEffect.seller_counter(seller.id, "ongoing_projects", 1)]
        )

        assert report.ok
        assert handler.await_count == 2

    async def test_retries_exhausted(self, dispatcher, seller) -> None:
        handler = AsyncMock(
            side_effect=OperationalError("UPDATE users", {}, Exception("locked"))
        )
        dispatcher._handlers[SideEffectKind.INCREMENT_SELLER_COUNTER] = handler

        with patch("gigmarket.services.orders.effects.asyncio.sleep") as sleep:
            report = await dispatcher.dispatch(
                [SideEffect.seller_counter(seller.id, "ongoing_projects", 1)]
            )

        assert handler.await_count == 3
        assert sleep.await_count == 2
        assert report.failed[0].attempts == 3

    async def test_failure_does_not_stop_other_effects(
        self, dispatcher, session_factory, seller
    ) -> None:
        report = await dispatcher.dispatch([
            SideEffect.service_sale("0" * 24),
            SideEffect.seller_counter(seller.id, "ongoing_projects", 1),
        ])

        assert len(report.failed) == 1
        assert report.failed[0].effect.kind == SideEffectKind.INCREMENT_SERVICE_SALES
        assert len(report.succeeded) == 1
        async with session_factory() as session:
            user = await session.get(User, seller.id)
        assert user.ongoing_projects == 1

    async def test_backoff_is_exponential(self, session_factory, seller) -> None:
        dispatcher = SideEffectDispatcher(session_factory, max_retries=3, retry_backoff=0.5)
        dispatcher._handlers[SideEffectKind.NOTIFY] = AsyncMock(
            side_effect=OperationalError("INSERT", {}, Exception("down"))
        )

        with patch("gigmarket.services.orders.effects.asyncio.sleep") as sleep:
            await dispatcher.dispatch(
                [SideEffect.notify(seller.id, NotificationEvent.ORDER_CREATED)]
            )

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]
