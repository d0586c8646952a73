"""
Cross-aggregate side effects of order lifecycle operations.

An operation describes the updates it needs on other aggregates (seller
counters, service sales and ratings, buyer purchases, notifications) as
``SideEffect`` values. They are dispatched only after the order's own
transaction has committed, each in its own transaction, and retried with
exponential back-off. Effects that still fail are logged and reported back
to the caller; they never roll back the order.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gigmarket.core.exceptions import MarketplaceError
from gigmarket.core.logging import get_logger
from gigmarket.database.models.notification import NotificationEvent
from gigmarket.services.catalog.repository import (
    CatalogRepositoryError,
    ServiceRepository,
)
from gigmarket.services.notifications.service import (
    NotificationService,
    NotificationServiceError,
)
from gigmarket.services.users.repository import UserRepository, UserRepositoryError

logger = get_logger(__name__)

RETRYABLE_ERRORS = (
    SQLAlchemyError,
    UserRepositoryError,
    CatalogRepositoryError,
    NotificationServiceError,
)


class SideEffectKind(str, Enum):
    ADD_PURCHASED_SERVICE = "add_purchased_service"
    INCREMENT_SELLER_COUNTER = "increment_seller_counter"
    INCREMENT_SERVICE_SALES = "increment_service_sales"
    ADD_SERVICE_REVIEW = "add_service_review"
    NOTIFY = "notify"


@dataclass(frozen=True)
class SideEffect:
    """A single update to another aggregate, described as data."""

    kind: SideEffectKind
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def notify(
        cls, user_id: str, event: NotificationEvent, **payload: Any
    ) -> "SideEffect":
        return cls(
            SideEffectKind.NOTIFY,
            {"user_id": user_id, "event": event.value, "payload": payload},
        )

    @classmethod
    def seller_counter(cls, user_id: str, counter: str, amount: int) -> "SideEffect":
        return cls(
            SideEffectKind.INCREMENT_SELLER_COUNTER,
            {"user_id": user_id, "field": counter, "amount": amount},
        )

    @classmethod
    def purchased_service(cls, user_id: str, order_id: str) -> "SideEffect":
        return cls(
            SideEffectKind.ADD_PURCHASED_SERVICE,
            {"user_id": user_id, "order_id": order_id},
        )

    @classmethod
    def service_sale(cls, service_id: str) -> "SideEffect":
        return cls(SideEffectKind.INCREMENT_SERVICE_SALES, {"service_id": service_id})

    @classmethod
    def service_review(
        cls, service_id: str, review: Dict[str, Any]
    ) -> "SideEffect":
        return cls(
            SideEffectKind.ADD_SERVICE_REVIEW,
            {"service_id": service_id, "review": review},
        )


@dataclass
class FailedSideEffect:
    effect: SideEffect
    error: str
    attempts: int


@dataclass
class DispatchReport:
    """Outcome of dispatching the side effects of one operation."""

    succeeded: List[SideEffect] = field(default_factory=list)
    failed: List[FailedSideEffect] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def warnings(self) -> List[str]:
        return [
            f"{failure.effect.kind.value} failed after {failure.attempts} "
            f"attempt(s): {failure.error}"
            for failure in self.failed
        ]


Handler = Callable[[AsyncSession, Dict[str, Any]], Awaitable[None]]


class SideEffectDispatcher:
    """
    Runs side effects after the order transaction has committed.

    Each effect gets its own transaction so one failing update cannot undo
    another. Domain errors (for example a deleted seller) are not retried.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_retries: int = 3,
        retry_backoff: float = 0.2,
    ):
        self.session_factory = session_factory
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self._handlers: Dict[SideEffectKind, Handler] = self._initialize_handlers()

    def _initialize_handlers(self) -> Dict[SideEffectKind, Handler]:
        return {
            SideEffectKind.ADD_PURCHASED_SERVICE: self._add_purchased_service,
            SideEffectKind.INCREMENT_SELLER_COUNTER: self._increment_seller_counter,
            SideEffectKind.INCREMENT_SERVICE_SALES: self._increment_service_sales,
            SideEffectKind.ADD_SERVICE_REVIEW: self._add_service_review,
            SideEffectKind.NOTIFY: self._notify,
        }

    async def dispatch(self, effects: Iterable[SideEffect]) -> DispatchReport:
        """
        Dispatch ``effects`` in order.

        Returns:
            Report listing succeeded and failed effects
        """
        report = DispatchReport()
        for effect in effects:
            error, attempts = await self._run_with_retry(effect)
            if error is None:
                report.succeeded.append(effect)
            else:
                logger.error(
                    "Side effect failed",
                    kind=effect.kind.value,
                    params=effect.params,
                    attempts=attempts,
                    error=error,
                )
                report.failed.append(
                    FailedSideEffect(effect=effect, error=error, attempts=attempts)
                )

        logger.debug(
            "Side effects dispatched",
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        return report

    async def _run_with_retry(self, effect: SideEffect) -> tuple[Any, int]:
        handler = self._handlers[effect.kind]
        error = None

        for attempt in range(self.max_retries):
            try:
                async with self.session_factory() as session, session.begin():
                    await handler(session, effect.params)
                return None, attempt + 1
            except MarketplaceError as e:
                return e.message, attempt + 1
            except RETRYABLE_ERRORS as e:
                error = str(e)
                logger.warning(
                    "Side effect attempt failed",
                    kind=effect.kind.value,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    error=error,
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.retry_backoff * (2**attempt))

        return error, self.max_retries

    # Handlers

    async def _add_purchased_service(
        self, session: AsyncSession, params: Dict[str, Any]
    ) -> None:
        await UserRepository(session).add_purchased_service(
            params["user_id"], params["order_id"]
        )

    async def _increment_seller_counter(
        self, session: AsyncSession, params: Dict[str, Any]
    ) -> None:
        await UserRepository(session).increment_seller_counter(
            params["user_id"], params["field"], params.get("amount", 1)
        )

    async def _increment_service_sales(
        self, session: AsyncSession, params: Dict[str, Any]
    ) -> None:
        await ServiceRepository(session).increment_sales(params["service_id"])

    async def _add_service_review(
        self, session: AsyncSession, params: Dict[str, Any]
    ) -> None:
        await ServiceRepository(session).add_review(
            params["service_id"], params["review"]
        )

    async def _notify(self, session: AsyncSession, params: Dict[str, Any]) -> None:
        await NotificationService(session).notify(
            params["user_id"],
            NotificationEvent(params["event"]),
            params.get("payload"),
        )
