"""
Order data access repository.

This module implements the OrderRepository class providing async methods for
storing orders, loading them for an atomic read-modify-write, paginated
listings by party and status, and the delete-only-if-still-Pending rule
enforced in a single conditional statement.
"""

from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from gigmarket.core.exceptions import ConflictError, InvalidArgumentError, NotFoundError
from gigmarket.core.logging import get_logger
from gigmarket.database.models.order import Order
from gigmarket.services.orders.enums import OrderStatus

logger = get_logger(__name__)

SORT_OPTIONS = {
    "newest": (Order.created_at.desc(), Order.id.desc()),
    "oldest": (Order.created_at.asc(), Order.id.asc()),
    "due-soon": (Order.due_date.asc(), Order.id.asc()),
    "price-low": (Order.price.asc(), Order.id.asc()),
    "price-high": (Order.price.desc(), Order.id.desc()),
}


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderRepository:
    """
    Repository for order data access operations.

    The caller owns the transaction; methods only flush.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, order: Order) -> Order:
        """
        Persist a new order.

        Raises:
            OrderRepositoryError: If the insert fails
        """
        try:
            self.session.add(order)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to create order",
                buyer_id=order.buyer_id,
                service_id=order.service_id,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to create order",
                buyer_id=order.buyer_id,
                service_id=order.service_id,
                error=str(e),
            ) from e

        logger.info("Order created", order_id=order.id, buyer_id=order.buyer_id)
        return order

    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        """
        Get order by id.

        Returns:
            Order if found, None otherwise
        """
        try:
            return await self.session.get(Order, order_id)
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=order_id, error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order", order_id=order_id, error=str(e)
            ) from e

    async def get_order_for_update(self, order_id: str) -> Order:
        """
        Load an order for a read-modify-write.

        The row is locked with SELECT ... FOR UPDATE where the database
        supports it, and the version column catches any writer that slips
        through.

        Raises:
            NotFoundError: If the order does not exist
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.execute(stmt)
            order = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to lock order", order_id=order_id, error=str(e))
            raise OrderRepositoryError(
                "Failed to lock order", order_id=order_id, error=str(e)
            ) from e

        if order is None:
            raise NotFoundError("Order not found", entity="order", order_id=order_id)
        return order

    async def save(self, order: Order) -> Order:
        """
        Flush pending changes of ``order``.

        Raises:
            ConflictError: If another transaction updated the order first
            OrderRepositoryError: If the update fails
        """
        try:
            await self.session.flush()
        except StaleDataError as e:
            logger.warning(
                "Concurrent order update detected",
                order_id=order.id,
                version_id=order.version_id,
            )
            raise ConflictError(
                "Order was modified concurrently, retry the operation",
                order_id=order.id,
            ) from e
        except SQLAlchemyError as e:
            logger.error("Failed to save order", order_id=order.id, error=str(e))
            raise OrderRepositoryError(
                "Failed to save order", order_id=order.id, error=str(e)
            ) from e

        logger.debug("Order saved", order_id=order.id, version_id=order.version_id)
        return order

    async def delete_if_pending(self, order_id: str) -> bool:
        """
        Delete the order only while it is still Pending.

        The status check and the delete are one statement, so a concurrent
        transition out of Pending wins over the delete.

        Returns:
            True if a row was deleted
        """
        stmt = delete(Order).where(
            and_(Order.id == order_id, Order.status == OrderStatus.PENDING)
        )
        try:
            result = await self.session.execute(
                stmt, execution_options={"synchronize_session": False}
            )
        except SQLAlchemyError as e:
            logger.error("Failed to delete order", order_id=order_id, error=str(e))
            raise OrderRepositoryError(
                "Failed to delete order", order_id=order_id, error=str(e)
            ) from e

        deleted = result.rowcount > 0
        logger.info("Pending order delete", order_id=order_id, deleted=deleted)
        return deleted

    async def list_orders(
        self,
        buyer_id: Optional[str] = None,
        seller_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        sort_by: str = "newest",
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        List orders with pagination.

        Args:
            buyer_id: Restrict to this buyer
            seller_id: Restrict to this seller
            status: Optional status filter
            created_from: Only orders created at or after this time
            created_to: Only orders created at or before this time
            sort_by: One of SORT_OPTIONS
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)

        Raises:
            InvalidArgumentError: If sort_by is unknown
        """
        if sort_by not in SORT_OPTIONS:
            raise InvalidArgumentError(
                f"Unknown sort order: {sort_by}",
                field="sort_by",
                allowed=list(SORT_OPTIONS),
            )

        conditions = []
        if buyer_id is not None:
            conditions.append(Order.buyer_id == buyer_id)
        if seller_id is not None:
            conditions.append(Order.seller_id == seller_id)
        if status is not None:
            conditions.append(Order.status == status)
        if created_from is not None:
            conditions.append(Order.created_at >= created_from)
        if created_to is not None:
            conditions.append(Order.created_at <= created_to)

        stmt = (
            select(Order)
            .where(and_(True, *conditions))
            .order_by(*SORT_OPTIONS[sort_by])
            .offset(skip)
            .limit(limit)
        )
        count_stmt = (
            select(func.count()).select_from(Order).where(and_(True, *conditions))
        )

        try:
            result = await self.session.execute(stmt)
            count_result = await self.session.execute(count_stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list orders",
                buyer_id=buyer_id,
                seller_id=seller_id,
                error=str(e),
            )
            raise OrderRepositoryError(
                "Failed to list orders",
                buyer_id=buyer_id,
                seller_id=seller_id,
                error=str(e),
            ) from e

        orders = result.scalars().all()
        total_count = count_result.scalar_one()

        logger.debug(
            "Orders fetched",
            buyer_id=buyer_id,
            seller_id=seller_id,
            count=len(orders),
            total=total_count,
        )
        return orders, total_count
