"""
User data access used by the order lifecycle.

Counter updates are single UPDATE statements so concurrent orders for the
same seller never lose increments.
"""

from typing import Any, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.exceptions import InvalidArgumentError, NotFoundError
from gigmarket.core.logging import get_logger
from gigmarket.database.models.user import User

logger = get_logger(__name__)

SELLER_COUNTERS = frozenset({"completed_projects", "ongoing_projects"})


class UserRepositoryError(Exception):
    """Raised when a user query or update fails."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class UserRepository:
    """Repository for user lookups and seller/buyer aggregate updates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        """Get user by id or None."""
        try:
            return await self.session.get(User, user_id)
        except SQLAlchemyError as e:
            logger.error("Failed to fetch user", user_id=user_id, error=str(e))
            raise UserRepositoryError(
                "Failed to fetch user", user_id=user_id, error=str(e)
            ) from e

    async def get_user_by_id(self, user_id: str) -> User:
        """
        Get user by id.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = await self.find_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found", entity="user", user_id=user_id)
        return user

    async def increment_seller_counter(
        self, user_id: str, field: str, amount: int = 1
    ) -> None:
        """
        Atomically adjust a seller counter, never dropping below zero.

        Args:
            user_id: Seller
            field: ``completed_projects`` or ``ongoing_projects``
            amount: Signed adjustment

        Raises:
            InvalidArgumentError: If ``field`` is not a seller counter
            NotFoundError: If the user does not exist
        """
        if field not in SELLER_COUNTERS:
            raise InvalidArgumentError(
                f"Unknown seller counter: {field}",
                field="field",
                allowed=sorted(SELLER_COUNTERS),
            )

        column = getattr(User, field)
        new_value = column + amount
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values({field: case((new_value < 0, 0), else_=new_value)})
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to update seller counter",
                user_id=user_id,
                counter=field,
                error=str(e),
            )
            raise UserRepositoryError(
                "Failed to update seller counter",
                user_id=user_id,
                counter=field,
                error=str(e),
            ) from e

        if result.rowcount == 0:
            raise NotFoundError("User not found", entity="user", user_id=user_id)

        logger.debug(
            "Seller counter updated", user_id=user_id, counter=field, amount=amount
        )

    async def add_purchased_service(self, user_id: str, order_id: str) -> None:
        """Record ``order_id`` in the buyer's purchases; repeats are ignored."""
        stmt = select(User).where(User.id == user_id).with_for_update()
        try:
            result = await self.session.execute(stmt)
            user = result.scalar_one_or_none()
            if user is None:
                raise NotFoundError("User not found", entity="user", user_id=user_id)

            purchased = list(user.purchased_services or [])
            if order_id not in purchased:
                user.purchased_services = [*purchased, order_id]
                await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to record purchase",
                user_id=user_id,
                order_id=order_id,
                error=str(e),
            )
            raise UserRepositoryError(
                "Failed to record purchase",
                user_id=user_id,
                order_id=order_id,
                error=str(e),
            ) from e
