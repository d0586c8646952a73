"""
Service catalog data access used by the order lifecycle.

Only the lookups and aggregate updates the lifecycle needs live here: the
pricing package snapshot at purchase time, review appends with synchronous
rating recomputation, and the completed-sales counter.
"""

from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.exceptions import NotFoundError
from gigmarket.core.logging import get_logger
from gigmarket.database.base import utcnow
from gigmarket.database.models.service import Service
from gigmarket.services.catalog.ratings import calculate_rating

logger = get_logger(__name__)


class CatalogRepositoryError(Exception):
    """Raised when a catalog query or update fails."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


def find_package(service: Service, name: str) -> Optional[dict[str, Any]]:
    """Return the pricing package called ``name`` or None."""
    for package in service.pricing_packages or []:
        if package.get("name") == name:
            return package
    return None


class ServiceRepository:
    """Repository for service lookups and aggregate updates."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_service_by_id(self, service_id: str) -> Service:
        """
        Get service by id.

        Raises:
            NotFoundError: If the service does not exist
            CatalogRepositoryError: If the query fails
        """
        try:
            service = await self.session.get(Service, service_id)
        except SQLAlchemyError as e:
            logger.error("Failed to fetch service", service_id=service_id, error=str(e))
            raise CatalogRepositoryError(
                "Failed to fetch service", service_id=service_id, error=str(e)
            ) from e

        if service is None:
            raise NotFoundError(
                "Service not found", entity="service", service_id=service_id
            )
        return service

    async def add_review(
        self,
        service_id: str,
        review: Mapping[str, Any],
        reviewed_at: Optional[datetime] = None,
    ) -> Service:
        """
        Append a review and recompute the rating aggregates in the same flush.

        Reviews are keyed by order id, so re-delivering the same review is a
        no-op.

        Args:
            service_id: Reviewed service
            review: Review with ``order_id``, ``user_id``, ``rating``, ``comment``
            reviewed_at: Review timestamp

        Returns:
            Updated service
        """
        stmt = select(Service).where(Service.id == service_id).with_for_update()
        try:
            result = await self.session.execute(stmt)
            service = result.scalar_one_or_none()
            if service is None:
                raise NotFoundError(
                    "Service not found", entity="service", service_id=service_id
                )

            reviews = list(service.reviews or [])
            if any(r.get("order_id") == review.get("order_id") for r in reviews):
                logger.info(
                    "Review already recorded",
                    service_id=service_id,
                    order_id=review.get("order_id"),
                )
                return service

            reviews.append({
                "order_id": review.get("order_id"),
                "user_id": review.get("user_id"),
                "rating": review["rating"],
                "comment": review.get("comment"),
                "created_at": review.get("created_at")
                or (reviewed_at or utcnow()).isoformat(),
            })
            summary = calculate_rating(reviews)

            service.reviews = reviews
            service.average_rating = summary.average
            service.total_reviews = summary.count
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to add review", service_id=service_id, error=str(e))
            raise CatalogRepositoryError(
                "Failed to add review", service_id=service_id, error=str(e)
            ) from e

        logger.info(
            "Service rating recomputed",
            service_id=service_id,
            average_rating=summary.average,
            total_reviews=summary.count,
        )
        return service

    async def increment_sales(self, service_id: str, amount: int = 1) -> None:
        """Atomically add ``amount`` to the service's completed sales."""
        stmt = (
            update(Service)
            .where(Service.id == service_id)
            .values(total_sales=Service.total_sales + amount)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to update sales", service_id=service_id, error=str(e))
            raise CatalogRepositoryError(
                "Failed to update sales", service_id=service_id, error=str(e)
            ) from e

        if result.rowcount == 0:
            raise NotFoundError(
                "Service not found", entity="service", service_id=service_id
            )
