"""
Order service orchestrating the order lifecycle.

This module implements the OrderService class. Every mutating operation is a
single transaction on one order (load for update, resolve the actor's role
once, validate, mutate, recompute derived fields, append history and
messages, flush) followed by dispatch of the cross-aggregate side effects
once the order is committed.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
)

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gigmarket.core.config import Settings
from gigmarket.core.exceptions import (
    AlreadyReviewedError,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidPackageError,
    InvalidStatusError,
    MarketplaceError,
    NotFoundError,
    SelfOrderError,
)
from gigmarket.core.logging import get_logger, log_performance
from gigmarket.database.base import utcnow
from gigmarket.database.models.notification import NotificationEvent
from gigmarket.database.models.order import Order
from gigmarket.services.catalog.repository import ServiceRepository, find_package
from gigmarket.services.orders import negotiation
from gigmarket.services.orders.effects import (
    DispatchReport,
    SideEffect,
    SideEffectDispatcher,
)
from gigmarket.services.orders.enums import (
    ActorRole,
    MilestoneStatus,
    OrderStatus,
    PackageName,
)
from gigmarket.services.orders.progress import calculate_progress
from gigmarket.services.orders.records import (
    append_history,
    append_message,
    deliverable_records,
    file_record,
    history_entry,
    milestone_record,
)
from gigmarket.services.orders.repository import OrderRepository
from gigmarket.services.orders.state_machine import (
    Actor,
    OrderStateMachine,
    counterparties,
    resolve_role,
)

logger = get_logger(__name__)

PARTIES = {role for role in ActorRole if role.is_party}
PARTIES_AND_ADMIN = {ActorRole.BUYER, ActorRole.SELLER, ActorRole.ADMIN}


@dataclass
class OrderResult:
    """Order after a committed operation plus the side effect outcome."""

    order: Order
    dispatch: DispatchReport = field(default_factory=DispatchReport)


@dataclass
class OrderPage:
    orders: Sequence[Order]
    total: int
    skip: int
    limit: int


Mutation = Callable[[Order, ActorRole, datetime], List[SideEffect]]


class OrderService:
    """
    Order lifecycle service.

    Attributes:
        session_factory: Factory for the per-operation database session
        settings: Application settings
        state_machine: Status transition rules
        dispatcher: Post-commit side effect dispatcher
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
        dispatcher: Optional[SideEffectDispatcher] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock
        self.state_machine = OrderStateMachine(
            enforce_revision_limit=settings.enforce_revision_limit,
            clock=clock,
        )
        self.dispatcher = dispatcher or SideEffectDispatcher(
            session_factory,
            max_retries=settings.side_effect_max_retries,
            retry_backoff=settings.side_effect_retry_backoff,
        )

    @asynccontextmanager
    async def _transaction(self, **context: Any) -> AsyncIterator[AsyncSession]:
        # Engine-level failures (including a commit lost to a concurrent
        # writer) surface as a retryable conflict.
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error(
                "Order transaction failed",
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            raise ConflictError(
                "Order could not be updated, retry the operation", **context
            ) from e

    async def _mutate(
        self,
        order_id: str,
        actor: Actor,
        operation: str,
        mutation: Mutation,
    ) -> OrderResult:
        """Run ``mutation`` as one atomic read-modify-write, then dispatch effects."""
        with log_performance(logger, operation, order_id=order_id):
            try:
                async with self._transaction(order_id=order_id) as session:
                    repository = OrderRepository(session)
                    order = await repository.get_order_for_update(order_id)
                    role = resolve_role(order, actor)
                    effects = mutation(order, role, self.clock())
                    await repository.save(order)
            except MarketplaceError as e:
                logger.warning(
                    f"{operation} rejected",
                    order_id=order_id,
                    actor_id=actor.user_id,
                    error_code=e.code,
                    reason=e.message,
                    details=e.context,
                )
                raise

        return OrderResult(order=order, dispatch=await self.dispatch(effects))

    async def dispatch(self, effects: Iterable[SideEffect]) -> DispatchReport:
        report = await self.dispatcher.dispatch(effects)
        if not report.ok:
            logger.error(
                "Order side effects incomplete",
                failed=[failure.effect.kind.value for failure in report.failed],
            )
        return report

    # Creation and queries

    async def create_order(
        self,
        actor: Actor,
        service_id: str,
        package_selected: Optional[str] = None,
        requirements: Optional[str] = None,
        milestones: Optional[Sequence[Mapping[str, Any]]] = None,
        initial_message: Optional[str] = None,
    ) -> OrderResult:
        """
        Place an order for a service package.

        Price, delivery time and revision allowance are copied from the
        package at purchase time.

        Raises:
            NotFoundError: Service does not exist
            SelfOrderError: Buyer is the service's seller
            InvalidPackageError: Package not offered by the service
        """
        package_name = package_selected or self.settings.default_package
        logger.info(
            "Creating order",
            buyer_id=actor.user_id,
            service_id=service_id,
            package=package_name,
        )

        try:
            async with self._transaction() as session:
                service = await ServiceRepository(session).get_service_by_id(service_id)

                if service.seller_id == actor.user_id:
                    raise SelfOrderError(
                        "You cannot order your own service",
                        field="service_id",
                        service_id=service_id,
                    )

                package = self._resolve_package(service, package_name)
                now = self.clock()
                delivery_time = int(package["deliveryTime"])
                milestone_records = [
                    milestone_record(m, now) for m in (milestones or [])
                ]

                order = Order(
                    created_at=now,
                    updated_at=now,
                    service_id=service.id,
                    service_title=service.title,
                    package_selected=PackageName(package_name),
                    buyer_id=actor.user_id,
                    seller_id=service.seller_id,
                    price=Decimal(str(package["price"])),
                    delivery_time=delivery_time,
                    due_date=negotiation.derive_due_date(now, delivery_time),
                    approved_extension_days=0,
                    requirements=requirements,
                    revisions_available=int(package.get("revisions") or 0),
                    revisions_used=0,
                    status=OrderStatus.PENDING,
                    progress=calculate_progress(milestone_records),
                    status_history=[],
                    milestones=milestone_records,
                    messages=[],
                    files=[],
                )
                append_history(
                    order,
                    history_entry(
                        OrderStatus.PENDING,
                        "Order created",
                        changed_by=actor.user_id,
                        changed_at=now,
                    ),
                )
                if initial_message:
                    append_message(
                        order, ActorRole.BUYER, actor.user_id, initial_message, now
                    )

                await OrderRepository(session).add(order)
        except MarketplaceError as e:
            logger.warning(
                "Order creation rejected",
                buyer_id=actor.user_id,
                service_id=service_id,
                error_code=e.code,
                reason=e.message,
            )
            raise

        effects = [
            SideEffect.purchased_service(order.buyer_id, order.id),
            SideEffect.seller_counter(order.seller_id, "ongoing_projects", 1),
            SideEffect.notify(
                order.seller_id,
                NotificationEvent.ORDER_CREATED,
                order_id=order.id,
                service_id=order.service_id,
                package=order.package_selected.value,
            ),
        ]
        return OrderResult(order=order, dispatch=await self.dispatch(effects))

    def _resolve_package(self, service, package_name: str) -> Mapping[str, Any]:
        offered = [p.get("name") for p in service.pricing_packages or []]
        try:
            PackageName(package_name)
        except ValueError:
            raise InvalidPackageError(
                f"Invalid package selected: {package_name}",
                field="package_selected",
                value=package_name,
                allowed=offered,
            )

        package = find_package(service, package_name)
        if package is None:
            raise InvalidPackageError(
                f"Package {package_name} is not offered by this service",
                field="package_selected",
                value=package_name,
                allowed=offered,
            )
        return package

    async def get_order(self, order_id: str, actor: Actor) -> Order:
        """
        Get an order visible to ``actor``.

        Raises:
            NotFoundError: Order does not exist
            ForbiddenError: Actor is neither a party nor an admin
        """
        async with self.session_factory() as session:
            order = await OrderRepository(session).get_order_by_id(order_id)

        if order is None:
            raise NotFoundError("Order not found", entity="order", order_id=order_id)
        if resolve_role(order, actor) == ActorRole.NONE:
            raise ForbiddenError(
                "You are not authorized to view this order", order_id=order_id
            )
        return order

    async def _list(self, skip: int, limit: int, **filters: Any) -> OrderPage:
        status = filters.pop("status", None)
        if status is not None:
            filters["status"] = OrderStatus.from_string(status)

        async with self.session_factory() as session:
            orders, total = await OrderRepository(session).list_orders(
                skip=skip, limit=limit, **filters
            )
        return OrderPage(orders=orders, total=total, skip=skip, limit=limit)

    async def list_orders(
        self,
        actor: Actor,
        status: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        sort_by: str = "newest",
        skip: int = 0,
        limit: int = 20,
    ) -> OrderPage:
        """All orders; admin only."""
        if not actor.is_admin:
            raise ForbiddenError("Only admins can list all orders")
        return await self._list(
            skip,
            limit,
            status=status,
            created_from=created_from,
            created_to=created_to,
            sort_by=sort_by,
        )

    async def list_buyer_orders(
        self,
        actor: Actor,
        status: Optional[str] = None,
        sort_by: str = "newest",
        skip: int = 0,
        limit: int = 20,
    ) -> OrderPage:
        return await self._list(
            skip, limit, buyer_id=actor.user_id, status=status, sort_by=sort_by
        )

    async def list_seller_orders(
        self,
        actor: Actor,
        status: Optional[str] = None,
        sort_by: str = "newest",
        skip: int = 0,
        limit: int = 20,
    ) -> OrderPage:
        """Orders sold by ``actor``; seller accounts only."""
        if not actor.is_seller:
            raise ForbiddenError("Only sellers can access seller orders")
        return await self._list(
            skip, limit, seller_id=actor.user_id, status=status, sort_by=sort_by
        )

    # Order content

    async def update_order(
        self,
        order_id: str,
        actor: Actor,
        requirements: Optional[str] = None,
        milestones: Optional[Sequence[Mapping[str, Any]]] = None,
        files: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> OrderResult:
        """
        Update requirements, replace milestones or add files.

        Progress is recomputed from the new milestone list; it cannot be set
        directly. Files are only ever appended.
        """

        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            negotiation.ensure_role(order, role, PARTIES_AND_ADMIN, "update this order")
            negotiation.ensure_open(order, "update")

            if requirements is not None:
                order.requirements = requirements
            if milestones is not None:
                order.milestones = [milestone_record(m, now) for m in milestones]
                order.progress = calculate_progress(order.milestones)
            if files:
                order.files = [
                    *(order.files or []),
                    *(file_record(f, role, now) for f in files),
                ]
            order.updated_at = now
            return []

        return await self._mutate(order_id, actor, "update_order", mutation)

    async def delete_order(self, order_id: str, actor: Actor) -> DispatchReport:
        """
        Delete an order that is still Pending.

        Raises:
            ForbiddenError: Actor is neither a party nor an admin
            InvalidStatusError: Order has left Pending
            ConflictError: Order left Pending while the delete was in flight
        """
        try:
            async with self._transaction(order_id=order_id) as session:
                repository = OrderRepository(session)
                order = await repository.get_order_for_update(order_id)
                role = resolve_role(order, actor)
                negotiation.ensure_role(
                    order, role, PARTIES_AND_ADMIN, "delete this order"
                )

                if order.status != OrderStatus.PENDING:
                    raise InvalidStatusError(
                        f"Order cannot be deleted because it is {order.status.value}. "
                        "Only Pending orders can be deleted.",
                        order_id=order_id,
                        current_status=order.status.value,
                    )

                if not await repository.delete_if_pending(order_id):
                    raise ConflictError(
                        "Order left Pending before it could be deleted",
                        order_id=order_id,
                    )
        except MarketplaceError as e:
            logger.warning(
                "Order deletion rejected",
                order_id=order_id,
                actor_id=actor.user_id,
                error_code=e.code,
            )
            raise

        logger.info("Order deleted", order_id=order_id, actor_id=actor.user_id)
        effects = [SideEffect.seller_counter(order.seller_id, "ongoing_projects", -1)]
        effects.extend(
            SideEffect.notify(user_id, NotificationEvent.ORDER_DELETED, order_id=order_id)
            for user_id in counterparties(order, role)
        )
        return await self.dispatch(effects)

    async def change_status(
        self,
        order_id: str,
        actor: Actor,
        status: str,
        note: Optional[str] = None,
    ) -> OrderResult:
        """Move the order along the lifecycle graph."""

        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            result = self.state_machine.apply_transition(
                order, status, actor, role, note=note
            )
            order.updated_at = now
            return result.side_effects

        return await self._mutate(order_id, actor, "change_status", mutation)

    async def add_message(
        self,
        order_id: str,
        actor: Actor,
        text: str,
        attachment: Optional[str] = None,
    ) -> OrderResult:
        """Post to the order thread; closed orders still accept messages."""

        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            negotiation.ensure_role(
                order, role, PARTIES_AND_ADMIN, "send messages in this order"
            )
            if not text or not text.strip():
                raise InvalidArgumentError("Message text is required", field="text")

            append_message(order, role, actor.user_id, text, now, attachment)
            return [
                SideEffect.notify(
                    user_id,
                    NotificationEvent.MESSAGE_RECEIVED,
                    order_id=order.id,
                    sender=role.value,
                )
                for user_id in counterparties(order, role)
            ]

        return await self._mutate(order_id, actor, "add_message", mutation)

    async def upload_file(
        self, order_id: str, actor: Actor, file: Mapping[str, Any]
    ) -> OrderResult:
        """Attach file metadata and announce it in the thread."""

        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            negotiation.ensure_role(order, role, PARTIES, "upload files to this order")

            record = file_record(file, role, now)
            order.files = [*(order.files or []), record]
            append_message(
                order,
                role,
                actor.user_id,
                f"Uploaded a new file: {record['name']}",
                now,
                attachment=record["url"],
            )
            return [
                SideEffect.notify(
                    user_id,
                    NotificationEvent.MESSAGE_RECEIVED,
                    order_id=order.id,
                    file=record["name"],
                )
                for user_id in counterparties(order, role)
            ]

        return await self._mutate(order_id, actor, "upload_file", mutation)

    async def complete_milestone(
        self,
        order_id: str,
        actor: Actor,
        index: int,
        deliverables: Optional[Sequence[Mapping[str, Any]]] = None,
        feedback: Optional[str] = None,
    ) -> OrderResult:
        """
        Mark a milestone completed and recompute progress.

        Raises:
            NotFoundError: ``index`` is out of range
            ForbiddenError: Actor is not the seller
            TerminalStateError: Order is closed
        """

        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            milestones = [dict(m) for m in order.milestones or []]
            if index < 0 or index >= len(milestones):
                raise NotFoundError(
                    "Milestone not found",
                    entity="milestone",
                    order_id=order.id,
                    index=index,
                    milestone_count=len(milestones),
                )
            negotiation.ensure_role(
                order, role, {ActorRole.SELLER}, "complete milestones"
            )
            negotiation.ensure_open(order, "update")

            milestone = milestones[index]
            milestone["status"] = MilestoneStatus.COMPLETED.value
            if deliverables:
                milestone["deliverables"] = deliverable_records(deliverables, now)
            if feedback:
                milestone["feedback"] = feedback

            order.milestones = milestones
            order.progress = calculate_progress(milestones)
            append_message(
                order,
                role,
                actor.user_id,
                f"Completed milestone: {milestone['title']}",
                now,
            )
            return [
                SideEffect.notify(
                    order.buyer_id,
                    NotificationEvent.MILESTONE_COMPLETED,
                    order_id=order.id,
                    milestone=milestone["title"],
                    progress=order.progress,
                )
            ]

        return await self._mutate(order_id, actor, "complete_milestone", mutation)

    # Negotiation

    async def request_extension(
        self,
        order_id: str,
        actor: Actor,
        additional_days: int,
        reason: Optional[str] = None,
    ) -> OrderResult:
        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            return negotiation.request_extension(
                order, actor, role, additional_days, reason, now
            )

        return await self._mutate(order_id, actor, "request_extension", mutation)

    async def approve_extension(self, order_id: str, actor: Actor) -> OrderResult:
        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            return negotiation.approve_extension(order, actor, role, now)

        return await self._mutate(order_id, actor, "approve_extension", mutation)

    async def decline_extension(self, order_id: str, actor: Actor) -> OrderResult:
        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            return negotiation.decline_extension(order, actor, role, now)

        return await self._mutate(order_id, actor, "decline_extension", mutation)

    async def request_cancellation(
        self, order_id: str, actor: Actor, reason: Optional[str] = None
    ) -> OrderResult:
        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            return negotiation.request_cancellation(order, actor, role, reason, now)

        return await self._mutate(order_id, actor, "request_cancellation", mutation)

    async def resolve_cancellation(
        self,
        order_id: str,
        actor: Actor,
        approve: bool,
        note: Optional[str] = None,
    ) -> OrderResult:
        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            return negotiation.resolve_cancellation(
                order, actor, role, approve, self.state_machine, now, note=note
            )

        return await self._mutate(order_id, actor, "resolve_cancellation", mutation)

    # Review

    async def submit_review(
        self,
        order_id: str,
        actor: Actor,
        rating: int,
        comment: Optional[str] = None,
    ) -> OrderResult:
        """
        Buyer reviews a completed order, exactly once.

        The review is forwarded to the service, whose rating is recomputed
        after the order commits.
        """

        def mutation(order: Order, role: ActorRole, now: datetime) -> List[SideEffect]:
            valid = isinstance(rating, int) and not isinstance(rating, bool)
            if not valid or not 1 <= rating <= 5:
                raise InvalidArgumentError(
                    "Rating must be an integer between 1 and 5",
                    field="rating",
                    value=rating,
                )
            negotiation.ensure_role(order, role, {ActorRole.BUYER}, "submit a review")
            if order.status != OrderStatus.COMPLETED:
                raise InvalidStatusError(
                    "Can only review completed orders",
                    order_id=order.id,
                    current_status=order.status.value,
                )
            if order.review:
                raise AlreadyReviewedError(
                    "You have already submitted a review for this order",
                    order_id=order.id,
                )

            order.review = {
                "rating": rating,
                "comment": comment,
                "created_at": now.isoformat(),
            }
            return [
                SideEffect.service_review(
                    order.service_id,
                    {
                        "order_id": order.id,
                        "user_id": actor.user_id,
                        "rating": rating,
                        "comment": comment,
                        "created_at": now.isoformat(),
                    },
                ),
                SideEffect.notify(
                    order.seller_id,
                    NotificationEvent.REVIEW_RECEIVED,
                    order_id=order.id,
                    rating=rating,
                ),
            ]

        return await self._mutate(order_id, actor, "submit_review", mutation)
