"""
Order lifecycle API endpoints.

This module implements the FastAPI router for the order lifecycle: placing
orders, listings, status changes, messages and files, milestones, delivery
extension and cancellation negotiation, and reviews. Domain errors propagate
to the application's error handler, which maps them to HTTP responses.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from gigmarket.api.deps import CurrentActor, OrderServiceDep
from gigmarket.api.rate_limit import limiter, order_create_limit
from gigmarket.core.logging import get_logger
from gigmarket.schemas.orders import (
    CancellationRequest,
    CancellationResolution,
    ExtensionRequest,
    FileUploadRequest,
    MessageCreateRequest,
    MilestoneCompleteRequest,
    OrderCreateRequest,
    OrderDeletedResponse,
    OrderListResponse,
    OrderOperationResponse,
    OrderResponse,
    OrderStatusUpdate,
    OrderSummaryResponse,
    OrderUpdateRequest,
    ReviewCreateRequest,
)
from gigmarket.services.orders.service import OrderPage, OrderResult

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

SortQuery = Query("newest", pattern="^(newest|oldest|due-soon|price-low|price-high)$")


def _operation_response(result: OrderResult) -> OrderOperationResponse:
    return OrderOperationResponse(
        order=OrderResponse.model_validate(result.order),
        warnings=result.dispatch.warnings,
    )


def _list_response(page: OrderPage) -> OrderListResponse:
    return OrderListResponse(
        orders=[OrderSummaryResponse.model_validate(o) for o in page.orders],
        total=page.total,
        skip=page.skip,
        limit=page.limit,
    )


@router.post(
    "/",
    response_model=OrderOperationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new order",
    description="Place an order for a service package; terms are frozen at purchase time",
)
@limiter.limit(order_create_limit)
async def create_order(
    request: Request,
    payload: OrderCreateRequest,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.create_order(
        actor,
        service_id=payload.service_id,
        package_selected=(
            payload.package_selected.value if payload.package_selected else None
        ),
        requirements=payload.requirements,
        milestones=[m.model_dump() for m in payload.milestones],
        initial_message=payload.initial_message,
    )
    logger.info(
        "Order created",
        order_id=result.order.id,
        buyer_id=actor.user_id,
        warnings=len(result.dispatch.failed),
    )
    return _operation_response(result)


@router.get(
    "/",
    response_model=OrderListResponse,
    summary="List all orders",
    description="List every order with filters (admin only)",
)
async def list_orders(
    actor: CurrentActor,
    order_service: OrderServiceDep,
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    sort_by: str = SortQuery,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> OrderListResponse:
    page = await order_service.list_orders(
        actor,
        status=status_filter,
        created_from=start_date,
        created_to=end_date,
        sort_by=sort_by,
        skip=skip,
        limit=limit,
    )
    return _list_response(page)


@router.get(
    "/buyer",
    response_model=OrderListResponse,
    summary="List my purchases",
)
async def list_buyer_orders(
    actor: CurrentActor,
    order_service: OrderServiceDep,
    status_filter: Optional[str] = Query(None, alias="status"),
    sort_by: str = SortQuery,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> OrderListResponse:
    page = await order_service.list_buyer_orders(
        actor, status=status_filter, sort_by=sort_by, skip=skip, limit=limit
    )
    return _list_response(page)


@router.get(
    "/seller",
    response_model=OrderListResponse,
    summary="List my sales",
    description="Orders placed on the current seller's services (seller accounts only)",
)
async def list_seller_orders(
    actor: CurrentActor,
    order_service: OrderServiceDep,
    status_filter: Optional[str] = Query(None, alias="status"),
    sort_by: str = SortQuery,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
) -> OrderListResponse:
    page = await order_service.list_seller_orders(
        actor, status=status_filter, sort_by=sort_by, skip=skip, limit=limit
    )
    return _list_response(page)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order details",
)
async def get_order(
    order_id: str,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderResponse:
    order = await order_service.get_order(order_id, actor)
    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}",
    response_model=OrderOperationResponse,
    summary="Update order",
    description="Update requirements, replace milestones or add files",
)
async def update_order(
    order_id: str,
    payload: OrderUpdateRequest,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.update_order(
        order_id,
        actor,
        requirements=payload.requirements,
        milestones=(
            [m.model_dump() for m in payload.milestones]
            if payload.milestones is not None
            else None
        ),
        files=[f.model_dump() for f in payload.files or []],
    )
    return _operation_response(result)


@router.delete(
    "/{order_id}",
    response_model=OrderDeletedResponse,
    summary="Delete pending order",
)
async def delete_order(
    order_id: str,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderDeletedResponse:
    report = await order_service.delete_order(order_id, actor)
    return OrderDeletedResponse(order_id=order_id, warnings=report.warnings)


@router.put(
    "/{order_id}/status",
    response_model=OrderOperationResponse,
    summary="Change order status",
    description="Move the order along its lifecycle; permitted roles depend on the target status",
)
async def change_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.change_status(
        order_id, actor, payload.status, note=payload.note
    )
    return _operation_response(result)


@router.post(
    "/{order_id}/messages",
    response_model=OrderOperationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send message",
)
async def add_message(
    order_id: str,
    payload: MessageCreateRequest,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.add_message(
        order_id, actor, payload.text, attachment=payload.attachment
    )
    return _operation_response(result)


@router.post(
    "/{order_id}/files",
    response_model=OrderOperationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload file",
)
async def upload_file(
    order_id: str,
    payload: FileUploadRequest,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.upload_file(order_id, actor, payload.model_dump())
    return _operation_response(result)


@router.post(
    "/{order_id}/milestones/{index}/complete",
    response_model=OrderOperationResponse,
    summary="Complete milestone",
)
async def complete_milestone(
    order_id: str,
    index: int,
    payload: MilestoneCompleteRequest,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.complete_milestone(
        order_id,
        actor,
        index,
        deliverables=[d.model_dump() for d in payload.deliverables],
        feedback=payload.feedback,
    )
    return _operation_response(result)


@router.post(
    "/{order_id}/extension",
    response_model=OrderOperationResponse,
    summary="Request delivery extension",
)
async def request_extension(
    order_id: str,
    payload: ExtensionRequest,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.request_extension(
        order_id, actor, payload.additional_days, reason=payload.reason
    )
    return _operation_response(result)


@router.post(
    "/{order_id}/extension/approve",
    response_model=OrderOperationResponse,
    summary="Approve delivery extension",
)
async def approve_extension(
    order_id: str,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.approve_extension(order_id, actor)
    return _operation_response(result)


@router.post(
    "/{order_id}/extension/decline",
    response_model=OrderOperationResponse,
    summary="Decline delivery extension",
)
async def decline_extension(
    order_id: str,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.decline_extension(order_id, actor)
    return _operation_response(result)


@router.post(
    "/{order_id}/cancellation",
    response_model=OrderOperationResponse,
    summary="Request cancellation",
)
async def request_cancellation(
    order_id: str,
    payload: CancellationRequest,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.request_cancellation(
        order_id, actor, reason=payload.reason
    )
    return _operation_response(result)


@router.post(
    "/{order_id}/cancellation/resolve",
    response_model=OrderOperationResponse,
    summary="Resolve cancellation request",
)
async def resolve_cancellation(
    order_id: str,
    payload: CancellationResolution,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.resolve_cancellation(
        order_id, actor, payload.approve, note=payload.note
    )
    return _operation_response(result)


@router.post(
    "/{order_id}/review",
    response_model=OrderOperationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit review",
)
async def submit_review(
    order_id: str,
    payload: ReviewCreateRequest,
    actor: CurrentActor,
    order_service: OrderServiceDep,
) -> OrderOperationResponse:
    result = await order_service.submit_review(
        order_id, actor, payload.rating, comment=payload.comment
    )
    return _operation_response(result)
