"""
Order lifecycle Pydantic schemas for API request/response validation.

This module defines the request bodies for every order operation and the
response shapes for orders and their embedded records (status history,
milestones, messages, files, extension and cancellation requests, review).
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gigmarket.services.orders.enums import (
    CancellationStatus,
    FileCategory,
    FileType,
    MilestoneStatus,
    OrderStatus,
    PackageName,
)

OBJECT_ID_PATTERN = r"^[0-9a-f]{24}$"


# Requests


class DeliverableRequest(BaseModel):
    """Deliverable attached to a milestone."""

    model_config = ConfigDict(str_strip_whitespace=True)

    url: str = Field(..., min_length=1, max_length=2048, description="Deliverable URL")
    filename: Optional[str] = Field(None, max_length=255, description="File name")


class MilestoneRequest(BaseModel):
    """Milestone supplied at order creation or on milestone replacement."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    title: str = Field(..., min_length=1, max_length=200, description="Milestone title")
    description: Optional[str] = Field(None, max_length=2000)
    status: MilestoneStatus = Field(
        default=MilestoneStatus.PENDING,
        description="Milestone status",
    )
    date: Optional[datetime] = Field(None, description="Milestone target date")
    deliverables: list[DeliverableRequest] = Field(default_factory=list)
    feedback: Optional[str] = Field(None, max_length=2000)


class FileUploadRequest(BaseModel):
    """Uploaded file metadata."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255, description="File name")
    url: str = Field(..., min_length=1, max_length=2048, description="File URL")
    size: Optional[int] = Field(None, ge=0, description="File size in bytes")
    type: FileType = Field(default=FileType.OTHER, description="File type")
    description: Optional[str] = Field(None, max_length=1000)
    category: FileCategory = Field(
        default=FileCategory.REFERENCE,
        description="File category",
    )


class OrderCreateRequest(BaseModel):
    """Request schema for placing an order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    service_id: str = Field(
        ...,
        pattern=OBJECT_ID_PATTERN,
        description="Service to order",
    )
    package_selected: Optional[PackageName] = Field(
        None,
        description="Package tier; the configured default package when omitted",
    )
    requirements: Optional[str] = Field(
        None,
        max_length=5000,
        description="Buyer requirements",
    )
    milestones: list[MilestoneRequest] = Field(
        default_factory=list,
        max_length=50,
        description="Optional milestone plan",
    )
    initial_message: Optional[str] = Field(
        None,
        max_length=5000,
        description="First message to the seller",
    )


class OrderUpdateRequest(BaseModel):
    """Request schema for updating order content.

    Progress is derived from milestones and cannot be set.
    """

    model_config = ConfigDict(extra="forbid")

    requirements: Optional[str] = Field(None, max_length=5000)
    milestones: Optional[list[MilestoneRequest]] = Field(
        None,
        max_length=50,
        description="Replacement milestone list",
    )
    files: Optional[list[FileUploadRequest]] = Field(
        None,
        description="Files to add",
    )

    @model_validator(mode="after")
    def validate_at_least_one_field(self) -> "OrderUpdateRequest":
        """Ensure at least one field is provided for update."""
        if self.requirements is None and self.milestones is None and not self.files:
            raise ValueError("At least one field must be provided for update")
        return self


class OrderStatusUpdate(BaseModel):
    """Request schema for changing order status.

    The status is validated by the lifecycle so unknown values surface as
    invalid_status errors.
    """

    status: str = Field(..., min_length=1, description="Target status")
    note: Optional[str] = Field(None, max_length=500, description="History note")


class MessageCreateRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)
    attachment: Optional[str] = Field(None, max_length=2048)

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message text cannot be blank")
        return v


class MilestoneCompleteRequest(BaseModel):
    deliverables: list[DeliverableRequest] = Field(default_factory=list)
    feedback: Optional[str] = Field(None, max_length=2000)


class ExtensionRequest(BaseModel):
    """Delivery extension request.

    ``additional_days`` is range-checked by the lifecycle.
    """

    additional_days: int = Field(..., description="Days to add to the due date")
    reason: Optional[str] = Field(None, max_length=1000)


class CancellationRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class CancellationResolution(BaseModel):
    approve: bool = Field(..., description="Approve or reject the pending request")
    note: Optional[str] = Field(None, max_length=500)


class ReviewCreateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5, description="Rating from 1 to 5")
    comment: Optional[str] = Field(None, max_length=2000)


# Responses


class StatusHistoryResponse(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    changed_at: datetime
    changed_by: str


class DeliverableResponse(BaseModel):
    url: str
    filename: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class MilestoneResponse(BaseModel):
    title: str
    description: Optional[str] = None
    status: MilestoneStatus
    date: Optional[datetime] = None
    deliverables: list[DeliverableResponse] = Field(default_factory=list)
    feedback: Optional[str] = None


class MessageResponse(BaseModel):
    sender: str
    user_id: str
    text: str
    attachment: Optional[str] = None
    time: datetime
    is_read: bool = False


class OrderFileResponse(BaseModel):
    name: str
    url: str
    size: Optional[int] = None
    type: FileType
    uploaded_by: str
    date: datetime
    description: Optional[str] = None
    category: FileCategory


class ExtendedDeliveryResponse(BaseModel):
    is_requested: bool
    additional_days: int
    reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None


class CancellationRequestResponse(BaseModel):
    is_requested: bool
    requested_by: Optional[str] = None
    reason: Optional[str] = None
    request_date: Optional[datetime] = None
    status: CancellationStatus
    resolved_date: Optional[datetime] = None


class ReviewResponse(BaseModel):
    rating: int
    comment: Optional[str] = None
    created_at: datetime


class OrderSummaryResponse(BaseModel):
    """Order fields returned in listings."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    service_id: str
    service_title: str
    package_selected: PackageName
    buyer_id: str
    seller_id: str
    price: Decimal
    delivery_time: int
    due_date: datetime
    status: OrderStatus
    progress: int
    revisions_available: int
    revisions_used: int
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderResponse(OrderSummaryResponse):
    """Complete order response schema."""

    requirements: Optional[str] = None
    approved_extension_days: int = 0
    status_history: list[StatusHistoryResponse] = Field(default_factory=list)
    milestones: list[MilestoneResponse] = Field(default_factory=list)
    messages: list[MessageResponse] = Field(default_factory=list)
    files: list[OrderFileResponse] = Field(default_factory=list)
    review: Optional[ReviewResponse] = None
    extended_delivery: Optional[ExtendedDeliveryResponse] = None
    cancellation_request: Optional[CancellationRequestResponse] = None


class OrderOperationResponse(BaseModel):
    """Order after an operation, with any side effects that did not complete."""

    order: OrderResponse
    warnings: list[str] = Field(default_factory=list)


class OrderListResponse(BaseModel):
    orders: list[OrderSummaryResponse]
    total: int
    skip: int
    limit: int


class OrderDeletedResponse(BaseModel):
    order_id: str
    message: str = "Order successfully deleted"
    warnings: list[str] = Field(default_factory=list)
