"""Builders for the value records embedded in an order.

Embedded collections are JSON lists of plain dictionaries. Helpers here
build those dictionaries in one place and append them by replacing the whole
list, which keeps the history and message thread append-only and makes every
change visible to the unit of work.
"""

from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from gigmarket.core.exceptions import InvalidArgumentError
from gigmarket.services.orders.enums import (
    ActorRole,
    FileCategory,
    FileType,
    MilestoneStatus,
    OrderStatus,
)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def history_entry(
    status: OrderStatus,
    note: str,
    changed_by: str,
    changed_at: datetime,
) -> dict[str, Any]:
    return {
        "status": status.value,
        "note": note,
        "changed_at": changed_at.isoformat(),
        "changed_by": changed_by,
    }


def append_history(order, entry: Mapping[str, Any]) -> None:
    order.status_history = [*(order.status_history or []), dict(entry)]


def sender_for(role: ActorRole) -> str:
    """Message sender label for an actor role."""
    if role == ActorRole.NONE:
        raise InvalidArgumentError("Actor has no role on this order", field="sender")
    return role.value


def append_message(
    order,
    sender: ActorRole,
    user_id: str,
    text: str,
    sent_at: datetime,
    attachment: Optional[str] = None,
) -> dict[str, Any]:
    """Append a message to the order thread and return it."""
    message = {
        "sender": sender_for(sender),
        "user_id": user_id,
        "text": text,
        "attachment": attachment,
        "time": sent_at.isoformat(),
        "is_read": False,
    }
    order.messages = [*(order.messages or []), message]
    return message


def deliverable_records(
    deliverables: Iterable[Mapping[str, Any]], uploaded_at: datetime
) -> list[dict[str, Any]]:
    records = []
    for item in deliverables:
        if not item.get("url"):
            raise InvalidArgumentError(
                "Deliverable requires a url", field="deliverables"
            )
        records.append({
            "url": item["url"],
            "filename": item.get("filename"),
            "uploaded_at": isoformat(item.get("uploaded_at")) or uploaded_at.isoformat(),
        })
    return records


def milestone_record(data: Mapping[str, Any], default_date: datetime) -> dict[str, Any]:
    """Normalize caller supplied milestone data into a stored record."""
    title = (data.get("title") or "").strip()
    if not title:
        raise InvalidArgumentError("Milestone title is required", field="milestones.title")

    status = data.get("status") or MilestoneStatus.PENDING.value
    try:
        status = MilestoneStatus(status).value
    except ValueError:
        raise InvalidArgumentError(
            f"Invalid milestone status: {status}",
            field="milestones.status",
            allowed=[s.value for s in MilestoneStatus],
        )

    date = data.get("date")
    if isinstance(date, datetime):
        date = date.isoformat()

    return {
        "title": title,
        "description": data.get("description"),
        "status": status,
        "date": date or default_date.isoformat(),
        "deliverables": deliverable_records(data.get("deliverables") or [], default_date),
        "feedback": data.get("feedback"),
    }


def file_record(
    data: Mapping[str, Any], uploaded_by: ActorRole, uploaded_at: datetime
) -> dict[str, Any]:
    """Normalize uploaded file metadata into a stored record."""
    name = data.get("name")
    url = data.get("url")
    if not name or not url:
        raise InvalidArgumentError("File name and url are required", field="file")

    file_type = data.get("type") or FileType.OTHER.value
    category = data.get("category") or FileCategory.REFERENCE.value
    try:
        file_type = FileType(file_type).value
        category = FileCategory(category).value
    except ValueError as e:
        raise InvalidArgumentError(str(e), field="file") from e

    return {
        "name": name,
        "url": url,
        "size": data.get("size"),
        "type": file_type,
        "uploaded_by": sender_for(uploaded_by),
        "date": uploaded_at.isoformat(),
        "description": data.get("description"),
        "category": category,
    }
