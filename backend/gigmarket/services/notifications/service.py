"""
Notification service queuing order lifecycle notifications.

Notifications are written to the notifications table for the delivery
channel to pick up. The lifecycle enqueues and moves on; it never waits on
delivery confirmation.
"""

from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gigmarket.core.logging import get_logger
from gigmarket.database.models.notification import Notification, NotificationEvent

logger = get_logger(__name__)


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class NotificationService:
    """Queues notifications for users."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    async def notify(
        self,
        user_id: str,
        event: NotificationEvent,
        payload: Optional[dict[str, Any]] = None,
    ) -> Notification:
        """
        Enqueue a notification for ``user_id``.

        Args:
            user_id: Recipient
            event: Notification event
            payload: Event data

        Returns:
            The queued notification

        Raises:
            NotificationServiceError: If the notification cannot be stored
        """
        event = NotificationEvent(event)
        notification = Notification(
            user_id=user_id,
            event=event,
            payload=dict(payload or {}),
        )

        try:
            self.db.add(notification)
            await self.db.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to queue notification",
                user_id=user_id,
                notification_event=event.value,
                error=str(e),
            )
            raise NotificationServiceError(
                f"Failed to queue notification: {e}",
                user_id=user_id,
                notification_event=event.value,
            ) from e

        logger.info(
            "Notification queued",
            user_id=user_id,
            notification_event=event.value,
            notification_id=notification.id,
        )
        return notification
