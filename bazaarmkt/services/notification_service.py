"""
Artisan notification service.

Writes in-app notifications for payout outcomes. Each notification can
carry a dedupe key so a replayed webhook does not notify twice.
"""
import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bazaarmkt.models.notification import Notification, NotificationPriority

logger = logging.getLogger(__name__)


class NotificationService:
    """Creates notifications inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def notify(
        self,
        user_id: Optional[uuid.UUID],
        notification_type: str,
        title: str,
        message: str,
        priority: str = NotificationPriority.MEDIUM.value,
        data: Optional[Dict[str, Any]] = None,
        dedupe_key: Optional[str] = None,
    ) -> Optional[Notification]:
        """
        Create a notification.

        Returns:
            The new notification, or None when there is no recipient or a
            notification with the same dedupe key already exists
        """
        if user_id is None:
            logger.warning(f"No recipient for {notification_type} notification ({dedupe_key})")
            return None

        if dedupe_key:
            existing = await self.db.scalar(
                select(Notification.id).where(Notification.dedupe_key == dedupe_key)
            )
            if existing is not None:
                logger.info(f"Notification {dedupe_key} already sent")
                return None

        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            priority=priority,
            data=data or {},
            dedupe_key=dedupe_key,
        )

        # A concurrent duplicate fails the unique dedupe_key on flush
        self.db.add(notification)
        await self.db.flush()

        logger.info(f"Notification {notification_type} queued for user {user_id}")
        return notification
