"""
Notifications

Producers run with backend privileges; recipients read and acknowledge
their own notifications through the policy layer.
"""

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.models import Notification
from marketplace.database.repository import ScopedRepository, flush_or_raise

logger = structlog.get_logger(__name__)


async def send_notification(
    session: AsyncSession,
    profile_id: uuid.UUID,
    title: str,
    message: str,
) -> Notification:
    notification = Notification(profile_id=profile_id, title=title, message=message)
    session.add(notification)
    await flush_or_raise(session, Notification.__tablename__)
    logger.info("Notification sent", profile_id=str(profile_id), notification_id=str(notification.id))
    return notification


async def mark_notification_read(repository: ScopedRepository, notification_id: uuid.UUID) -> Notification:
    return await repository.update(Notification, notification_id, {"is_read": True})


async def unread_notifications(repository: ScopedRepository):
    return await repository.list(
        Notification,
        Notification.is_read.is_(False),
        order_by=Notification.created_at.desc(),
    )
