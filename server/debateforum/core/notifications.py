import logging

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from debateforum.core.exceptions import NotFoundError
from debateforum.database.database import (
    delete_item,
    get_first_by_filters,
    get_items_by_filters,
)
from debateforum.database.models import Notification, NotificationType, utcnow

logger = logging.getLogger(__name__)


def notification_metadata(notification_type: NotificationType, **data) -> dict:
    return {
        "type": notification_type.value,
        "timestamp": utcnow().isoformat(),
        **data,
    }


def build_notification(
    notification_type: NotificationType,
    user_id: int,
    title: str,
    message: str,
    link: str | None = None,
    actor_id: int | None = None,
    debate_id: int | None = None,
    argument_id: int | None = None,
    metadata: dict | None = None,
) -> dict:
    return {
        "type": notification_type,
        "user_id": user_id,
        "title": title,
        "message": message,
        "link": link,
        "actor_id": actor_id,
        "debate_id": debate_id,
        "argument_id": argument_id,
        "extra": metadata or notification_metadata(notification_type),
    }


def build_bulk_notifications(user_ids, **data) -> list[dict]:
    return [build_notification(user_id=user_id, **data) for user_id in user_ids]


def side_effect_session(session: AsyncSession) -> AsyncSession:
    """A separate session on the caller's engine.

    A rollback expires every object in its session, so side effects that
    may fail run here and leave the caller's loaded objects intact.
    """
    return AsyncSession(session.bind, expire_on_commit=False)


async def dispatch_notifications(session: AsyncSession, notifications: list[dict]) -> int:
    """Write notification rows in their own session and transaction.

    Notifications are a side effect: a failure here is logged and never
    reaches the operation that produced them. Returns the number written.
    """
    if not notifications:
        return 0
    try:
        async with side_effect_session(session) as notify_session:
            async with notify_session.begin():
                notify_session.add_all(Notification(**data) for data in notifications)
    except Exception as e:
        logger.error(f"Failed to create notifications: {type(e).__name__} - {e}")
        return 0
    return len(notifications)


async def list_notifications(
    session: AsyncSession, user_id: int, limit: int = 50
) -> list[Notification]:
    async with session.begin():
        return await get_items_by_filters(
            session,
            Notification,
            limit=limit,
            order_by=Notification.created_at.desc(),
            user_id=user_id,
        )


async def unread_count(session: AsyncSession, user_id: int) -> int:
    async with session.begin():
        result = await session.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
        )
        return result.scalar_one()


async def _owned_notification(
    session: AsyncSession, notification_id: int, user_id: int
) -> Notification:
    notification = await get_first_by_filters(
        session, Notification, id=notification_id, user_id=user_id
    )
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


async def mark_as_read(
    session: AsyncSession, notification_id: int, user_id: int
) -> Notification:
    """Mark one of the user's notifications read; other users' are not found."""
    async with session.begin():
        notification = await _owned_notification(session, notification_id, user_id)
        if not notification.read:
            notification.read = True
            notification.read_at = utcnow()
            await session.flush()
    return notification


async def mark_all_as_read(session: AsyncSession, user_id: int) -> int:
    async with session.begin():
        result = await session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
    logger.info(f"Marked {result.rowcount} notification(s) read for user {user_id}")
    return result.rowcount


async def delete_notification(
    session: AsyncSession, notification_id: int, user_id: int
) -> None:
    async with session.begin():
        notification = await _owned_notification(session, notification_id, user_id)
        await delete_item(session, notification.id, Notification, commit=False)
