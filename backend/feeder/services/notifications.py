import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import utcnow
from ..errors import Conflict, NotFound
from ..models import DEFAULT_FOOD_LOW_THRESHOLD, NotificationRecipient, NotificationSettings
from ..schemas import NotificationSettingsIn

logger = logging.getLogger(__name__)


def default_settings(user_id: str, email: str | None) -> dict:
    return {
        "user_id": user_id,
        "email": email or "",
        "email_enabled": True,
        "food_low_threshold": DEFAULT_FOOD_LOW_THRESHOLD,
        "water_low_enabled": True,
        "device_offline_enabled": True,
        "updated_at": None,
    }


async def load_settings(db: AsyncSession, user_id: str, email: str | None = None) -> dict:
    res = await db.execute(select(NotificationSettings).where(NotificationSettings.user_id == user_id))
    row = res.scalar_one_or_none()
    return row.to_dict() if row else default_settings(user_id, email)


async def save_settings(db: AsyncSession, user_id: str, body: NotificationSettingsIn) -> NotificationSettings:
    res = await db.execute(select(NotificationSettings).where(NotificationSettings.user_id == user_id))
    row = res.scalar_one_or_none()
    if not row:
        row = NotificationSettings(user_id=user_id)
        db.add(row)
    row.email = body.email
    row.email_enabled = body.email_enabled
    row.food_low_threshold = body.food_low_threshold
    row.water_low_enabled = body.water_low_enabled
    row.device_offline_enabled = body.device_offline_enabled
    row.updated_at = utcnow()
    await db.commit()
    return row


async def list_recipients(db: AsyncSession, user_id: str) -> list[NotificationRecipient]:
    res = await db.execute(
        select(NotificationRecipient)
        .where(NotificationRecipient.user_id == user_id)
        .order_by(NotificationRecipient.created_at.asc(), NotificationRecipient.id.asc())
    )
    return list(res.scalars().all())


async def add_recipient(db: AsyncSession, user_id: str, email: str) -> NotificationRecipient:
    row = NotificationRecipient(user_id=user_id, email=email)
    db.add(row)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise Conflict("Email already added") from exc
    logger.info("User %s added alert recipient", user_id)
    return row


async def delete_recipient(db: AsyncSession, user_id: str, recipient_id: int) -> None:
    res = await db.execute(
        delete(NotificationRecipient).where(
            NotificationRecipient.id == recipient_id, NotificationRecipient.user_id == user_id
        )
    )
    if not res.rowcount:
        await db.rollback()
        raise NotFound("Recipient not found")
    await db.commit()
