"""Threshold alerts fanned out to each user's recipient list.

Every user with email alerts enabled is evaluated on its own: one failed
delivery or history write is logged and the loop moves on. One history row is
written per user and alert, whatever the number of recipients.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import utcnow
from ..errors import InvalidArgument, MailerError, NoRecipients
from ..mailer import AlertEmail, Mailer
from ..models import ALERT_TYPES, DEFAULT_FOOD_LOW_THRESHOLD, AlertHistory, NotificationRecipient, NotificationSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    device_id: str
    food_weight: float | None = None
    water_level_ok: bool | None = None


@dataclass(frozen=True)
class AlertDetails:
    current_value: float | None = None
    threshold: float | None = None
    device_id: str | None = None


@dataclass(frozen=True)
class UserAlertSettings:
    user_id: str
    food_low_threshold: float
    water_low_enabled: bool
    device_offline_enabled: bool


@dataclass
class FanoutResult:
    sent: int = 0
    failed: int = 0

    def add(self, recipients: int, ok: bool) -> None:
        if ok:
            self.sent += recipients
        else:
            self.failed += recipients


class AlertEngine:
    def __init__(self, mailer: Mailer, cooldown_minutes: int = 0, default_device_id: str | None = None):
        self.mailer = mailer
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self.default_device_id = default_device_id

    async def evaluate_and_notify(self, db: AsyncSession, observation: Observation) -> None:
        """Check one sensor observation against every enabled user's thresholds."""
        for settings in await self._enabled_settings(db):
            try:
                await self._evaluate_user(db, settings, observation)
            except SQLAlchemyError:
                await db.rollback()
                logger.exception("Alert evaluation failed for user %s", settings.user_id)

    async def _evaluate_user(self, db: AsyncSession, settings: UserAlertSettings, observation: Observation) -> None:
        recipients = await self.recipient_emails(db, settings.user_id)
        if not recipients:
            return

        food = observation.food_weight
        threshold = settings.food_low_threshold
        if food is not None and food < threshold:
            if await self._in_cooldown(db, settings.user_id, "food_low"):
                logger.debug("food_low for user %s suppressed by cooldown", settings.user_id)
            else:
                email = AlertEmail(
                    "food_low", recipients, current_value=food, threshold=threshold, device_id=observation.device_id
                )
                message = f"Food level {food:g}g on {observation.device_id} is below {threshold:g}g"
                await self._send_and_record(db, settings.user_id, email, message)

        if settings.water_low_enabled and observation.water_level_ok is False:
            if await self._in_cooldown(db, settings.user_id, "water_low"):
                logger.debug("water_low for user %s suppressed by cooldown", settings.user_id)
            else:
                email = AlertEmail("water_low", recipients, device_id=observation.device_id)
                message = f"Water tank empty on {observation.device_id}"
                await self._send_and_record(db, settings.user_id, email, message)

    async def notify_device_offline(self, db: AsyncSession, device_id: str) -> FanoutResult:
        result = FanoutResult()
        for settings in await self._enabled_settings(db, alert_type="device_offline"):
            try:
                recipients = await self.recipient_emails(db, settings.user_id)
                if not recipients or await self._in_cooldown(db, settings.user_id, "device_offline"):
                    continue
                email = AlertEmail("device_offline", recipients, device_id=device_id)
                history = await self._send_and_record(db, settings.user_id, email, f"Device {device_id} went offline")
                result.add(len(recipients), history.email_sent)
            except SQLAlchemyError:
                await db.rollback()
                logger.exception("Offline alert failed for user %s", settings.user_id)
        return result

    async def send_alert(
        self, db: AsyncSession, alert_type: str, details: AlertDetails, user_id: str | None = None
    ) -> FanoutResult:
        """Explicitly send one alert type to every matching user, no cooldown."""
        self._check_type(alert_type)
        result = FanoutResult()
        for settings in await self._enabled_settings(db, alert_type=alert_type, user_id=user_id):
            recipients = await self.recipient_emails(db, settings.user_id)
            if not recipients:
                continue
            email = AlertEmail(
                alert_type,
                recipients,
                current_value=details.current_value,
                threshold=settings.food_low_threshold,
                device_id=details.device_id or self.default_device_id,
            )
            try:
                history = await self._send_and_record(
                    db, settings.user_id, email, f"Alert sent to {len(recipients)} recipient(s)"
                )
                ok = history.email_sent
            except SQLAlchemyError:
                await db.rollback()
                logger.exception("Failed to record %s alert for user %s", alert_type, settings.user_id)
                ok = False
            result.add(len(recipients), ok)
        return result

    async def send_test_alert(
        self, db: AsyncSession, user_id: str, alert_type: str, details: AlertDetails
    ) -> AlertHistory:
        self._check_type(alert_type)
        recipients = await self.recipient_emails(db, user_id)
        if not recipients:
            raise NoRecipients()

        res = await db.execute(select(NotificationSettings).where(NotificationSettings.user_id == user_id))
        settings = res.scalar_one_or_none()
        threshold = details.threshold
        if threshold is None:
            threshold = settings.food_low_threshold if settings else DEFAULT_FOOD_LOW_THRESHOLD
        email = AlertEmail(
            alert_type,
            recipients,
            current_value=details.current_value if details.current_value is not None else 0,
            threshold=threshold,
            device_id=details.device_id or self.default_device_id,
        )
        message = f"Test alert sent to {len(recipients)} recipient(s)"
        history = await self._send_and_record(db, user_id, email, message)
        logger.info("Test %s alert for user %s: email_sent=%s", alert_type, user_id, history.email_sent)
        return history

    async def list_history(self, db: AsyncSession, user_id: str, limit: int = 50) -> list[AlertHistory]:
        res = await db.execute(
            select(AlertHistory)
            .where(AlertHistory.user_id == user_id)
            .order_by(AlertHistory.sent_at.desc(), AlertHistory.id.desc())
            .limit(limit)
        )
        return list(res.scalars().all())

    async def recipient_emails(self, db: AsyncSession, user_id: str) -> list[str]:
        res = await db.execute(
            select(NotificationRecipient.email)
            .where(NotificationRecipient.user_id == user_id)
            .order_by(NotificationRecipient.created_at, NotificationRecipient.id)
        )
        return list(res.scalars().all())

    async def _enabled_settings(
        self, db: AsyncSession, alert_type: str | None = None, user_id: str | None = None
    ) -> list[UserAlertSettings]:
        query = select(NotificationSettings).where(NotificationSettings.email_enabled.is_(True))
        if user_id:
            query = query.where(NotificationSettings.user_id == user_id)
        if alert_type == "water_low":
            query = query.where(NotificationSettings.water_low_enabled.is_(True))
        elif alert_type == "device_offline":
            query = query.where(NotificationSettings.device_offline_enabled.is_(True))
        res = await db.execute(query.order_by(NotificationSettings.id))
        # Detached copies: a rollback inside the per-user loop must not expire them
        return [
            UserAlertSettings(
                user_id=row.user_id,
                food_low_threshold=row.food_low_threshold,
                water_low_enabled=row.water_low_enabled,
                device_offline_enabled=row.device_offline_enabled,
            )
            for row in res.scalars().all()
        ]

    async def _in_cooldown(self, db: AsyncSession, user_id: str, alert_type: str) -> bool:
        if not self.cooldown:
            return False
        since = utcnow() - self.cooldown
        res = await db.execute(
            select(AlertHistory.id)
            .where(
                AlertHistory.user_id == user_id,
                AlertHistory.alert_type == alert_type,
                AlertHistory.email_sent.is_(True),
                AlertHistory.sent_at >= since,
            )
            .limit(1)
        )
        return res.scalar_one_or_none() is not None

    async def _send_and_record(self, db: AsyncSession, user_id: str, email: AlertEmail, message: str) -> AlertHistory:
        try:
            await self.mailer.send(email)
            ok = True
        except MailerError as exc:
            logger.warning("%s alert for user %s not delivered: %s", email.alert_type, user_id, exc.message)
            ok = False
        except Exception:
            logger.exception("%s alert for user %s raised while sending", email.alert_type, user_id)
            ok = False

        history = AlertHistory(user_id=user_id, alert_type=email.alert_type, message=message, email_sent=ok)
        db.add(history)
        await db.commit()
        return history

    @staticmethod
    def _check_type(alert_type: str) -> None:
        if alert_type not in ALERT_TYPES:
            raise InvalidArgument("Alert type must be one of: " + ", ".join(ALERT_TYPES))
