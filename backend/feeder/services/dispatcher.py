"""Remote command dispatch.

A command is persisted first, then offered to the relay. The feeder also polls
for ``sent`` commands, so a relay outage still ends with the command marked
``sent`` unless strict mode is configured.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import utcnow
from ..errors import Conflict, InvalidArgument, NotFound, RelayError, StorageError
from ..models import COMMAND_NAMES, DeviceCommand
from ..relay import CommandMessage, Relay

logger = logging.getLogger(__name__)

POLLING_NOTE = "Relay unavailable; the device will pick up the command when it polls"
NOT_CONFIGURED_NOTE = "Relay not configured; the device will pick up the command when it polls"
DELIVERED_NOTE = "Command published to device"


@dataclass
class DispatchResult:
    command: DeviceCommand
    delivered: bool
    note: str
    relay_message_id: str | None = None


class CommandDispatcher:
    def __init__(self, relay: Relay | None, strict: bool = False):
        self.relay = relay
        self.strict = strict

    async def dispatch(self, db: AsyncSession, command: str, device_id: str, issuer: str) -> DispatchResult:
        if command not in COMMAND_NAMES:
            raise InvalidArgument("Invalid command. Must be one of: " + ", ".join(COMMAND_NAMES))
        if not device_id:
            raise InvalidArgument("device_id is required")

        row = DeviceCommand(device_id=device_id, command=command, status="pending", created_by=issuer)
        db.add(row)
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to persist %s command for %s", command, device_id)
            raise StorageError("Failed to create command") from exc

        if self.relay is None:
            await self._set_status(db, row, "sent")
            return DispatchResult(command=row, delivered=False, note=NOT_CONFIGURED_NOTE)

        message = CommandMessage(command_id=row.id, device_id=device_id, command=command, timestamp=utcnow())
        try:
            message_id = await self.relay.publish(message)
        except Exception as exc:
            # Any relay failure must still move the row out of pending
            reason = exc.message if isinstance(exc, RelayError) else repr(exc)
            if self.strict:
                logger.error("Relay failed for command %s, marking failed: %s", row.id, reason)
                await self._set_status(db, row, "failed")
                raise RelayError(command=row) from exc
            logger.warning("Relay failed for command %s, falling back to polling: %s", row.id, reason)
            await self._set_status(db, row, "sent")
            return DispatchResult(command=row, delivered=False, note=POLLING_NOTE)

        await self._set_status(db, row, "sent")
        return DispatchResult(command=row, delivered=True, note=DELIVERED_NOTE, relay_message_id=message_id)

    async def _set_status(self, db: AsyncSession, row: DeviceCommand, status: str) -> None:
        if not row.can_transition(status):
            raise Conflict(f"Command {row.id} cannot move from {row.status} to {status}")
        row.status = status
        if status == "executed":
            row.executed_at = utcnow()
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to update command %s to %s", row.id, status)
            raise StorageError("Failed to update command status") from exc

    async def list_recent(self, db: AsyncSession, limit: int = 20) -> list[DeviceCommand]:
        res = await db.execute(
            select(DeviceCommand).order_by(DeviceCommand.created_at.desc(), DeviceCommand.id.desc()).limit(limit)
        )
        return list(res.scalars().all())

    async def pending_for_device(self, db: AsyncSession, device_id: str) -> list[DeviceCommand]:
        res = await db.execute(
            select(DeviceCommand)
            .where(DeviceCommand.device_id == device_id, DeviceCommand.status == "sent")
            .order_by(DeviceCommand.created_at.asc(), DeviceCommand.id.asc())
        )
        return list(res.scalars().all())

    async def mark_executed(self, db: AsyncSession, command_id: int) -> DeviceCommand:
        row = await db.get(DeviceCommand, command_id)
        if row is None:
            raise NotFound(f"Command {command_id} not found")
        await self._set_status(db, row, "executed")
        logger.info("Command %s executed on %s", row.id, row.device_id)
        return row
