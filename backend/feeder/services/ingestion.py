"""Device reports arriving through the webhook or the MQTT ingestor."""

import logging

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidArgument
from ..models import DispenseEvent, SensorReading
from ..schemas import CommandExecutedData, DispenseEventData, SensorReadingData
from .alerts import Observation
from .devices import ensure_device, upsert_status
from .dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

PAYLOAD_TYPES = ("sensor_reading", "dispense_event", "command_executed")


def parse(model: type[BaseModel], data: dict):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise InvalidArgument(f"{field}: {first['msg']}" if field else first["msg"]) from exc


async def record_sensor_reading(db: AsyncSession, data: SensorReadingData, default_device_id: str) -> Observation:
    device_id = data.device_id or default_device_id
    await ensure_device(db, device_id)
    db.add(
        SensorReading(
            device_id=device_id,
            food_weight=data.food_weight,
            water_level_ok=data.water_level_ok,
            rain_value=data.rain_value,
            is_raining=data.is_raining,
            food_pir_triggered=bool(data.food_pir_triggered),
            water_pir_triggered=bool(data.water_pir_triggered),
        )
    )
    await upsert_status(db, device_id, ip_address=data.ip_address, firmware_version=data.firmware_version)
    await db.commit()
    return Observation(device_id=device_id, food_weight=data.food_weight, water_level_ok=data.water_level_ok)


async def record_dispense_event(db: AsyncSession, data: DispenseEventData, default_device_id: str) -> DispenseEvent:
    device_id = data.device_id or default_device_id
    await ensure_device(db, device_id)
    event = DispenseEvent(
        device_id=device_id,
        event_type=data.event_type,
        trigger_source=data.trigger_source,
        amount_dispensed=data.amount_dispensed,
        food_weight_before=data.food_weight_before,
        food_weight_after=data.food_weight_after,
    )
    db.add(event)
    await db.commit()
    logger.info("%s dispense on %s (%s)", data.event_type, device_id, data.trigger_source)
    return event


async def handle_webhook(
    db: AsyncSession,
    payload_type: str,
    data: dict,
    dispatcher: CommandDispatcher,
    default_device_id: str,
) -> Observation | None:
    """Store one device report. Returns the observation to evaluate for alerts, if any."""
    if payload_type == "sensor_reading":
        return await record_sensor_reading(db, parse(SensorReadingData, data), default_device_id)
    if payload_type == "dispense_event":
        await record_dispense_event(db, parse(DispenseEventData, data), default_device_id)
        return None
    if payload_type == "command_executed":
        body = parse(CommandExecutedData, data)
        await dispatcher.mark_executed(db, body.command_id)
        return None
    raise InvalidArgument("Unknown payload type")
