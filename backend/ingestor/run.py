"""MQTT telemetry ingestor.

Feeders that talk MQTT publish sensor readings to
``feeder/devices/{device_id}/telemetry``. Each message is stored the same way
the webhook stores it, then queued for the background alert worker. Alert
emails are never sent from the subscription loop.

Run with ``python -m ingestor.run`` from the backend directory.
"""

import asyncio
import json
import logging

from asyncio_mqtt import Client, MqttError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feeder.config import Settings, get_settings
from feeder.db import Base, create_engine, create_session_factory
from feeder.errors import InvalidArgument
from feeder.logging import setup_logging
from feeder.mailer import ResendMailer
from feeder.schemas import SensorReadingData
from feeder.services import AlertEngine, AlertWorker
from feeder.services.ingestion import parse, record_sensor_reading

logger = logging.getLogger("ingestor")

RECONNECT_DELAY = 3


def device_from_topic(topic: str) -> str | None:
    parts = topic.split("/")  # feeder devices {device_id} telemetry
    if len(parts) < 4 or not parts[-2]:
        return None
    return parts[-2]


async def handle_message(
    topic: str,
    payload: bytes,
    session_factory: async_sessionmaker[AsyncSession],
    worker: AlertWorker,
    default_device_id: str,
) -> bool:
    device_id = device_from_topic(topic)
    if device_id is None:
        logger.warning("Ignoring message on unexpected topic %s", topic)
        return False
    try:
        body = json.loads(payload.decode())
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Dropping non-JSON telemetry from %s", device_id)
        return False
    if not isinstance(body, dict):
        logger.warning("Dropping telemetry from %s: expected a JSON object", device_id)
        return False
    body["device_id"] = device_id

    try:
        data = parse(SensorReadingData, body)
    except InvalidArgument as exc:
        logger.warning("Dropping telemetry from %s: %s", device_id, exc.message)
        return False

    async with session_factory() as db:
        observation = await record_sensor_reading(db, data, default_device_id)
    worker.submit(observation)
    return True


async def consume(settings: Settings, session_factory: async_sessionmaker[AsyncSession], worker: AlertWorker):
    mqtt = settings.mqtt
    while True:
        try:
            async with Client(mqtt.host, mqtt.port, username=mqtt.username, password=mqtt.password) as client:
                await client.subscribe(mqtt.telemetry_topic, qos=mqtt.qos)
                logger.info("Subscribed to %s on %s:%s", mqtt.telemetry_topic, mqtt.host, mqtt.port)
                async with client.unfiltered_messages() as messages:
                    async for m in messages:
                        try:
                            await handle_message(
                                m.topic, m.payload, session_factory, worker, settings.default_device_id
                            )
                        except Exception:
                            logger.exception("Failed to ingest message on %s", m.topic)
        except MqttError as exc:
            logger.warning("MQTT connection lost (%s), reconnecting in %ss", exc, RECONNECT_DELAY)
            await asyncio.sleep(RECONNECT_DELAY)


async def main():
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    if not settings.relay_configured:
        raise SystemExit("MQTT__HOST is not set")

    engine = create_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = create_session_factory(engine)
    mailer = ResendMailer(
        settings.resend_api_key, settings.email_from, settings.resend_api_url, settings.email_timeout_seconds
    )
    worker = AlertWorker(
        AlertEngine(mailer, settings.alert_cooldown_minutes, settings.default_device_id), session_factory
    )
    worker.start()
    try:
        await consume(settings, session_factory, worker)
    finally:
        await worker.stop()
        await mailer.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
