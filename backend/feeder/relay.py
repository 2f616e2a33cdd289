import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from asyncio_mqtt import Client, MqttError

from .config import MqttSettings
from .errors import RelayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandMessage:
    command_id: int
    device_id: str
    command: str
    timestamp: datetime

    def to_payload(self, message_id: str) -> dict:
        return {
            "message_id": message_id,
            "command_id": self.command_id,
            "device_id": self.device_id,
            "command": self.command,
            "timestamp": self.timestamp.isoformat(),
        }


class Relay(Protocol):
    async def publish(self, message: CommandMessage) -> str:
        """Publish a command and return the relay message id, or raise RelayError."""
        ...


class MqttRelay:
    """Publishes command intents to the topic the device subscribes to.

    Each publish opens its own short-lived broker connection; commands are rare
    and the device polls the database anyway when this path is down.
    """

    def __init__(self, settings: MqttSettings):
        self.settings = settings

    def topic_for(self, device_id: str) -> str:
        # A device id must be exactly one topic level
        if not device_id or any(c in device_id for c in "+#/"):
            raise RelayError(f"Device id {device_id!r} is not a valid MQTT topic level")
        return self.settings.command_topic.format(device_id=device_id)

    async def _publish(self, topic: str, payload: str) -> None:
        async with Client(
            self.settings.host,
            self.settings.port,
            username=self.settings.username,
            password=self.settings.password,
        ) as client:
            await client.publish(topic, payload, qos=self.settings.qos)

    async def publish(self, message: CommandMessage) -> str:
        message_id = uuid.uuid4().hex
        topic = self.topic_for(message.device_id)
        payload = json.dumps(message.to_payload(message_id))
        try:
            await asyncio.wait_for(self._publish(topic, payload), timeout=self.settings.publish_timeout)
        except asyncio.TimeoutError as exc:
            raise RelayError(f"Timed out publishing to {topic}") from exc
        except (MqttError, OSError, ValueError) as exc:
            raise RelayError(f"MQTT publish to {topic} failed: {exc}") from exc
        logger.info("Published command %s to %s (message %s)", message.command_id, topic, message_id)
        return message_id
