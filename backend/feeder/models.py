from sqlalchemy import BigInteger, Boolean, Column, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from .db import Base, as_utc, utcnow

COMMAND_NAMES = ("dispense_food", "dispense_water", "calibrate")
EVENT_TYPES = ("food", "water")
TRIGGER_SOURCES = ("pir", "manual", "remote")
ALERT_TYPES = ("food_low", "water_low", "device_offline")

# Allowed forward moves of DeviceCommand.status
COMMAND_TRANSITIONS = {
    "pending": ("sent", "failed"),
    "sent": ("executed",),
    "failed": ("executed",),
    "executed": (),
}

DEFAULT_FOOD_LOW_THRESHOLD = 200


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None


class Device(Base):
    __tablename__ = "devices"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    device_id = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    location_name = Column(String)
    latitude = Column(Float)
    longitude = Column(Float)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "name": self.name,
            "location_name": self.location_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": _iso(self.created_at),
        }


class DeviceStatus(Base):
    __tablename__ = "device_status"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    device_id = Column(String, unique=True, nullable=False)
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime(timezone=True))
    ip_address = Column(String)
    firmware_version = Column(String)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "device_id": self.device_id,
            "is_online": self.is_online,
            "last_seen": _iso(self.last_seen),
            "ip_address": self.ip_address,
            "firmware_version": self.firmware_version,
            "updated_at": _iso(self.updated_at),
        }


class SensorReading(Base):
    __tablename__ = "sensor_readings"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    device_id = Column(String, nullable=False, index=True)
    food_weight = Column(Float)
    water_level_ok = Column(Boolean)
    rain_value = Column(Integer)
    is_raining = Column(Boolean)
    food_pir_triggered = Column(Boolean, default=False, nullable=False)
    water_pir_triggered = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "food_weight": self.food_weight,
            "water_level_ok": self.water_level_ok,
            "rain_value": self.rain_value,
            "is_raining": self.is_raining,
            "food_pir_triggered": self.food_pir_triggered,
            "water_pir_triggered": self.water_pir_triggered,
            "created_at": _iso(self.created_at),
        }


class DispenseEvent(Base):
    __tablename__ = "dispense_events"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    device_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)  # food | water
    trigger_source = Column(String, nullable=False)  # pir | manual | remote
    amount_dispensed = Column(Float)
    food_weight_before = Column(Float)
    food_weight_after = Column(Float)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "event_type": self.event_type,
            "trigger_source": self.trigger_source,
            "amount_dispensed": self.amount_dispensed,
            "food_weight_before": self.food_weight_before,
            "food_weight_after": self.food_weight_after,
            "created_at": _iso(self.created_at),
        }


class DeviceCommand(Base):
    __tablename__ = "device_commands"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    device_id = Column(String, nullable=False, index=True)
    command = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending", server_default="pending")
    created_by = Column(String)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    executed_at = Column(DateTime(timezone=True))

    def can_transition(self, status: str) -> bool:
        return status in COMMAND_TRANSITIONS.get(self.status, ())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "device_id": self.device_id,
            "command": self.command,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "executed_at": _iso(self.executed_at),
        }


class NotificationSettings(Base):
    __tablename__ = "notification_settings"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    user_id = Column(String, unique=True, nullable=False)
    email = Column(String)
    email_enabled = Column(Boolean, default=True, nullable=False)
    food_low_threshold = Column(Float, default=DEFAULT_FOOD_LOW_THRESHOLD, nullable=False)
    water_low_enabled = Column(Boolean, default=True, nullable=False)
    device_offline_enabled = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "email_enabled": self.email_enabled,
            "food_low_threshold": self.food_low_threshold,
            "water_low_enabled": self.water_low_enabled,
            "device_offline_enabled": self.device_offline_enabled,
            "updated_at": _iso(self.updated_at),
        }


class NotificationRecipient(Base):
    __tablename__ = "notification_recipients"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    __table_args__ = (UniqueConstraint("user_id", "email", name="uq_recipient_user_email"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "created_at": _iso(self.created_at),
        }


class AlertHistory(Base):
    __tablename__ = "alert_history"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    alert_type = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    sent_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, server_default=func.now())
    email_sent = Column(Boolean, default=False, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "alert_type": self.alert_type,
            "message": self.message,
            "sent_at": _iso(self.sent_at),
            "email_sent": self.email_sent,
        }
