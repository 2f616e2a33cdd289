from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

AlertType = Literal["food_low", "water_low", "device_offline"]


class CommandIn(BaseModel):
    """Remote command issued from the dashboard.

    Example:
    {
        "command": "dispense_food",
        "device_id": "esp32-feeder-01"
    }
    """
    command: str
    device_id: str | None = None


class DeviceUpdateIn(BaseModel):
    device_id: str | None = None
    name: str | None = None
    location_name: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class NotificationSettingsIn(BaseModel):
    email: EmailStr | None = None
    email_enabled: bool = True
    food_low_threshold: float = Field(default=200, ge=0)
    water_low_enabled: bool = True
    device_offline_enabled: bool = True


class RecipientIn(BaseModel):
    email: EmailStr


class AlertDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_value: float | None = Field(default=None, alias="currentValue")
    threshold: float | None = None
    device_id: str | None = Field(default=None, alias="deviceId")


class SendAlertIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    alert_type: AlertType = Field(alias="alertType")
    user_id: str | None = Field(default=None, alias="userId")
    details: AlertDetails = Field(default_factory=AlertDetails)


class WebhookIn(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class SensorReadingData(BaseModel):
    device_id: str | None = None
    food_weight: float | None = None
    water_level_ok: bool | None = None
    rain_value: int | None = None
    is_raining: bool | None = None
    food_pir_triggered: bool | None = False
    water_pir_triggered: bool | None = False
    ip_address: str | None = None
    firmware_version: str | None = None


class DispenseEventData(BaseModel):
    device_id: str | None = None
    event_type: Literal["food", "water"]
    trigger_source: Literal["pir", "manual", "remote"]
    amount_dispensed: float | None = None
    food_weight_before: float | None = None
    food_weight_after: float | None = None


class CommandExecutedData(BaseModel):
    command_id: int
