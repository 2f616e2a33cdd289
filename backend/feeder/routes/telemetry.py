from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import require_service, require_user
from ..config import Settings
from ..db import get_db
from ..deps import get_alert_worker, get_app_settings, get_dispatcher
from ..schemas import WebhookIn
from ..services import AlertWorker, CommandDispatcher, compute_statistics
from ..services.devices import sensor_overview
from ..services.ingestion import handle_webhook

router = APIRouter(tags=["telemetry"])


@router.get("/sensor-data", dependencies=[Depends(require_user)])
async def get_sensor_data(
    device_id: str | None = None,
    scope: str = "device",
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    return await sensor_overview(db, device_id or settings.default_device_id, scope)


@router.get("/statistics", dependencies=[Depends(require_user)])
async def get_statistics(
    device_id: str | None = None,
    scope: str = "device",
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    stats = await compute_statistics(
        db, device_id or settings.default_device_id, scope, tz=ZoneInfo(settings.timezone)
    )
    return stats.to_dict()


@router.post("/webhook", dependencies=[Depends(require_service)])
async def webhook(
    body: WebhookIn,
    db: AsyncSession = Depends(get_db),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
    worker: AlertWorker = Depends(get_alert_worker),
    settings: Settings = Depends(get_app_settings),
):
    """Device reports forwarded by the cloud function.

    Body: ``{"type": "sensor_reading" | "dispense_event" | "command_executed", "data": {...}}``
    """
    observation = await handle_webhook(db, body.type, body.data, dispatcher, settings.default_device_id)
    if observation is not None:
        worker.submit(observation)
    return {"success": True}
