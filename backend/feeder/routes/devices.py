import logging
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import require_service, require_user
from ..config import Settings
from ..db import get_db
from ..deps import get_alert_engine, get_app_settings
from ..schemas import DeviceUpdateIn
from ..services import AlertEngine
from ..services.devices import list_devices, mark_stale_offline, update_device

logger = logging.getLogger(__name__)

router = APIRouter(tags=["devices"])


@router.get("/devices", dependencies=[Depends(require_user)])
async def get_devices(db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_app_settings)):
    offline_after = timedelta(seconds=settings.device_offline_after_seconds)
    return {"devices": await list_devices(db, offline_after)}


@router.put("/devices", dependencies=[Depends(require_user)])
async def put_device(body: DeviceUpdateIn, db: AsyncSession = Depends(get_db)):
    device = await update_device(
        db,
        body.device_id,
        name=body.name,
        location_name=body.location_name,
        latitude=body.latitude,
        longitude=body.longitude,
    )
    return {"device": device.to_dict()}


@router.post("/devices/offline-check", dependencies=[Depends(require_service)])
async def offline_check(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    alerts: AlertEngine = Depends(get_alert_engine),
):
    """Mark silent devices offline and alert their owners (called by a scheduler)."""
    offline = await mark_stale_offline(db, timedelta(seconds=settings.device_offline_after_seconds))
    sent = failed = 0
    for device_id in offline:
        result = await alerts.notify_device_offline(db, device_id)
        sent += result.sent
        failed += result.failed
    return {"offline": offline, "sent": sent, "failed": failed}
