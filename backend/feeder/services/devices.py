import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import as_utc, utcnow
from ..errors import InvalidArgument, NotFound
from ..models import Device, DeviceStatus, DispenseEvent, SensorReading
from .statistics import SCOPES

logger = logging.getLogger(__name__)

_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def is_reachable(status: DeviceStatus | None, offline_after: timedelta, now: datetime | None = None) -> bool:
    if status is None or not status.is_online or status.last_seen is None:
        return False
    now = now or utcnow()
    return now - as_utc(status.last_seen) <= offline_after


def _insert(db: AsyncSession, model):
    # ON CONFLICT so two first readings from one device can't both insert
    return _INSERTS[db.get_bind().dialect.name](model)


async def ensure_device(db: AsyncSession, device_id: str) -> Device:
    stmt = _insert(db, Device).values(device_id=device_id, name=device_id, created_at=utcnow())
    res = await db.execute(stmt.on_conflict_do_nothing(index_elements=["device_id"]))
    if res.rowcount:
        logger.info("Registered new device %s", device_id)
    res = await db.execute(select(Device).where(Device.device_id == device_id))
    return res.scalar_one()


async def upsert_status(
    db: AsyncSession, device_id: str, ip_address: str | None = None, firmware_version: str | None = None
) -> DeviceStatus:
    now = utcnow()
    fields = {
        "is_online": True,
        "last_seen": now,
        "ip_address": ip_address,
        "firmware_version": firmware_version,
        "updated_at": now,
    }
    stmt = _insert(db, DeviceStatus).values(device_id=device_id, **fields)
    await db.execute(stmt.on_conflict_do_update(index_elements=["device_id"], set_=fields))
    res = await db.execute(
        select(DeviceStatus)
        .where(DeviceStatus.device_id == device_id)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one()


async def list_devices(db: AsyncSession, offline_after: timedelta) -> list[dict]:
    devices = (await db.execute(select(Device).order_by(Device.name.asc()))).scalars().all()
    statuses = {s.device_id: s for s in (await db.execute(select(DeviceStatus))).scalars().all()}
    now = utcnow()
    out = []
    for device in devices:
        status = statuses.get(device.device_id)
        item = device.to_dict()
        item["is_online"] = is_reachable(status, offline_after, now)
        item["last_seen"] = status.to_dict()["last_seen"] if status else None
        out.append(item)
    return out


async def update_device(db: AsyncSession, device_id: str | None, **fields) -> Device:
    if not device_id:
        raise InvalidArgument("device_id required")
    res = await db.execute(select(Device).where(Device.device_id == device_id))
    device = res.scalar_one_or_none()
    if not device:
        raise NotFound(f"Device {device_id} not found")
    for key, value in fields.items():
        if key == "name" and not value:
            continue
        setattr(device, key, value)
    await db.commit()
    return device


async def mark_stale_offline(db: AsyncSession, offline_after: timedelta) -> list[str]:
    """Flip devices silent for longer than ``offline_after`` to offline."""
    cutoff = utcnow() - offline_after
    res = await db.execute(
        select(DeviceStatus).where(DeviceStatus.is_online.is_(True), DeviceStatus.last_seen < cutoff)
    )
    stale = list(res.scalars().all())
    for status in stale:
        status.is_online = False
        status.updated_at = utcnow()
    await db.commit()
    ids = [s.device_id for s in stale]
    if ids:
        logger.warning("Devices went offline: %s", ", ".join(ids))
    return ids


async def sensor_overview(db: AsyncSession, device_id: str, scope: str = "device") -> dict:
    if scope not in SCOPES:
        raise InvalidArgument("scope must be 'device' or 'all'")

    latest = (
        await db.execute(
            select(SensorReading)
            .where(SensorReading.device_id == device_id)
            .order_by(SensorReading.created_at.desc(), SensorReading.id.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    status = (
        await db.execute(select(DeviceStatus).where(DeviceStatus.device_id == device_id))
    ).scalar_one_or_none()

    events_q = select(DispenseEvent).order_by(DispenseEvent.created_at.desc(), DispenseEvent.id.desc()).limit(10)
    history_q = (
        select(SensorReading)
        .where(SensorReading.created_at >= utcnow() - timedelta(hours=24))
        .order_by(SensorReading.created_at.asc(), SensorReading.id.asc())
    )
    if scope == "device":
        events_q = events_q.where(DispenseEvent.device_id == device_id)
        history_q = history_q.where(SensorReading.device_id == device_id)

    events = (await db.execute(events_q)).scalars().all()
    history = (await db.execute(history_q)).scalars().all()
    return {
        "latestReading": latest.to_dict() if latest else None,
        "deviceStatus": status.to_dict() if status else None,
        "recentEvents": [e.to_dict() for e in events],
        "sensorHistory": [r.to_dict() for r in history],
    }
