"""Daily/weekly dispense summaries and the PIR activity heatmap.

Windows start on local calendar midnights in the configured time zone, so a
DST change inside the week moves neither the start of today nor of the week.
Heatmap days follow the dashboard's convention: 0 is Sunday, 6 is Saturday.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import as_utc, utcnow
from ..errors import InvalidArgument
from ..models import DispenseEvent, SensorReading

SCOPES = ("device", "all")
DAYS = 7
HOURS = 24


@dataclass
class Summary:
    food_events: int = 0
    water_events: int = 0
    total_food_dispensed: float = 0.0

    def to_dict(self) -> dict:
        return {
            "foodEvents": self.food_events,
            "waterEvents": self.water_events,
            "totalFoodDispensed": self.total_food_dispensed,
        }


@dataclass
class HeatmapCell:
    day: int
    hour: int
    count: int = 0


@dataclass
class Statistics:
    daily: Summary
    weekly: Summary
    heatmap: list[HeatmapCell]

    def to_dict(self) -> dict:
        return {
            "daily": self.daily.to_dict(),
            "weekly": self.weekly.to_dict(),
            "heatmapData": [asdict(cell) for cell in self.heatmap],
        }


def window_starts(now: datetime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Return (start of today, start of today minus 7 days) as UTC instants."""
    today = now.astimezone(tz).date()
    today_start = datetime.combine(today, time.min, tzinfo=tz)
    week_start = datetime.combine(today - timedelta(days=7), time.min, tzinfo=tz)
    return today_start.astimezone(timezone.utc), week_start.astimezone(timezone.utc)


def summarize(events) -> Summary:
    summary = Summary()
    for event_type, amount in events:
        if event_type == "food":
            summary.food_events += 1
            summary.total_food_dispensed += amount or 0
        elif event_type == "water":
            summary.water_events += 1
    return summary


def local_bucket(created_at: datetime, tz: ZoneInfo) -> tuple[int, int]:
    local = as_utc(created_at).astimezone(tz)
    # isoweekday: Monday=1 .. Sunday=7
    return local.isoweekday() % 7, local.hour


def build_heatmap(readings, tz: ZoneInfo) -> list[HeatmapCell]:
    counts = [[0] * HOURS for _ in range(DAYS)]
    for food_pir, water_pir, created_at in readings:
        if food_pir or water_pir:
            day, hour = local_bucket(created_at, tz)
            counts[day][hour] += 1
    return [HeatmapCell(day=day, hour=hour, count=counts[day][hour]) for day in range(DAYS) for hour in range(HOURS)]


async def compute_statistics(
    db: AsyncSession,
    device_id: str,
    scope: str = "device",
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> Statistics:
    if scope not in SCOPES:
        raise InvalidArgument("scope must be 'device' or 'all'")
    tz = tz or ZoneInfo("UTC")
    now = (now or utcnow()).astimezone(timezone.utc)
    today_start, week_start = window_starts(now, tz)

    daily_q = select(DispenseEvent.event_type, DispenseEvent.amount_dispensed).where(
        DispenseEvent.created_at >= today_start, DispenseEvent.created_at <= now
    )
    weekly_q = select(DispenseEvent.event_type, DispenseEvent.amount_dispensed).where(
        DispenseEvent.created_at >= week_start, DispenseEvent.created_at <= now
    )
    readings_q = select(
        SensorReading.food_pir_triggered, SensorReading.water_pir_triggered, SensorReading.created_at
    ).where(SensorReading.created_at >= week_start, SensorReading.created_at <= now)

    if scope == "device":
        daily_q = daily_q.where(DispenseEvent.device_id == device_id)
        weekly_q = weekly_q.where(DispenseEvent.device_id == device_id)
        readings_q = readings_q.where(SensorReading.device_id == device_id)

    daily = summarize((await db.execute(daily_q)).all())
    weekly = summarize((await db.execute(weekly_q)).all())
    heatmap = build_heatmap((await db.execute(readings_q)).all(), tz)
    return Statistics(daily=daily, weekly=weekly, heatmap=heatmap)
