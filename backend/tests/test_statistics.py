"""Tests for dispense summaries and the local-time activity heatmap."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from feeder.errors import InvalidArgument
from feeder.models import DispenseEvent, SensorReading
from feeder.services.statistics import compute_statistics, window_starts

DEVICE = "esp32-feeder-01"
NEW_YORK = ZoneInfo("America/New_York")
# Wednesday 2026-03-11 16:00 EDT; clocks sprang forward on Sunday 2026-03-08
NOW = datetime(2026, 3, 11, 20, 0, tzinfo=timezone.utc)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def cell(stats, day, hour):
    return stats.heatmap[day * 24 + hour].count


async def test_empty_history_is_all_zero(db):
    stats = await compute_statistics(db, DEVICE, "device", now=NOW, tz=NEW_YORK)

    body = stats.to_dict()
    zero = {"foodEvents": 0, "waterEvents": 0, "totalFoodDispensed": 0}
    assert body["daily"] == zero
    assert body["weekly"] == zero
    assert len(body["heatmapData"]) == 168
    assert all(c["count"] == 0 for c in body["heatmapData"])
    assert body["heatmapData"][0] == {"day": 0, "hour": 0, "count": 0}
    assert body["heatmapData"][25] == {"day": 1, "hour": 1, "count": 0}


def test_windows_start_on_local_midnights_across_dst():
    today_start, week_start = window_starts(NOW, NEW_YORK)

    assert today_start == utc(2026, 3, 11, 4, 0)  # midnight EDT
    assert week_start == utc(2026, 3, 4, 5, 0)  # midnight EST, before the change


async def test_daily_and_weekly_summaries(db):
    db.add_all(
        [
            # 23:30 EDT the previous evening: weekly only
            DispenseEvent(device_id=DEVICE, event_type="food", trigger_source="pir",
                          amount_dispensed=20, created_at=utc(2026, 3, 11, 3, 30)),
            # 00:30 EDT today
            DispenseEvent(device_id=DEVICE, event_type="food", trigger_source="remote",
                          amount_dispensed=15.5, created_at=utc(2026, 3, 11, 4, 30)),
            DispenseEvent(device_id=DEVICE, event_type="food", trigger_source="manual",
                          amount_dispensed=None, created_at=utc(2026, 3, 11, 12, 0)),
            DispenseEvent(device_id=DEVICE, event_type="water", trigger_source="pir",
                          created_at=utc(2026, 3, 11, 13, 0)),
            # before the weekly window
            DispenseEvent(device_id=DEVICE, event_type="food", trigger_source="pir",
                          amount_dispensed=99, created_at=utc(2026, 3, 4, 4, 0)),
            # another device
            DispenseEvent(device_id="other", event_type="food", trigger_source="pir",
                          amount_dispensed=7, created_at=utc(2026, 3, 11, 12, 0)),
        ]
    )
    await db.commit()

    stats = await compute_statistics(db, DEVICE, "device", now=NOW, tz=NEW_YORK)
    assert stats.daily.to_dict() == {"foodEvents": 2, "waterEvents": 1, "totalFoodDispensed": 15.5}
    assert stats.weekly.to_dict() == {"foodEvents": 3, "waterEvents": 1, "totalFoodDispensed": 35.5}

    everywhere = await compute_statistics(db, DEVICE, "all", now=NOW, tz=NEW_YORK)
    assert everywhere.daily.to_dict() == {"foodEvents": 3, "waterEvents": 1, "totalFoodDispensed": 22.5}


async def test_heatmap_uses_local_time_across_dst(db):
    db.add_all(
        [
            # Wed 2026-03-04 14:30 EST
            SensorReading(device_id=DEVICE, food_pir_triggered=True, created_at=utc(2026, 3, 4, 19, 30)),
            # Wed 2026-03-11 14:15 EDT, both triggers: counted once
            SensorReading(device_id=DEVICE, food_pir_triggered=True, water_pir_triggered=True,
                          created_at=utc(2026, 3, 11, 18, 15)),
            # Wed 2026-03-11 15:00 EDT
            SensorReading(device_id=DEVICE, water_pir_triggered=True, created_at=utc(2026, 3, 11, 19, 0)),
            # Sun 2026-03-08 03:30 EDT, just after the clocks jumped
            SensorReading(device_id=DEVICE, food_pir_triggered=True, created_at=utc(2026, 3, 8, 7, 30)),
            # no motion
            SensorReading(device_id=DEVICE, food_weight=300, created_at=utc(2026, 3, 5, 12, 0)),
            # Tue 2026-03-03, outside the window
            SensorReading(device_id=DEVICE, food_pir_triggered=True, created_at=utc(2026, 3, 3, 19, 30)),
            # another device
            SensorReading(device_id="other", food_pir_triggered=True, created_at=utc(2026, 3, 11, 18, 20)),
        ]
    )
    await db.commit()

    stats = await compute_statistics(db, DEVICE, "device", now=NOW, tz=NEW_YORK)

    assert cell(stats, 3, 14) == 2
    assert cell(stats, 3, 15) == 1
    assert cell(stats, 0, 3) == 1
    assert sum(c.count for c in stats.heatmap) == 4

    everywhere = await compute_statistics(db, DEVICE, "all", now=NOW, tz=NEW_YORK)
    assert cell(everywhere, 3, 14) == 3


async def test_unknown_scope_rejected(db):
    with pytest.raises(InvalidArgument):
        await compute_statistics(db, DEVICE, "fleet", now=NOW)
