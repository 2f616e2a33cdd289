"""Tests for threshold evaluation and alert fan-out."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import FakeMailer, add_user
from feeder.db import utcnow
from feeder.errors import InvalidArgument, NoRecipients
from feeder.models import AlertHistory
from feeder.services import AlertDetails, AlertEngine, Observation

DEVICE = "esp32-feeder-01"


async def history(db, user_id=None):
    query = select(AlertHistory).order_by(AlertHistory.id)
    if user_id:
        query = query.where(AlertHistory.user_id == user_id)
    return list((await db.execute(query)).scalars().all())


async def test_food_below_threshold_sends_one_alert(db):
    await add_user(db, "u1", recipients=["a@example.com", "b@example.com"], food_low_threshold=200)
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, food_weight=150))

    assert len(mailer.attempts) == 1
    email = mailer.attempts[0]
    assert email.alert_type == "food_low"
    assert email.recipients == ["a@example.com", "b@example.com"]
    assert email.current_value == 150
    assert email.threshold == 200
    rows = await history(db)
    assert len(rows) == 1
    assert rows[0].alert_type == "food_low"
    assert rows[0].email_sent is True


async def test_food_above_threshold_sends_nothing(db):
    await add_user(db, "u1", recipients=["a@example.com"], food_low_threshold=200)
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, food_weight=250))

    assert mailer.attempts == []
    assert await history(db) == []


async def test_water_empty_sends_water_alert(db):
    await add_user(db, "u1", recipients=["a@example.com"], water_low_enabled=True)
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, water_level_ok=False))

    assert [e.alert_type for e in mailer.attempts] == ["water_low"]
    assert [r.alert_type for r in await history(db)] == ["water_low"]


@pytest.mark.parametrize("water_level_ok", [True, None])
async def test_water_ok_or_unknown_sends_nothing(db, water_level_ok):
    await add_user(db, "u1", recipients=["a@example.com"], food_low_threshold=1000)
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, water_level_ok=water_level_ok))

    assert mailer.attempts == []


async def test_water_alert_respects_user_toggle(db):
    await add_user(db, "u1", recipients=["a@example.com"], water_low_enabled=False)
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, water_level_ok=False))

    assert mailer.attempts == []


async def test_food_and_water_breach_write_two_rows(db):
    await add_user(db, "u1", recipients=["a@example.com"])
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, food_weight=10, water_level_ok=False))

    assert [r.alert_type for r in await history(db)] == ["food_low", "water_low"]


async def test_user_without_recipients_is_skipped(db):
    await add_user(db, "u1", recipients=[])
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, food_weight=0, water_level_ok=False))

    assert mailer.attempts == []
    assert await history(db) == []


async def test_disabled_email_is_skipped(db):
    await add_user(db, "u1", recipients=["a@example.com"], email_enabled=False)
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, food_weight=0))

    assert mailer.attempts == []


async def test_failed_send_is_recorded_and_next_user_still_notified(db):
    await add_user(db, "u1", recipients=["broken@example.com"])
    await add_user(db, "u2", recipients=["fine@example.com"])
    mailer = FakeMailer(fail_for={"broken@example.com"})

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, food_weight=50))

    rows = await history(db)
    assert [(r.user_id, r.email_sent) for r in rows] == [("u1", False), ("u2", True)]


async def test_unexpected_mailer_exception_degrades_to_unsent(db):
    await add_user(db, "u1", recipients=["a@example.com"])
    mailer = FakeMailer(error=RuntimeError("socket closed"))

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, food_weight=50))

    rows = await history(db)
    assert len(rows) == 1
    assert rows[0].email_sent is False


async def test_thresholds_are_per_user(db):
    await add_user(db, "low", recipients=["low@example.com"], food_low_threshold=100)
    await add_user(db, "high", recipients=["high@example.com"], food_low_threshold=300)
    mailer = FakeMailer()

    await AlertEngine(mailer).evaluate_and_notify(db, Observation(DEVICE, food_weight=150))

    assert [r.user_id for r in await history(db)] == ["high"]


async def test_cooldown_suppresses_repeat_alerts(db):
    await add_user(db, "u1", recipients=["a@example.com"])
    mailer = FakeMailer()
    engine = AlertEngine(mailer, cooldown_minutes=30)

    await engine.evaluate_and_notify(db, Observation(DEVICE, food_weight=50))
    await engine.evaluate_and_notify(db, Observation(DEVICE, food_weight=40))
    await engine.evaluate_and_notify(db, Observation(DEVICE, water_level_ok=False))

    assert [e.alert_type for e in mailer.attempts] == ["food_low", "water_low"]


async def test_cooldown_expires(db):
    await add_user(db, "u1", recipients=["a@example.com"])
    db.add(
        AlertHistory(
            user_id="u1",
            alert_type="food_low",
            message="old",
            email_sent=True,
            sent_at=utcnow() - timedelta(minutes=45),
        )
    )
    await db.commit()
    mailer = FakeMailer()

    await AlertEngine(mailer, cooldown_minutes=30).evaluate_and_notify(db, Observation(DEVICE, food_weight=50))

    assert len(mailer.attempts) == 1


async def test_failed_alert_does_not_start_cooldown(db):
    await add_user(db, "u1", recipients=["a@example.com"])
    mailer = FakeMailer(error=RuntimeError("down"))
    engine = AlertEngine(mailer, cooldown_minutes=30)

    await engine.evaluate_and_notify(db, Observation(DEVICE, food_weight=50))
    await engine.evaluate_and_notify(db, Observation(DEVICE, food_weight=50))

    assert len(mailer.attempts) == 2


async def test_test_alert_requires_recipients(db):
    mailer = FakeMailer()
    with pytest.raises(NoRecipients):
        await AlertEngine(mailer).send_test_alert(db, "u1", "food_low", AlertDetails())
    assert mailer.attempts == []
    assert await history(db) == []


async def test_test_alert_uses_synthetic_details(db):
    await add_user(db, "u1", recipients=["a@example.com"], food_low_threshold=150)
    mailer = FakeMailer()

    row = await AlertEngine(mailer, default_device_id=DEVICE).send_test_alert(
        db, "u1", "food_low", AlertDetails()
    )

    email = mailer.attempts[0]
    assert email.current_value == 0
    assert email.threshold == 150
    assert email.device_id == DEVICE
    assert row.email_sent is True
    assert row.user_id == "u1"


async def test_unknown_alert_type_rejected(db):
    await add_user(db, "u1", recipients=["a@example.com"])
    with pytest.raises(InvalidArgument):
        await AlertEngine(FakeMailer()).send_test_alert(db, "u1", "fire", AlertDetails())


async def test_send_alert_fans_out_to_matching_users(db):
    await add_user(db, "u1", recipients=["a@example.com", "b@example.com"])
    await add_user(db, "u2", recipients=["c@example.com"], water_low_enabled=False)
    await add_user(db, "u3", recipients=[])
    mailer = FakeMailer(fail_for={"a@example.com"})

    result = await AlertEngine(mailer).send_alert(db, "water_low", AlertDetails())

    assert result.sent == 0
    assert result.failed == 2
    assert [r.user_id for r in await history(db)] == ["u1"]


async def test_send_alert_scoped_to_one_user(db):
    await add_user(db, "u1", recipients=["a@example.com"])
    await add_user(db, "u2", recipients=["b@example.com"])
    mailer = FakeMailer()

    result = await AlertEngine(mailer).send_alert(db, "food_low", AlertDetails(current_value=12), user_id="u2")

    assert result.sent == 1
    assert mailer.attempts[0].recipients == ["b@example.com"]
    assert mailer.attempts[0].current_value == 12


async def test_device_offline_alert_respects_toggle(db):
    await add_user(db, "u1", recipients=["a@example.com"], device_offline_enabled=True)
    await add_user(db, "u2", recipients=["b@example.com"], device_offline_enabled=False)
    mailer = FakeMailer()

    result = await AlertEngine(mailer).notify_device_offline(db, DEVICE)

    assert result.sent == 1
    assert mailer.attempts[0].alert_type == "device_offline"
    assert mailer.attempts[0].device_id == DEVICE
    assert [r.user_id for r in await history(db)] == ["u1"]


async def test_history_is_newest_first(db):
    await add_user(db, "u1", recipients=["a@example.com"])
    engine = AlertEngine(FakeMailer())
    await engine.send_test_alert(db, "u1", "food_low", AlertDetails())
    await engine.send_test_alert(db, "u1", "water_low", AlertDetails())

    rows = await engine.list_history(db, "u1")
    assert [r.alert_type for r in rows] == ["water_low", "food_low"]
