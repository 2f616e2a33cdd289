"""Shared fixtures: per-test SQLite database, fake relay and mailer, API client."""

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from feeder.auth import create_token
from feeder.config import Settings
from feeder.db import Base, create_session_factory
from feeder.errors import MailerError, RelayError
from feeder.main import create_app
from feeder.models import NotificationRecipient, NotificationSettings

WEBHOOK_SECRET = "hook-secret"


class FakeRelay:
    def __init__(self, fail: bool = False, on_publish=None):
        self.fail = fail
        self.on_publish = on_publish
        self.messages = []

    async def publish(self, message):
        if self.on_publish is not None:
            await self.on_publish(message)
        if self.fail:
            raise RelayError("broker unreachable")
        self.messages.append(message)
        return f"msg-{len(self.messages)}"


class FakeMailer:
    def __init__(self, fail_for=(), error: Exception | None = None):
        self.fail_for = set(fail_for)
        self.error = error
        self.sent = []
        self.attempts = []

    async def send(self, email):
        self.attempts.append(email)
        if self.error is not None:
            raise self.error
        if self.fail_for.intersection(email.recipients):
            raise MailerError("provider rejected message")
        self.sent.append(email)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret="test-secret",
        webhook_secret_token=WEBHOOK_SECRET,
        alert_cooldown_minutes=0,
        timezone="UTC",
    )


@pytest.fixture
async def engine(tmp_path):
    # A file, not :memory:, so the alert worker and requests get separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'feeder.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
async def app(settings, relay, mailer, engine):
    app = create_app(settings, relay=relay, mailer=mailer, engine=engine)
    app.state.alert_worker.start()
    yield app
    await app.state.alert_worker.stop()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def user_headers(settings):
    token = create_token("user-1", settings, email="owner@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def service_headers():
    return {"Authorization": f"Bearer {WEBHOOK_SECRET}"}


async def add_user(db, user_id, recipients=(), **settings_fields):
    db.add(NotificationSettings(user_id=user_id, **settings_fields))
    for email in recipients:
        db.add(NotificationRecipient(user_id=user_id, email=email))
    await db.commit()
