"""Smart Feeder API.

Run with ``uvicorn feeder.main:create_app --factory``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings, get_settings
from .db import Base, create_engine, create_session_factory
from .errors import register_exception_handlers
from .logging import setup_logging
from .mailer import Mailer, ResendMailer
from .relay import MqttRelay, Relay
from .routes import routers
from .services import AlertEngine, AlertWorker, CommandDispatcher

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    relay: Relay | None = None,
    mailer: Mailer | None = None,
    engine: AsyncEngine | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_json)

    engine = engine or create_engine(settings.database_url)
    session_factory = create_session_factory(engine)
    if relay is None and settings.relay_configured:
        relay = MqttRelay(settings.mqtt)
    if relay is None:
        logger.warning("MQTT relay not configured; devices will receive commands by polling")
    mailer = mailer or ResendMailer(
        settings.resend_api_key, settings.email_from, settings.resend_api_url, settings.email_timeout_seconds
    )
    alert_engine = AlertEngine(mailer, settings.alert_cooldown_minutes, settings.default_device_id)
    alert_worker = AlertWorker(alert_engine, session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        alert_worker.start()
        yield
        await alert_worker.stop()
        if isinstance(mailer, ResendMailer):
            await mailer.close()
        await engine.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.dispatcher = CommandDispatcher(relay, strict=settings.command_relay_strict)
    app.state.alert_engine = alert_engine
    app.state.alert_worker = alert_worker

    for router in routers:
        app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app
