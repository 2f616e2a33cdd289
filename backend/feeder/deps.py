from fastapi import Request

from .config import Settings
from .services import AlertEngine, AlertWorker, CommandDispatcher


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> CommandDispatcher:
    return request.app.state.dispatcher


def get_alert_engine(request: Request) -> AlertEngine:
    return request.app.state.alert_engine


def get_alert_worker(request: Request) -> AlertWorker:
    return request.app.state.alert_worker
