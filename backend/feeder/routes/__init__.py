from .commands import router as commands_router
from .devices import router as devices_router
from .notifications import router as notifications_router
from .telemetry import router as telemetry_router

routers = [commands_router, devices_router, notifications_router, telemetry_router]
