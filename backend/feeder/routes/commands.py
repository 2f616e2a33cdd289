from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import CurrentUser, require_service, require_user
from ..config import Settings
from ..db import get_db
from ..deps import get_app_settings, get_dispatcher
from ..schemas import CommandIn
from ..services import CommandDispatcher

router = APIRouter(tags=["commands"])


@router.post("/commands", status_code=201)
async def create_command(
    body: CommandIn,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings),
):
    """Queue a command for the feeder and try to push it over the relay.

    Body example:
    {
        "command": "dispense_food",
        "device_id": "esp32-feeder-01"
    }
    """
    device_id = body.device_id or settings.default_device_id
    result = await dispatcher.dispatch(db, body.command, device_id, user.id)
    return {
        "success": True,
        "command": result.command.to_dict(),
        "delivered": result.delivered,
        "relay_message_id": result.relay_message_id,
        "delivery_note": result.note,
    }


@router.get("/commands", dependencies=[Depends(require_user)])
async def list_commands(db: AsyncSession = Depends(get_db), dispatcher: CommandDispatcher = Depends(get_dispatcher)):
    rows = await dispatcher.list_recent(db, limit=20)
    return {"commands": [r.to_dict() for r in rows]}


@router.get("/devices/{device_id}/commands/pending", dependencies=[Depends(require_service)])
async def poll_commands(
    device_id: str,
    db: AsyncSession = Depends(get_db),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """Commands the device has not reported as executed yet.

    The feeder polls this when it missed the relay message; it reports each
    command back through the ``command_executed`` webhook.
    """
    rows = await dispatcher.pending_for_device(db, device_id)
    return {"commands": [r.to_dict() for r in rows]}
