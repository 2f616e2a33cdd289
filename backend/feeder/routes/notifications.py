from fastapi import APIRouter, Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import CurrentUser, get_optional_user, is_service_request, require_user, security
from ..db import get_db
from ..deps import get_alert_engine
from ..errors import InvalidArgument, Unauthorized
from ..schemas import NotificationSettingsIn, RecipientIn, SendAlertIn
from ..services import AlertDetails, AlertEngine
from ..services import notifications as store

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/settings")
async def get_settings(user: CurrentUser = Depends(require_user), db: AsyncSession = Depends(get_db)):
    return {"settings": await store.load_settings(db, user.id, user.email)}


@router.put("/settings")
async def put_settings(
    body: NotificationSettingsIn,
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    row = await store.save_settings(db, user.id, body)
    return {"settings": row.to_dict()}


@router.get("/recipients")
async def get_recipients(user: CurrentUser = Depends(require_user), db: AsyncSession = Depends(get_db)):
    rows = await store.list_recipients(db, user.id)
    return {"recipients": [r.to_dict() for r in rows]}


@router.post("/recipients", status_code=201)
async def add_recipient(body: RecipientIn, user: CurrentUser = Depends(require_user), db: AsyncSession = Depends(get_db)):
    row = await store.add_recipient(db, user.id, str(body.email))
    return {"recipient": row.to_dict()}


@router.delete("/recipients")
async def delete_recipient(
    id: int | None = Query(default=None),
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    if id is None:
        raise InvalidArgument("Missing recipient ID")
    await store.delete_recipient(db, user.id, id)
    return {"success": True}


@router.get("/history")
async def get_history(
    user: CurrentUser = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    alerts: AlertEngine = Depends(get_alert_engine),
):
    rows = await alerts.list_history(db, user.id)
    return {"alerts": [r.to_dict() for r in rows]}


@router.post("/send-alert")
async def send_alert(
    body: SendAlertIn,
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    user: CurrentUser | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
    alerts: AlertEngine = Depends(get_alert_engine),
):
    """Signed-in users get a test alert on their own recipients; service callers fan out."""
    details = AlertDetails(
        current_value=body.details.current_value,
        threshold=body.details.threshold,
        device_id=body.details.device_id,
    )
    if user is not None:
        history = await alerts.send_test_alert(db, user.id, body.alert_type, details)
        return {"success": history.email_sent, "alert": history.to_dict()}

    if not is_service_request(request, credentials):
        raise Unauthorized()
    result = await alerts.send_alert(db, body.alert_type, details, user_id=body.user_id)
    return {"success": True, "sent": result.sent, "failed": result.failed}
