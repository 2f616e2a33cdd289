"""Request authentication.

Users sign in with the external identity provider, which hands the browser a
signed JWT. We only verify that token here. Devices and cloud functions call
the service endpoints with the shared webhook secret instead.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings
from .errors import Unauthorized

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str | None = None


def create_token(sub: str, settings: Settings, email: str | None = None, minutes: int = 60) -> str:
    """Mint a token the way the identity provider does (local runs and tests)."""
    now = datetime.now(timezone.utc)
    payload = {"sub": sub, "iat": now, "exp": now + timedelta(minutes=minutes)}
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> CurrentUser:
    try:
        data = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except JWTError as exc:
        raise Unauthorized("Invalid token") from exc
    sub = data.get("sub")
    if not sub:
        raise Unauthorized("Invalid token")
    return CurrentUser(id=str(sub), email=data.get("email"))


def _bearer_or_cookie(request: Request, credentials: HTTPAuthorizationCredentials | None, settings: Settings) -> str | None:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(settings.session_cookie_name)


def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> CurrentUser | None:
    settings = request.app.state.settings
    token = _bearer_or_cookie(request, credentials, settings)
    if not token:
        return None
    try:
        return decode_token(token, settings)
    except Unauthorized:
        return None


def require_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> CurrentUser:
    settings = request.app.state.settings
    token = _bearer_or_cookie(request, credentials, settings)
    if not token:
        raise Unauthorized()
    return decode_token(token, settings)


def is_service_request(request: Request, credentials: HTTPAuthorizationCredentials | None) -> bool:
    expected = request.app.state.settings.webhook_secret_token
    if not expected:
        return True
    if credentials is None:
        return False
    return hmac.compare_digest(credentials.credentials.encode(), expected.encode())


def require_service(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> None:
    if not is_service_request(request, credentials):
        logger.warning("Rejected service call to %s: bad webhook secret", request.url.path)
        raise Unauthorized()
