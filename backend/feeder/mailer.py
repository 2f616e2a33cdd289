"""Alert emails and the transactional mail provider client."""

import html
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from .errors import MailerError

logger = logging.getLogger(__name__)

FOOTER = (
    '<hr style="border: none; border-top: 1px solid #e5e7eb; margin: 24px 0;">'
    '<p style="color: #6b7280; font-size: 12px;">This is an automated alert from Smart Stray Animal Feeder.</p>'
)


@dataclass(frozen=True)
class AlertEmail:
    alert_type: str
    recipients: list[str]
    current_value: float | None = None
    threshold: float | None = None
    device_id: str | None = None


def _fmt(value: float | None, default: float) -> str:
    value = default if value is None else value
    return f"{value:g}"


def render_subject(email: AlertEmail) -> str:
    return {
        "food_low": "Low Food Alert - Smart Feeder",
        "water_low": "Low Water Alert - Smart Feeder",
        "device_offline": "Device Offline Alert - Smart Feeder",
    }[email.alert_type]


def render_html(email: AlertEmail) -> str:
    if email.alert_type == "food_low":
        body = (
            '<h2 style="color: #d97706;">Low Food Level Alert</h2>'
            "<p>Your smart feeder's food level is running low and needs to be refilled.</p>"
            f"<p><strong>Current Level:</strong> {_fmt(email.current_value, 0)}g</p>"
            f"<p><strong>Threshold:</strong> {_fmt(email.threshold, 200)}g</p>"
            "<p>Please refill the food container soon to ensure your stray animal friends are fed!</p>"
        )
    elif email.alert_type == "water_low":
        body = (
            '<h2 style="color: #0891b2;">Water Tank Empty</h2>'
            "<p>Your smart feeder's water tank is empty and needs to be refilled.</p>"
            "<p><strong>Status:</strong> Water tank is empty</p>"
            "<p>Please refill the water tank soon to keep the animals hydrated!</p>"
        )
    elif email.alert_type == "device_offline":
        device_id = html.escape(email.device_id or "unknown")
        body = (
            '<h2 style="color: #dc2626;">Feeder Device Offline</h2>'
            "<p>Your smart feeder has gone offline and is no longer sending data.</p>"
            f"<p><strong>Device ID:</strong> {device_id}</p>"
            "<p><strong>Status:</strong> Offline</p>"
            "<p>This could be due to:</p>"
            "<ul><li>Power outage at the feeder location</li>"
            "<li>WiFi connectivity issues</li>"
            "<li>Hardware malfunction</li></ul>"
            "<p>Please check the feeder when possible.</p>"
        )
    else:
        raise ValueError(f"Unknown alert type: {email.alert_type}")
    return f'<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">{body}{FOOTER}</div>'


class Mailer(Protocol):
    async def send(self, email: AlertEmail) -> None:
        """Deliver one alert to all of its recipients, or raise MailerError."""
        ...


class ResendMailer:
    def __init__(
        self,
        api_key: str | None,
        sender: str,
        api_url: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url
        self.timeout = timeout
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def send(self, email: AlertEmail) -> None:
        if not email.recipients:
            raise MailerError("No recipients")
        if not self.api_key:
            raise MailerError("Email service not configured")

        client = await self._get_http_client()
        try:
            response = await client.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": email.recipients,
                    "subject": render_subject(email),
                    "html": render_html(email),
                },
            )
        except httpx.TimeoutException as exc:
            raise MailerError("Mail provider timed out") from exc
        except httpx.RequestError as exc:
            raise MailerError(f"Mail provider unreachable: {exc}") from exc

        if response.status_code >= 400:
            logger.warning("Mail provider rejected %s alert: HTTP %s", email.alert_type, response.status_code)
            raise MailerError(f"Mail provider returned HTTP {response.status_code}")
        logger.info("Sent %s alert to %d recipient(s)", email.alert_type, len(email.recipients))
