import json

import httpx
import pytest

from feeder.errors import MailerError
from feeder.mailer import AlertEmail, ResendMailer, render_html, render_subject

API_URL = "https://mail.test/emails"


def make_mailer(handler, api_key="re_test"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResendMailer(api_key, "Smart Feeder <alerts@example.com>", API_URL, http_client=client)


def test_food_template_shows_level_and_threshold():
    body = render_html(AlertEmail("food_low", ["a@example.com"], current_value=150, threshold=200))
    assert "150g" in body
    assert "200g" in body
    assert render_subject(AlertEmail("food_low", [])) == "Low Food Alert - Smart Feeder"


def test_offline_template_escapes_device_id():
    body = render_html(AlertEmail("device_offline", ["a@example.com"], device_id="<script>"))
    assert "&lt;script&gt;" in body
    assert "<script>" not in body


def test_unknown_template():
    with pytest.raises(ValueError):
        render_html(AlertEmail("earthquake", ["a@example.com"]))


async def test_send_posts_to_provider():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "email-1"})

    mailer = make_mailer(handler)
    await mailer.send(AlertEmail("water_low", ["a@example.com", "b@example.com"]))
    await mailer.close()

    assert len(requests) == 1
    sent = requests[0]
    assert str(sent.url) == API_URL
    assert sent.headers["Authorization"] == "Bearer re_test"
    payload = json.loads(sent.content)
    assert payload["to"] == ["a@example.com", "b@example.com"]
    assert payload["subject"] == "Low Water Alert - Smart Feeder"


async def test_provider_error_raises():
    mailer = make_mailer(lambda request: httpx.Response(422, json={"message": "invalid from"}))
    with pytest.raises(MailerError):
        await mailer.send(AlertEmail("food_low", ["a@example.com"]))


async def test_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("no route to host")

    mailer = make_mailer(handler)
    with pytest.raises(MailerError):
        await mailer.send(AlertEmail("food_low", ["a@example.com"]))


async def test_missing_api_key_never_calls_provider():
    calls = []
    mailer = make_mailer(lambda request: calls.append(request) or httpx.Response(200), api_key=None)
    with pytest.raises(MailerError, match="not configured"):
        await mailer.send(AlertEmail("food_low", ["a@example.com"]))
    assert calls == []
