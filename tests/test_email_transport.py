"""Tests for the SMTP and HTTP mail transports."""

import json

import aiosmtplib
import httpx
import pytest

from src.infrastructure import email as email_infra
from src.infrastructure.email import (
    HttpMailTransport,
    MailDeliveryError,
    MailTransport,
    SmtpMailTransport,
    build_transport,
)


@pytest.fixture
def mock_http(monkeypatch):
    """Route the transport's httpx client through a MockTransport and record requests."""
    requests = []
    responses = {"status": 202}
    real_client = httpx.AsyncClient

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if isinstance(responses["status"], Exception):
            raise responses["status"]
        return httpx.Response(responses["status"], json={"id": "msg-1"})

    monkeypatch.setattr(
        email_infra.httpx, "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    return requests, responses


class TestSmtpMailTransport:
    async def test_dev_without_smtp_is_a_stub(self, monkeypatch):
        monkeypatch.setattr(email_infra, "ENVIRONMENT", "development")

        async def fail(*args, **kwargs):
            raise AssertionError("should not connect")

        monkeypatch.setattr(email_infra.aiosmtplib, "send", fail)
        await SmtpMailTransport(host="", username="").send("a@x.com", "from@x.com", "Hi", "<p>hi</p>", "hi")

    async def test_builds_multipart_message(self, monkeypatch):
        sent = {}

        async def fake_send(message, **kwargs):
            sent["message"] = message
            sent["kwargs"] = kwargs

        monkeypatch.setattr(email_infra.aiosmtplib, "send", fake_send)
        transport = SmtpMailTransport(host="smtp.x.com", port=587, username="u", password="p")
        await transport.send("a@x.com", "from@x.com", "Hi", "<p>hi</p>", "hi")

        msg = sent["message"]
        assert msg["To"] == "a@x.com"
        assert msg["Subject"] == "Hi"
        assert msg.is_multipart()
        assert sent["kwargs"]["start_tls"] is True

    async def test_smtp_error_becomes_delivery_error(self, monkeypatch):
        async def fake_send(message, **kwargs):
            raise aiosmtplib.SMTPException("relay denied")

        monkeypatch.setattr(email_infra.aiosmtplib, "send", fake_send)
        transport = SmtpMailTransport(host="smtp.x.com", username="u", password="p")
        with pytest.raises(MailDeliveryError):
            await transport.send("a@x.com", "from@x.com", "Hi", None, "hi")

    async def test_check_connects_and_sends_noop(self, monkeypatch):
        calls = []

        class FakeSMTP:
            def __init__(self, **kwargs):
                calls.append(("init", kwargs))
                self.is_connected = False

            async def connect(self):
                calls.append("connect")
                self.is_connected = True

            async def noop(self):
                calls.append("noop")

            def close(self):
                calls.append("close")
                self.is_connected = False

        monkeypatch.setattr(email_infra.aiosmtplib, "SMTP", FakeSMTP)
        transport = SmtpMailTransport(host="smtp.x.com", port=587, username="u", password="p")

        assert await transport.check() is True
        assert calls[0][1]["hostname"] == "smtp.x.com"
        assert calls[1:] == ["connect", "noop", "close"]

    @pytest.mark.parametrize("error", [aiosmtplib.SMTPConnectError("refused"), ConnectionRefusedError("refused")])
    async def test_check_reports_unreachable_server(self, monkeypatch, error):
        class FailingSMTP:
            is_connected = False

            def __init__(self, **kwargs):
                pass

            async def connect(self):
                raise error

            async def noop(self):
                raise AssertionError("should not be reached")

            def close(self):
                pass

        monkeypatch.setattr(email_infra.aiosmtplib, "SMTP", FailingSMTP)
        transport = SmtpMailTransport(host="smtp.x.com", username="u", password="p")
        assert await transport.check() is False


class TestHttpMailTransport:
    async def test_posts_json_with_bearer_key(self, mock_http):
        requests, _ = mock_http
        transport = HttpMailTransport(api_url="https://mail.api/send", api_key="k-123")

        await transport.send("a@x.com", "from@x.com", "Hi", "<p>hi</p>", "hi")

        assert len(requests) == 1
        assert requests[0].headers["authorization"] == "Bearer k-123"
        body = json.loads(requests[0].content)
        assert body["to"] == ["a@x.com"]
        assert body["subject"] == "Hi"

    async def test_error_status_raises(self, mock_http):
        _, responses = mock_http
        responses["status"] = 503
        with pytest.raises(MailDeliveryError):
            await HttpMailTransport(api_url="https://mail.api/send").send("a@x.com", "f@x.com", "Hi", None, "hi")

    def test_requires_url(self, monkeypatch):
        monkeypatch.setattr(email_infra, "MAIL_API_URL", "")
        with pytest.raises(MailDeliveryError):
            HttpMailTransport()

    async def test_check_reachable_api(self, mock_http):
        requests, _ = mock_http
        transport = HttpMailTransport(api_url="https://mail.api/send", api_key="k-123")

        assert await transport.check() is True
        assert requests[0].method == "HEAD"
        assert requests[0].headers["authorization"] == "Bearer k-123"

    async def test_check_accepts_post_only_endpoint(self, mock_http):
        _, responses = mock_http
        responses["status"] = 405
        assert await HttpMailTransport(api_url="https://mail.api/send").check() is True

    @pytest.mark.parametrize("status", [401, 503])
    async def test_check_error_status_is_unhealthy(self, mock_http, status):
        _, responses = mock_http
        responses["status"] = status
        assert await HttpMailTransport(api_url="https://mail.api/send").check() is False

    async def test_check_connection_error_is_unhealthy(self, mock_http):
        _, responses = mock_http
        responses["status"] = httpx.ConnectError("connection refused")
        assert await HttpMailTransport(api_url="https://mail.api/send").check() is False


def test_build_transport_defaults_to_smtp(monkeypatch):
    monkeypatch.setattr(email_infra, "MAIL_TRANSPORT", "smtp")
    assert isinstance(build_transport(), SmtpMailTransport)


def test_transport_without_check_cannot_be_built():
    class SendOnly(MailTransport):
        async def send(self, to, from_address, subject, html, text):
            pass

    with pytest.raises(TypeError):
        SendOnly()
