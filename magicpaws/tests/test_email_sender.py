"""Resend sender against a mocked transport, and sender selection."""

import json

import httpx
import pytest

from magicpaws.core.config import settings
from magicpaws.features.notifications import templates
from magicpaws.features.notifications.email import (
    EmailDeliveryError,
    EmailMessage,
    LoggingEmailSender,
    ResendEmailSender,
    get_email_sender,
)

MESSAGE = EmailMessage("alice@example.com", "Hello", "<p>Hi</p>")


def sender_with(handler) -> ResendEmailSender:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ResendEmailSender(
        "re_test_key",
        api_url="https://api.resend.test/emails",
        sender="Magic Paws <noreply@magicpaws.test>",
        client=client,
    )


def test_send_posts_message():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["authorization"]
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_123"})

    assert sender_with(handler).send(MESSAGE) == "email_123"
    assert captured["auth"] == "Bearer re_test_key"
    assert captured["url"] == "https://api.resend.test/emails"
    assert captured["body"]["to"] == ["alice@example.com"]
    assert captured["body"]["from"] == "Magic Paws <noreply@magicpaws.test>"
    assert captured["body"]["subject"] == "Hello"


def test_reply_to_is_forwarded():
    captured = {}

    def handler(request):
        captured.update(json.loads(request.content))
        return httpx.Response(200, json={"id": "email_1"})

    sender_with(handler).send(EmailMessage("a@example.com", "s", "<p>h</p>", reply_to="owner@example.com"))
    assert captured["reply_to"] == "owner@example.com"


def test_server_error_is_transient():
    sender = sender_with(lambda request: httpx.Response(503, json={"message": "unavailable"}))
    with pytest.raises(EmailDeliveryError) as exc:
        sender.send(MESSAGE)
    assert exc.value.transient is True
    assert exc.value.provider == "resend"


def test_client_error_is_not_transient():
    sender = sender_with(lambda request: httpx.Response(422, json={"message": "invalid to"}))
    with pytest.raises(EmailDeliveryError) as exc:
        sender.send(MESSAGE)
    assert exc.value.transient is False
    assert exc.value.status_code == 502


def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(EmailDeliveryError) as exc:
        sender_with(handler).send(MESSAGE)
    assert exc.value.transient is True
    assert exc.value.status_code == 504


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", None)
    with pytest.raises(EmailDeliveryError):
        ResendEmailSender()


def test_sender_selection(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", None)
    assert isinstance(get_email_sender(), LoggingEmailSender)

    monkeypatch.setattr(settings, "ENV", "production")
    with pytest.raises(EmailDeliveryError):
        get_email_sender()

    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_live")
    assert isinstance(get_email_sender(), ResendEmailSender)


def test_templates_escape_values(monkeypatch):
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://magicpaws.test/")
    rendered = templates.booking_confirmation("<Bobby>", "Puppy & Me", "Monday, January 5, 2026", "9:00 AM")

    assert rendered.subject == "Booking Confirmed: Puppy & Me"
    assert "&lt;Bobby&gt;" in rendered.html
    assert "<Bobby>" not in rendered.html
    assert "Puppy &amp; Me" in rendered.html
    assert "https://magicpaws.test/dashboard/settings" in rendered.html


def test_new_content_template():
    rendered = templates.new_training_content("Alice", "Puppy Basics", "Loose Leash Walking")
    assert rendered.subject == "New Training Content: Loose Leash Walking"
    assert "Puppy Basics" in rendered.html
