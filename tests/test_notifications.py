from datetime import datetime
from types import SimpleNamespace

import requests

from chitfund import config
from chitfund.services import notifications_service as notify


def test_templates_render_amount_and_plan():
    subject, body = notify.payment_request_template("Asha", 500, "Gold Savings", datetime(2026, 3, 5))
    assert subject == "Payment Request Received"
    assert "Rs.500" in body
    assert "05 Mar 2026" in body


def test_email_simulated_without_smtp_host(caplog):
    caplog.set_level("INFO")
    assert notify.send_email("a@example.com", "Hello", "Body") is True
    assert "[Simulation] Email to a@example.com" in caplog.text


def test_email_failure_returns_false(monkeypatch, mocker):
    monkeypatch.setattr(config, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(config, "SMTP_PORT", 587)
    mocker.patch("chitfund.services.notifications_service.smtplib.SMTP", side_effect=OSError("connection refused"))

    assert notify.send_email("a@example.com", "Hello", "Body") is False


def test_sms_posts_to_gateway_with_country_code(monkeypatch, mocker):
    monkeypatch.setattr(config, "SMS_GATEWAY_URL", "https://sms.example.com/send")
    post = mocker.patch("chitfund.services.notifications_service.requests.post")

    assert notify.send_sms("9876500001", "Payment Successful") is True
    assert post.call_args.kwargs["json"] == {"to": "+919876500001", "message": "Payment Successful"}
    assert post.call_args.kwargs["timeout"] == config.NOTIFY_TIMEOUT_SECONDS


def test_sms_failure_returns_false(monkeypatch, mocker):
    monkeypatch.setattr(config, "SMS_GATEWAY_URL", "https://sms.example.com/send")
    mocker.patch(
        "chitfund.services.notifications_service.requests.post",
        side_effect=requests.ConnectionError("unreachable"),
    )
    assert notify.send_sms("+919876500001", "hi") is False


def test_notify_never_raises(mocker):
    mocker.patch("chitfund.services.notifications_service.send_email", side_effect=RuntimeError("boom"))
    account = SimpleNamespace(email="a@example.com", phone="9876500001")
    notify.notify(account, notify.payment_approved_template("Asha", 500, "Gold"))
    notify.notify(None, notify.payment_approved_template("Asha", 500, "Gold"))
