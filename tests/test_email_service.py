import smtplib
from unittest.mock import MagicMock

import pytest
import requests

from rentflow.core.config import settings
from rentflow.core.exceptions import EmailDeliveryError
from rentflow.services import email_service
from rentflow.services.email_service import send_email


@pytest.fixture()
def sendgrid(monkeypatch):
    monkeypatch.setattr(settings, "SEND_EMAILS", True)
    monkeypatch.setattr(settings, "SENDGRID_API_KEY", "SG.test")
    monkeypatch.setattr(settings, "SENDGRID_FROM_EMAIL", "reservas@rentflow.local")
    post = MagicMock(return_value=MagicMock(status_code=202, text=""))
    monkeypatch.setattr(email_service.requests, "post", post)
    return post


def test_disabled_sends_nothing(monkeypatch):
    monkeypatch.setattr(settings, "SEND_EMAILS", False)
    post = MagicMock()
    monkeypatch.setattr(email_service.requests, "post", post)
    send_email("ana@example.com", "Hi", "body")
    post.assert_not_called()


def test_sendgrid_payload(sendgrid):
    send_email("ops@rentflow.local", "New confirmed booking RF-1", "body", reply_to="ana@example.com")

    (url,), kwargs = sendgrid.call_args
    assert url == email_service.SENDGRID_SEND_URL
    assert kwargs["headers"]["Authorization"] == "Bearer SG.test"
    payload = kwargs["json"]
    assert payload["personalizations"] == [{"to": [{"email": "ops@rentflow.local"}]}]
    assert payload["from"] == {"email": "reservas@rentflow.local"}
    assert payload["reply_to"] == {"email": "ana@example.com"}
    assert payload["content"][0]["value"] == "body"


def test_sendgrid_rejection_raises(sendgrid):
    sendgrid.return_value = MagicMock(status_code=401, text="unauthorized")
    with pytest.raises(EmailDeliveryError, match="401"):
        send_email("ana@example.com", "Hi", "body")


def test_sendgrid_unreachable_raises(sendgrid):
    sendgrid.side_effect = requests.ConnectionError("dns")
    with pytest.raises(EmailDeliveryError):
        send_email("ana@example.com", "Hi", "body")


def test_smtp_used_without_sendgrid_key(monkeypatch):
    monkeypatch.setattr(settings, "SEND_EMAILS", True)
    monkeypatch.setattr(settings, "SENDGRID_API_KEY", "")
    monkeypatch.setattr(settings, "SMTP_USERNAME", "")
    smtp = MagicMock()
    smtp_cls = MagicMock(return_value=smtp)
    smtp.__enter__.return_value = smtp
    monkeypatch.setattr(email_service.smtplib, "SMTP", smtp_cls)

    send_email("ana@example.com", "Your booking RF-1 is confirmed", "body", reply_to="ops@rentflow.local")

    smtp.login.assert_not_called()
    msg = smtp.send_message.call_args.args[0]
    assert msg["To"] == "ana@example.com"
    assert msg["Reply-To"] == "ops@rentflow.local"


def test_smtp_failure_raises(monkeypatch):
    monkeypatch.setattr(settings, "SEND_EMAILS", True)
    monkeypatch.setattr(settings, "SENDGRID_API_KEY", "")
    monkeypatch.setattr(email_service.smtplib, "SMTP", MagicMock(side_effect=smtplib.SMTPConnectError(421, "busy")))
    with pytest.raises(EmailDeliveryError):
        send_email("ana@example.com", "Hi", "body")
