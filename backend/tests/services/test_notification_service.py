from __future__ import annotations

import json
from datetime import datetime, timezone

from conftest import FakeHttp, FakeResponse

from synchub.services import notification_service
from synchub.services.notification_service import NotificationService


SLACK = "https://hooks.slack.test/T000/B000"
HOOK = "https://hooks.example.test/sync"
DATA = {"status": "failed", "scheduleName": "hourly shipbob", "at": datetime(2026, 10, 19, 9, tzinfo=timezone.utc)}


def test_slack_message_posts_json(fake_http: FakeHttp) -> None:
    fake_http.on("POST", SLACK, FakeResponse(200))
    svc = NotificationService(session=fake_http)

    assert svc.send_slack_message({"webhook": SLACK, "channel": "#ops"}, DATA) is True

    [call] = fake_http.calls
    assert call["json"]["text"] == "[sync-hub] hourly shipbob failed"
    assert call["json"]["channel"] == "#ops"
    assert "2026-10-19T09:00:00Z" in call["json"]["attachments"][0]["text"]


def test_slack_and_webhook_failures_return_false(fake_http: FakeHttp) -> None:
    fake_http.on("POST", SLACK, FakeResponse(500))
    svc = NotificationService(session=fake_http)

    assert svc.send_slack_message({"webhook": SLACK}, DATA) is False
    assert svc.send_webhook({"url": HOOK}, DATA) is False          # 没注册路由 → ConnectionError
    assert svc.send_slack_message({}, DATA) is False


def test_webhook_sends_serialized_body_with_custom_headers(fake_http: FakeHttp) -> None:
    fake_http.on("POST", HOOK, FakeResponse(204))
    svc = NotificationService(session=fake_http, http_timeout=3)

    assert svc.send_webhook({"url": HOOK, "headers": {"X-Token": "t"}}, DATA) is True

    [call] = fake_http.calls
    assert json.loads(call["data"])["at"] == "2026-10-19T09:00:00Z"
    assert call["headers"] == {"Content-Type": "application/json", "X-Token": "t"}
    assert call["timeout"] == 3


def test_email_without_smtp_only_logs(monkeypatch) -> None:
    def _no_smtp(*args, **kwargs):
        raise AssertionError("SMTP should not be used")

    monkeypatch.setattr(notification_service.smtplib, "SMTP", _no_smtp)
    svc = NotificationService()

    assert svc.send_email(["ops@example.test"], "Sync Schedule Execution Update", DATA) is False
    assert svc.send_email([], "subject", DATA) is False


def test_email_over_smtp(monkeypatch) -> None:
    sent = []

    class _SMTP:
        def __init__(self, host, port, timeout=None):
            sent.append(("connect", host, port))

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            sent.append(("starttls",))

        def login(self, user, password):
            sent.append(("login", user, password))

        def send_message(self, msg):
            sent.append(("send", msg["To"], msg["Subject"]))

    monkeypatch.setattr(notification_service.smtplib, "SMTP", _SMTP)
    svc = NotificationService(smtp_host="smtp.example.test", smtp_user="bot", smtp_password="pw")

    assert svc.send_email(["a@example.test", "b@example.test"], "Sync Schedule Execution Update", DATA) is True
    assert sent == [
        ("connect", "smtp.example.test", 587),
        ("starttls",),
        ("login", "bot", "pw"),
        ("send", "a@example.test, b@example.test", "Sync Schedule Execution Update"),
    ]
