"""
tests/unit/test_invite_mail_units.py — Unit tests for invite_mail_service.

What this file proves:
  - Provider selection from config, including EMAIL_NOT_CONFIGURED
  - Message subject and bodies carry the site, email and credential
  - The Resend sender posts the right request and maps failures
  - A failing message never aborts the batch; it becomes a warning
  - Host-only access to sending

Fake senders and a fake requests session; no network, no database.
"""

from __future__ import annotations

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from offrecord.app.caller import CallerContext
from offrecord.app.errors import AppError, ErrorCode, WarningCode
from offrecord.app.services import invite_mail_service
from offrecord.app.services.invite_mail_service import (
    InviteDeliveryError,
    InviteMessage,
    LogInviteSender,
    ResendInviteSender,
    SmtpInviteSender,
    build_invite_message,
    build_sender_from_config,
    send_group_invitations,
)


# ═══════════════════════════════════════════════════════════════════════════
# build_sender_from_config
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildSender:

    def test_log_backend(self):
        sender = build_sender_from_config({"MAIL_BACKEND": "log", "MAIL_DEFAULT_SENDER": "x@test.com"})
        assert isinstance(sender, LogInviteSender)
        assert sender.from_address == "x@test.com"

    def test_smtp_backend(self):
        sender = build_sender_from_config({
            "MAIL_BACKEND": "smtp",
            "MAIL_SERVER": "smtp.test.com",
            "MAIL_PORT": "465",
            "MAIL_USE_SSL": True,
        })
        assert isinstance(sender, SmtpInviteSender)
        assert sender.port == 465
        assert sender.use_ssl is True
        assert sender.concurrency == 1

    def test_resend_backend(self):
        sender = build_sender_from_config({"MAIL_BACKEND": "resend", "RESEND_API_KEY": "re_123"})
        assert isinstance(sender, ResendInviteSender)
        assert sender.from_address == "onboarding@resend.dev"

    @pytest.mark.parametrize("config", [
        {},
        {"MAIL_BACKEND": ""},
        {"MAIL_BACKEND": "smtp"},
        {"MAIL_BACKEND": "resend"},
        {"MAIL_BACKEND": "carrier-pigeon"},
    ])
    def test_not_configured(self, config):
        with pytest.raises(AppError) as exc_info:
            build_sender_from_config(config)
        assert exc_info.value.code == ErrorCode.EMAIL_NOT_CONFIGURED
        assert exc_info.value.http_status == 400


# ═══════════════════════════════════════════════════════════════════════════
# build_invite_message
# ═══════════════════════════════════════════════════════════════════════════

def test_message_contents():
    message = build_invite_message(
        host_name="Hana",
        group_name="Retro",
        invitee_name="Ana",
        email="ana@test.com",
        credential="ABC234",
        app_url="https://offrecord.example",
    )
    assert message.to == "ana@test.com"
    assert message.subject == "Hana invited you to OffRecord: Retro"
    for body in (message.text, message.html):
        assert "ABC234" in body
        assert "ana@test.com" in body
        assert "https://offrecord.example" in body
    assert 'href="https://offrecord.example"' in message.html


def test_message_without_site_url():
    message = build_invite_message("Hana", "Retro", "", "ana@test.com", "ABC234", None)
    assert "Hi there," in message.text
    assert "your OffRecord site" in message.text
    assert "href=" not in message.html


def test_html_body_is_escaped_but_text_body_is_not():
    message = build_invite_message("Hana", "R&D <team>", "Ana", "ana@test.com", "ABC234", None)
    assert "R&amp;D &lt;team&gt;" in message.html
    assert "R&D <team>" in message.text


# ═══════════════════════════════════════════════════════════════════════════
# ResendInviteSender
# ═══════════════════════════════════════════════════════════════════════════

MESSAGE = InviteMessage(to="ana@test.com", subject="Hi", text="text", html="<p>html</p>")


def test_resend_posts_message():
    session = MagicMock()
    session.post.return_value = SimpleNamespace(ok=True, status_code=200, json=lambda: {"id": "em_1"})
    sender = ResendInviteSender("re_123", "from@test.com", session=session)

    result = sender.send(MESSAGE)

    assert result == {"to": "ana@test.com", "ok": True, "id": "em_1"}
    _, kwargs = session.post.call_args
    assert kwargs["headers"]["Authorization"] == "Bearer re_123"
    assert kwargs["json"]["from"] == "from@test.com"
    assert kwargs["json"]["to"] == "ana@test.com"
    assert kwargs["timeout"] == 15


def test_resend_error_status_raises_delivery_error():
    session = MagicMock()
    session.post.return_value = SimpleNamespace(ok=False, status_code=422, text="invalid from", reason="Unprocessable")
    sender = ResendInviteSender("re_123", "from@test.com", session=session)

    with pytest.raises(InviteDeliveryError, match="422"):
        sender.send(MESSAGE)


def test_resend_network_error_raises_delivery_error():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("refused")
    sender = ResendInviteSender("re_123", "from@test.com", session=session)

    with pytest.raises(InviteDeliveryError):
        sender.send(MESSAGE)


# ═══════════════════════════════════════════════════════════════════════════
# send_group_invitations
# ═══════════════════════════════════════════════════════════════════════════

class _RecordingSender:
    name = "fake"
    from_address = "noreply@test.com"

    def __init__(self, concurrency=4, failing=()):
        self.concurrency = concurrency
        self.failing = set(failing)
        self.sent = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def send(self, message):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if message.to in self.failing:
                raise InviteDeliveryError("bounced")
            with self._lock:
                self.sent.append(message.to)
            return {"to": message.to, "ok": True, "id": None}
        finally:
            with self._lock:
                self.in_flight -= 1


def _session(invitations, host_user_id=1, host_name="Hana"):
    group = SimpleNamespace(id=10, name="Retro", host_user_id=host_user_id)
    host = SimpleNamespace(id=host_user_id, display_name=host_name)
    session = MagicMock()
    session.get.side_effect = lambda model, pk: {"Group": group, "User": host}[model.__name__]
    session.execute.return_value.scalars.return_value.all.return_value = invitations
    return session


def _invitations(*emails):
    return [
        SimpleNamespace(email=e, display_name=e.split("@")[0].title(), credential="ABC234")
        for e in emails
    ]


def test_sends_one_message_per_invitation():
    sender = _RecordingSender()
    session = _session(_invitations("ana@test.com", "ben@test.com", "cleo@test.com"))

    result, warnings = send_group_invitations(10, CallerContext(user_id=1), session, sender, "https://x.test")

    assert sorted(sender.sent) == ["ana@test.com", "ben@test.com", "cleo@test.com"]
    assert result == {
        "provider": "fake",
        "sender": "noreply@test.com",
        "sent": 3,
        "failed": 0,
        "failures": [],
    }
    assert warnings == []


def test_failure_does_not_abort_batch():
    sender = _RecordingSender(failing={"ben@test.com"})
    session = _session(_invitations("ana@test.com", "ben@test.com", "cleo@test.com"))

    result, warnings = send_group_invitations(10, CallerContext(user_id=1), session, sender)

    assert sorted(sender.sent) == ["ana@test.com", "cleo@test.com"]
    assert result["failed"] == 1
    assert result["failures"] == [{"to": "ben@test.com", "error": "bounced"}]
    assert warnings[0]["code"] == WarningCode.INVITE_DELIVERY_FAILED
    assert "1 of 3" in warnings[0]["message"]


def test_serial_sender_never_overlaps():
    sender = _RecordingSender(concurrency=1)
    session = _session(_invitations(*[f"m{i}@test.com" for i in range(6)]))

    send_group_invitations(10, CallerContext(user_id=1), session, sender)

    assert sender.max_in_flight == 1


def test_email_filter_is_normalised():
    sender = _RecordingSender()
    session = _session(_invitations("ana@test.com", "ben@test.com"))

    result, _ = send_group_invitations(
        10, CallerContext(user_id=1), session, sender, emails=[" BEN@test.com "],
    )
    assert sender.sent == ["ben@test.com"]
    assert result["sent"] == 1


def test_host_name_falls_back():
    sender = _RecordingSender()
    captured = []
    sender.send = lambda message: captured.append(message) or {"to": message.to, "ok": True, "id": None}
    session = _session(_invitations("ana@test.com"), host_name="")

    send_group_invitations(10, CallerContext(user_id=1), session, sender)

    assert captured[0].subject == "A host invited you to OffRecord: Retro"


def test_non_host_is_forbidden():
    sender = _RecordingSender()
    session = _session(_invitations("ana@test.com"), host_user_id=1)

    with pytest.raises(AppError) as exc_info:
        send_group_invitations(10, CallerContext(user_id=2), session, sender)
    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert sender.sent == []


def test_missing_group_is_not_found():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        send_group_invitations(10, CallerContext(user_id=1), session, _RecordingSender())
    assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND


def test_log_sender_never_logs_credential(caplog):
    sender = LogInviteSender("noreply@test.com")
    message = build_invite_message("Hana", "Retro", "Ana", "ana@test.com", "SECRET9", None)

    with caplog.at_level("INFO", logger=invite_mail_service.logger.name):
        sender.send(message)

    assert "ana@test.com" in caplog.text
    assert "SECRET9" not in caplog.text
