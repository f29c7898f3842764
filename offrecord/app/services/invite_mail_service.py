"""
services/invite_mail_service.py — Emails invitation credentials to the roster.

One message per invitation: subject "<host> invited you to OffRecord:
<group>", a text and an HTML body with the site URL, the invitee's email
and their temporary password (the invitation credential).

Providers (MAIL_BACKEND, auto-detected by config.py when unset):
    smtp    smtplib with STARTTLS or implicit SSL. Sent one at a time.
    resend  HTTPS POST to the Resend API via requests. Up to 4 in flight.
    log     Records the send in the application log and delivers nothing.

With no provider configured the request fails with EMAIL_NOT_CONFIGURED.

A failed message never aborts the batch: it is counted in `failed` and
listed in `failures`, and the route adds an INVITE_DELIVERY_FAILED warning.
Credentials are never written to the log.

Testability: pass any object with a `name`, `concurrency` and
`send(message)` method as `sender`; pass a mock `session` to
ResendInviteSender instead of letting it create a real requests.Session.
"""

from __future__ import annotations

import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import requests
from sqlalchemy import select
from sqlalchemy.orm import Session

from offrecord.app.caller import CallerContext
from offrecord.app.errors import AppError, ErrorCode, WarningCode
from offrecord.app.models.group import Group
from offrecord.app.models.invitation import Invitation
from offrecord.app.models.user import User
from offrecord.app.services.report_service import templates

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

_SMTP_TIMEOUT = 30
_HTTP_TIMEOUT = 15


class InviteDeliveryError(Exception):
    """A single invitation email could not be handed to the provider."""


@dataclass(frozen=True)
class InviteMessage:
    to: str
    subject: str
    text: str
    html: str


# ── Senders ────────────────────────────────────────────────────────────────

class LogInviteSender:
    """Development/test provider: logs the send and delivers nothing."""

    name = "log"
    concurrency = 4

    def __init__(self, from_address: str) -> None:
        self.from_address = from_address

    def send(self, message: InviteMessage) -> dict:
        logger.info("Invite email (log only): to=%s subject=%r", message.to, message.subject)
        return {"to": message.to, "ok": True, "id": None}


class SmtpInviteSender:
    """SMTP provider. One connection per message, one message at a time."""

    name = "smtp"
    concurrency = 1

    def __init__(
            self,
            host: str,
            port: int,
            from_address: str,
            username: str | None = None,
            password: str | None = None,
            use_tls: bool = True,
            use_ssl: bool = False,
    ) -> None:
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.use_ssl = use_ssl

    def _connect(self) -> smtplib.SMTP:
        if self.use_ssl:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=_SMTP_TIMEOUT)
        return smtplib.SMTP(self.host, self.port, timeout=_SMTP_TIMEOUT)

    def send(self, message: InviteMessage) -> dict:
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = self.from_address
        mime["To"] = message.to
        mime.attach(MIMEText(message.text, "plain"))
        mime.attach(MIMEText(message.html, "html"))

        try:
            with self._connect() as smtp:
                if self.use_tls and not self.use_ssl:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(mime)
        except (smtplib.SMTPException, OSError) as exc:
            raise InviteDeliveryError(str(exc)) from exc

        return {"to": message.to, "ok": True, "id": mime.get("Message-ID")}


class ResendInviteSender:
    """Resend HTTP API provider."""

    name = "resend"
    concurrency = 4

    def __init__(
            self,
            api_key: str,
            from_address: str,
            session: requests.Session | None = None,
            api_url: str = RESEND_API_URL,
    ) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.api_url = api_url
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def send(self, message: InviteMessage) -> dict:
        try:
            resp = self.session.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "from": self.from_address,
                    "to": message.to,
                    "subject": message.subject,
                    "text": message.text,
                    "html": message.html,
                },
                timeout=_HTTP_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise InviteDeliveryError(str(exc)) from exc

        if not resp.ok:
            detail = (resp.text or "").strip() or resp.reason
            raise InviteDeliveryError(f"Resend failed ({resp.status_code}): {detail}")

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        return {"to": message.to, "ok": True, "id": (payload or {}).get("id")}


def build_sender_from_config(config: Any):
    """
    Returns the sender selected by MAIL_BACKEND.

    Raises:
      AppError(EMAIL_NOT_CONFIGURED, 400) — no provider, or the selected
                                           provider is missing its credentials
    """
    backend = str(config.get("MAIL_BACKEND") or "").strip().lower()
    from_address = config.get("MAIL_DEFAULT_SENDER") or "onboarding@resend.dev"

    if backend == "log":
        return LogInviteSender(from_address)

    if backend == "smtp" and config.get("MAIL_SERVER"):
        return SmtpInviteSender(
            host=config.get("MAIL_SERVER"),
            port=int(config.get("MAIL_PORT") or 587),
            from_address=from_address,
            username=config.get("MAIL_USERNAME") or None,
            password=config.get("MAIL_PASSWORD") or None,
            use_tls=bool(config.get("MAIL_USE_TLS", True)),
            use_ssl=bool(config.get("MAIL_USE_SSL", False)),
        )

    if backend == "resend" and config.get("RESEND_API_KEY"):
        return ResendInviteSender(
            api_key=config.get("RESEND_API_KEY"),
            from_address=from_address,
        )

    raise AppError(
        ErrorCode.EMAIL_NOT_CONFIGURED,
        "Email is not configured. Set SMTP credentials (MAIL_SERVER or "
        "GMAIL_USER + GMAIL_APP_PASSWORD) or RESEND_API_KEY.",
        400,
    )


# ── Message building ───────────────────────────────────────────────────────

def build_invite_message(
        host_name: str,
        group_name: str,
        invitee_name: str,
        email: str,
        credential: str,
        app_url: str | None,
) -> InviteMessage:
    site = (app_url or "").strip()
    context = {
        "host_name": host_name,
        "group_name": group_name,
        "invitee_name": invitee_name.strip() or "there",
        "email": email,
        "credential": credential,
        "sign_in_url": site or "your OffRecord site",
        "sign_in_href": site,
    }
    return InviteMessage(
        to=email,
        subject=f"{host_name} invited you to OffRecord: {group_name}",
        text=templates.get_template("invite_email.txt").render(**context),
        html=templates.get_template("invite_email.html").render(**context),
    )


def _deliver(sender, message: InviteMessage) -> dict:
    try:
        return sender.send(message)
    except InviteDeliveryError as exc:
        logger.warning("Invite email failed: to=%s error=%s", message.to, exc)
        return {"to": message.to, "ok": False, "error": str(exc)}


# ── Public service function ────────────────────────────────────────────────

def send_group_invitations(
        group_id: int,
        caller: CallerContext,
        session: Session,
        sender,
        app_url: str | None = None,
        emails: list[str] | None = None,
) -> tuple[dict, list[dict]]:
    """
    Emails each invitation's credential to its invitee. Host only.

    Args:
        emails: optional subset of roster emails to (re)send to.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403) — caller is not the host

    Returns:
        ({"provider", "sender", "sent", "failed", "failures"}, warnings)
    """
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    if caller.user_id != group.host_user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the group host can send invites.",
            403,
        )

    host = session.get(User, group.host_user_id)
    host_name = (host.display_name if host is not None else "") or "A host"

    invitations = session.execute(
        select(Invitation)
        .where(Invitation.group_id == group_id)
        .order_by(Invitation.id.asc())
    ).scalars().all()

    if emails:
        wanted = {str(e or "").strip().lower() for e in emails} - {""}
        invitations = [inv for inv in invitations if inv.email in wanted]

    # Built up front: worker threads never touch the session.
    messages = [
        build_invite_message(
            host_name=host_name,
            group_name=group.name or "OffRecord group",
            invitee_name=inv.display_name or "",
            email=inv.email,
            credential=inv.credential,
            app_url=app_url,
        )
        for inv in invitations
    ]

    workers = max(1, int(getattr(sender, "concurrency", 1)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda m: _deliver(sender, m), messages))

    failures = [{"to": r["to"], "error": r["error"]} for r in results if not r["ok"]]
    sent = len(results) - len(failures)
    logger.info(
        "Invite emails for group %s via %s: %d sent, %d failed",
        group_id, sender.name, sent, len(failures),
    )

    warnings: list[dict] = []
    if failures:
        warnings.append({
            "code": WarningCode.INVITE_DELIVERY_FAILED,
            "message": f"{len(failures)} of {len(results)} invitation emails could not be delivered.",
        })

    return {
        "provider": sender.name,
        "sender": sender.from_address,
        "sent": sent,
        "failed": len(failures),
        "failures": failures,
    }, warnings
