"""
services/report_service.py — Printable HTML feedback report.

Rendering over disclosure_service output: the row order it receives is
already shuffled, and the only other non-deterministic input is the
generation timestamp in the header. Access rules live in disclosure_service;
build_report_for() goes through them.

The Jinja2 environment is shared with invite_mail_service for the email
bodies. HTML templates are autoescaped, plain-text ones are not.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy.orm import Session

from offrecord.app.caller import CallerContext
from offrecord.app.services import disclosure_service
from offrecord.app.services.disclosure_service import participation_level

_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

templates = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_report(
        recipient_name: str,
        group_name: str,
        rows: list[dict],
        average_score: int,
        generated_at: datetime | None = None,
) -> str:
    """
    Renders the feedback report for one recipient.

    Args:
        rows: [{"strengths", "improvements", "score"}] in display order.
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    template = templates.get_template("report.html")
    return template.render(
        recipient_name=recipient_name,
        group_name=group_name,
        rows=rows,
        average_score=average_score,
        participation=participation_level(average_score),
        generated_on=generated_at.strftime("%B %d, %Y"),
    )


def report_filename(recipient_name: str, group_name: str) -> str:
    """Download name, e.g. 'OffRecord-Retro-Alice.html'."""
    def _slug(value: str) -> str:
        cleaned = "".join(c if c.isalnum() else "-" for c in value.strip())
        return "-".join(part for part in cleaned.split("-") if part) or "report"

    return f"OffRecord-{_slug(group_name)}-{_slug(recipient_name)}.html"


def build_report_for(group_id: int, caller: CallerContext, session: Session) -> tuple[str, str]:
    """
    Renders the caller's report for a completed group.

    Raises the same errors as disclosure_service.get_feedback_for().
    Returns: (html, download filename)
    """
    feedback = disclosure_service.get_feedback_for(group_id, caller, session)
    html = render_report(
        recipient_name=feedback["recipient_name"],
        group_name=feedback["group_name"],
        rows=feedback["items"],
        average_score=feedback["average_score"],
    )
    return html, report_filename(feedback["recipient_name"], feedback["group_name"])
