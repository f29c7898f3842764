"""
services/disclosure_service.py — Who may read which feedback rows.

Rules:
  - Only a member holding a redeemed invitation in the group may read, and
    only the rows addressed to that invitation's roster email.
  - Nothing is released until the group is COMPLETE.
  - The host has no read access to feedback content; hosts see completion
    counts only (group_service / submission_service).
  - Rows are returned in a fresh random order on every call and without
    any respondent column, so neither order nor payload can be tied back
    to who wrote them.

This filter runs on the server against the database; it is the
authorization rule, not a presentation filter.
"""

from __future__ import annotations

import random
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select
from sqlalchemy.orm import Session

from offrecord.app.caller import CallerContext
from offrecord.app.errors import AppError, ErrorCode
from offrecord.app.models.feedback_item import FeedbackItem
from offrecord.app.models.group import Group
from offrecord.app.services import invitation_service, submission_service

_shuffler = random.SystemRandom()

# (minimum average, label, text colour, background colour), highest first.
PARTICIPATION_LEVELS = (
    (90, "Great Participation", "#059669", "#d1fae5"),
    (80, "Strong Participation", "#2563eb", "#dbeafe"),
    (70, "Good Participation", "#9333ea", "#f3e8ff"),
    (60, "Moderate Participation", "#d97706", "#fef3c7"),
    (0, "Developing Participation", "#ea580c", "#ffedd5"),
)


def average_score(scores: list[int]) -> int:
    """Arithmetic mean rounded half-up to an int; 0 for no scores."""
    if not scores:
        return 0
    mean = Decimal(sum(scores)) / Decimal(len(scores))
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def participation_level(average: int) -> dict:
    """Maps an average score to its participation label and colours."""
    for threshold, label, color, background in PARTICIPATION_LEVELS:
        if average >= threshold:
            return {"label": label, "color": color, "background": background}
    threshold, label, color, background = PARTICIPATION_LEVELS[-1]
    return {"label": label, "color": color, "background": background}


def _build_feedback_dict(item: FeedbackItem) -> dict:
    """Recipient-facing shape. Respondent columns are deliberately absent."""
    return {
        "strengths": item.strengths,
        "improvements": item.improvements,
        "score": item.score,
    }


def get_feedback_for(
        group_id: int,
        caller: CallerContext,
        session: Session,
        rng: random.Random | None = None,
) -> dict:
    """
    Returns the caller's own feedback for a completed group.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)          — caller holds no redeemed invitation here
      AppError(REPORT_NOT_READY, 409)   — not every member has submitted yet

    Returns: {"group_id", "group_name", "recipient_name", "items",
              "average_score", "participation"}
    """
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )

    invitation = invitation_service.get_bound_invitation(group_id, caller.user_id, session)
    if invitation is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You can only read feedback addressed to you.",
            403,
        )

    completion = submission_service.get_completion(group_id, session)
    if not completion["is_complete"]:
        raise AppError(
            ErrorCode.REPORT_NOT_READY,
            f"Feedback is released once everyone has submitted "
            f"({completion['completed']} of {completion['total']} so far).",
            409,
        )

    rows = list(session.execute(
        select(FeedbackItem).where(
            FeedbackItem.group_id == group_id,
            FeedbackItem.recipient_email == invitation.email,
            FeedbackItem.respondent_user_id != caller.user_id,
        )
    ).scalars().all())

    (rng or _shuffler).shuffle(rows)

    average = average_score([r.score for r in rows])
    return {
        "group_id": group.id,
        "group_name": group.name,
        "recipient_name": invitation.display_name,
        "items": [_build_feedback_dict(r) for r in rows],
        "average_score": average,
        "participation": participation_level(average),
    }
