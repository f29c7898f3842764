"""
services/submission_service.py — Survey, atomic submission and completion.

Invariants enforced here:
  - At most one Submission per (group, respondent). Enforced by the
    UNIQUE(group_id, respondent_user_id) constraint, not by a pre-check:
    a duplicate insert surfaces as IntegrityError and becomes
    ALREADY_SUBMITTED (409). Two concurrent submits race on the constraint
    and exactly one wins.
  - A submission is all-or-nothing: the Submission row and every
    FeedbackItem row are flushed together and committed by the route.
  - The score budget (score_ledger) is validated before anything is added.

Group state:
  OPEN     completed < total
  COMPLETE completed == total > 0, where completed counts submitters whose
           email is still on the roster.

Layer rules:
  - No Flask imports. Receives a SQLAlchemy session and a CallerContext.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from offrecord.app.caller import CallerContext
from offrecord.app.errors import AppError, ErrorCode
from offrecord.app.models.feedback_item import FeedbackItem
from offrecord.app.models.group import Group
from offrecord.app.models.invitation import Invitation
from offrecord.app.models.membership import Membership
from offrecord.app.models.submission import Submission
from offrecord.app.services.score_ledger import (
    POINTS_PER_RECIPIENT,
    ScoreLedger,
    validate_ledger,
)

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise AppError(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
            404,
        )
    return group


def _roster_emails(group_id: int, session: Session) -> list[str]:
    stmt = (
        select(Membership.email)
        .where(Membership.group_id == group_id)
        .order_by(Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def _require_bound_member(group_id: int, caller: CallerContext, session: Session) -> Invitation:
    """
    Returns the caller's redeemed invitation, or raises FORBIDDEN (403).
    Only bound roster members may take the survey.
    """
    invitation = session.execute(
        select(Invitation).where(
            Invitation.group_id == group_id,
            Invitation.redeemed_by_user_id == caller.user_id,
        )
    ).scalar_one_or_none()
    if invitation is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group_id}.",
            403,
        )
    return invitation


def _has_submitted(group_id: int, user_id: int, session: Session) -> bool:
    row = session.execute(
        select(Submission.id).where(
            Submission.group_id == group_id,
            Submission.respondent_user_id == user_id,
        )
    ).first()
    return row is not None


# ── Public service functions ───────────────────────────────────────────────

def get_completion(group_id: int, session: Session) -> dict:
    """
    Returns {"completed", "total", "is_complete"} for a group.

    total     = current roster size
    completed = distinct submitting emails that are still on the roster,
                so removed submitters never push completed past total.
    """
    roster = set(_roster_emails(group_id, session))
    respondents = set(
        session.execute(
            select(Submission.respondent_email).where(Submission.group_id == group_id)
        ).scalars().all()
    )
    completed = len(respondents & roster)
    total = len(roster)
    return {
        "completed": completed,
        "total": total,
        "is_complete": total > 0 and completed == total,
    }


def is_complete(group_id: int, session: Session) -> bool:
    return get_completion(group_id, session)["is_complete"]


def get_survey(
        group_id: int,
        caller: CallerContext,
        session: Session,
        points_per_recipient: int = POINTS_PER_RECIPIENT,
) -> dict:
    """
    Returns what the caller needs to fill in the survey: every other roster
    member, the exact point budget, and whether they have already submitted.
    """
    group = _get_group_or_404(group_id, session)
    invitation = _require_bound_member(group_id, caller, session)

    roster = session.execute(
        select(Membership)
        .where(Membership.group_id == group_id)
        .order_by(Membership.id.asc())
    ).scalars().all()
    recipients = [m for m in roster if m.email != invitation.email]

    return {
        "group_id": group.id,
        "group_name": group.name,
        "respondent_email": invitation.email,
        "recipients": [
            {"email": m.email, "display_name": m.display_name}
            for m in recipients
        ],
        "budget": points_per_recipient * len(recipients),
        "points_per_recipient": points_per_recipient,
        "submitted": _has_submitted(group_id, caller.user_id, session),
    }


def submit(
        group_id: int,
        caller: CallerContext,
        items: list[dict],
        session: Session,
        points_per_recipient: int = POINTS_PER_RECIPIENT,
) -> dict:
    """
    Records the caller's feedback for every other roster member at once.

    Args:
        items: [{"recipient_email", "strengths", "improvements", "score"}]
               as loaded by SubmitFeedbackSchema. A solo roster submits [].

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)                 — caller is not a bound member
      AppError(SELF_FEEDBACK, 422)
      AppError(RECIPIENT_MISMATCH, 422)
      AppError(EMPTY_FEEDBACK_TEXT, 422)
      AppError(INVALID_SCORE, 422)
      AppError(SCORE_BUDGET_MISMATCH, 422)
      AppError(ALREADY_SUBMITTED, 409)         — uniqueness constraint tripped

    Returns: {"submission_id", "group_id", "completion"}
    """
    _get_group_or_404(group_id, session)
    invitation = _require_bound_member(group_id, caller, session)

    recipients = [e for e in _roster_emails(group_id, session) if e != invitation.email]
    ledger = ScoreLedger.from_items(
        respondent=invitation.email,
        recipients=recipients,
        items=items,
        points_per_recipient=points_per_recipient,
    )
    validate_ledger(ledger)

    submission = Submission(
        group_id=group_id,
        respondent_user_id=caller.user_id,
        respondent_email=invitation.email,
    )
    session.add(submission)

    try:
        session.flush()  # trips uq_submissions_group_respondent on a duplicate
        for item in ledger.to_items():
            session.add(FeedbackItem(
                group_id=group_id,
                submission_id=submission.id,
                respondent_user_id=caller.user_id,
                recipient_email=item["recipient_email"],
                strengths=item["strengths"],
                improvements=item["improvements"],
                score=item["score"],
            ))
        session.flush()
    except IntegrityError:
        session.rollback()
        raise AppError(
            ErrorCode.ALREADY_SUBMITTED,
            "You have already submitted feedback for this group.",
            409,
        )

    logger.info("Submission %s recorded for group %s", submission.id, group_id)
    return {
        "submission_id": submission.id,
        "group_id": group_id,
        "completion": get_completion(group_id, session),
    }
