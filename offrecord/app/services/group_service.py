"""
services/group_service.py — Group and roster business logic.

Authorization rules:
  - Create a group:     any password account (anonymous sessions cannot host)
  - Read a group:       the host, or a member holding a redeemed invitation
  - Remove a member:    host only, and only while the group is OPEN
  - Delete a group:     host only; cascades to every owned row

Host-as-participant: the host is purely an organiser. The host's email may
not appear on the roster, so the host never gives or receives feedback and
is never counted towards completion.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from offrecord.app.caller import CallerContext
from offrecord.app.errors import AppError, ErrorCode
from offrecord.app.models.feedback_item import FeedbackItem
from offrecord.app.models.group import Group
from offrecord.app.models.invitation import Invitation
from offrecord.app.models.membership import Membership
from offrecord.app.models.submission import Submission
from offrecord.app.models.user import User
from offrecord.app.services import invitation_service, submission_service

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


def _require_host(group: Group, caller: CallerContext, action: str) -> None:
    """Raises FORBIDDEN (403) unless the caller hosts the group."""
    if caller.user_id != group.host_user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the group host may {action}.",
            403,
        )


def _require_participant(group: Group, caller: CallerContext, session: Session) -> None:
    """Raises FORBIDDEN (403) unless the caller is the host or a bound member."""
    if caller.user_id == group.host_user_id:
        return
    if invitation_service.get_bound_invitation(group.id, caller.user_id, session) is None:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"You are not a member of group {group.id}.",
            403,
        )


def _get_roster(group_id: int, session: Session) -> list[Membership]:
    stmt = (
        select(Membership)
        .where(Membership.group_id == group_id)
        .order_by(Membership.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def _build_group_dict(
        group: Group,
        roster: list[Membership],
        completion: dict,
        caller: CallerContext,
) -> dict:
    """Serialises a Group with its roster and completion state."""
    return {
        "id": group.id,
        "name": group.name,
        "host_user_id": group.host_user_id,
        "is_host": caller.user_id == group.host_user_id,
        "created_at": group.created_at.isoformat(),
        "members": [
            {"email": m.email, "display_name": m.display_name}
            for m in roster
        ],
        "completion": completion,
    }


def _build_group_summary(group: Group, caller: CallerContext, session: Session) -> dict:
    """Lightweight list entry: no roster, but completion for status badges."""
    return {
        "id": group.id,
        "name": group.name,
        "host_user_id": group.host_user_id,
        "is_host": caller.user_id == group.host_user_id,
        "created_at": group.created_at.isoformat(),
        "completion": submission_service.get_completion(group.id, session),
    }


# ── Public service functions ───────────────────────────────────────────────

def create_group(
        name: str,
        caller: CallerContext,
        members: list[dict],
        session: Session,
        min_members: int = 3,
        max_members: int = 6,
) -> dict:
    """
    Creates a group with its roster and mints one invitation per member.

    Args:
        name:    Group name (validated by schema — non-empty, max 100 chars).
        members: [{"email": ..., "name": ...}] as loaded by CreateGroupSchema.

    Raises:
      AppError(FORBIDDEN, 403)               — anonymous caller
      AppError(INVALID_ROSTER_SIZE, 422)     — outside [min_members, max_members]
      AppError(DUPLICATE_MEMBER_EMAIL, 422)  — two members share an email
      AppError(HOST_IN_ROSTER, 422)          — a member email equals the host's

    Returns: group dict plus the host's view of the invitations.
    """
    host = session.get(User, caller.user_id)
    if host is None or host.is_anonymous or not host.email:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Sign in with an account to host a group.",
            403,
        )

    if not (min_members <= len(members) <= max_members):
        raise AppError(
            ErrorCode.INVALID_ROSTER_SIZE,
            f"A group needs between {min_members} and {max_members} members.",
            422,
            field="members",
        )

    # Validates before anything is written.
    normalized = invitation_service.validate_member_emails(members, host.email)

    group = Group(
        name=name.strip(),
        host_user_id=host.id,
        host_email=host.email,
    )
    session.add(group)
    session.flush()  # populate group.id before creating the roster

    for member in normalized:
        session.add(Membership(
            group_id=group.id,
            email=member["email"],
            display_name=member["name"],
        ))
    session.flush()

    invitation_service.issue_invitations(group, host.email, normalized, session)
    logger.info("Group %s created with %d members", group.id, len(normalized))

    result = _build_group_dict(
        group,
        _get_roster(group.id, session),
        submission_service.get_completion(group.id, session),
        caller,
    )
    result["invitations"] = invitation_service.list_invitations(group, caller, session)
    return result


def list_groups_for_host(caller: CallerContext, session: Session) -> list[dict]:
    """Groups the caller hosts, oldest first."""
    stmt = (
        select(Group)
        .where(Group.host_user_id == caller.user_id)
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    groups = session.execute(stmt).scalars().all()
    return [_build_group_summary(g, caller, session) for g in groups]


def list_groups_for_member(caller: CallerContext, session: Session) -> list[dict]:
    """Groups in which the caller holds a redeemed invitation, oldest first."""
    stmt = (
        select(Group)
        .join(Invitation, Invitation.group_id == Group.id)
        .where(Invitation.redeemed_by_user_id == caller.user_id)
        .order_by(Group.created_at.asc(), Group.id.asc())
    )
    groups = session.execute(stmt).scalars().unique().all()
    return [_build_group_summary(g, caller, session) for g in groups]


def merge_group_lists(*lists: list[dict]) -> list[dict]:
    """Concatenates group lists, keeping the first entry seen per group id."""
    merged: dict[int, dict] = {}
    for groups in lists:
        for group in groups:
            merged.setdefault(group["id"], group)
    return list(merged.values())


def get_group(group_id: int, caller: CallerContext, session: Session) -> dict:
    """
    Returns group details with roster and completion.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403) — caller is neither host nor bound member
    """
    group = _get_group_or_404(group_id, session)
    _require_participant(group, caller, session)

    return _build_group_dict(
        group,
        _get_roster(group_id, session),
        submission_service.get_completion(group_id, session),
        caller,
    )


def get_group_for_host(group_id: int, caller: CallerContext, session: Session) -> Group:
    """Loads a group and checks the caller hosts it. Used by host-only flows."""
    group = _get_group_or_404(group_id, session)
    _require_host(group, caller, "manage this group")
    return group


def remove_member(
        group_id: int,
        caller: CallerContext,
        email: str,
        session: Session,
) -> dict:
    """
    Removes a roster entry and its invitation. Host only.

    Feedback already written by or about the removed member stays in place;
    completion counts only submitters still on the roster.

    Idempotent: removing an email that is no longer on the roster succeeds
    with removed=False.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403)       — caller is not the host
      AppError(GROUP_COMPLETE, 409)  — every member has already submitted
    """
    group = _get_group_or_404(group_id, session)
    _require_host(group, caller, "remove members")

    email = str(email or "").strip().lower()
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.email == email,
        )
    ).scalar_one_or_none()

    if membership is None:
        return {"group_id": group_id, "email": email, "removed": False}

    if submission_service.is_complete(group_id, session):
        raise AppError(
            ErrorCode.GROUP_COMPLETE,
            "Everyone has already submitted; the roster can no longer change.",
            409,
        )

    session.execute(
        delete(Invitation).where(
            Invitation.group_id == group_id,
            Invitation.email == email,
        )
    )
    session.delete(membership)
    session.flush()
    logger.info("Removed a member from group %s", group_id)

    return {"group_id": group_id, "email": email, "removed": True}


def delete_group_cascade(group_id: int, caller: CallerContext, session: Session) -> None:
    """
    Deletes a group and every row it owns. Host only.

    All deletes run in the caller's transaction; the route commits once, so
    a failure part-way leaves nothing orphaned. Children go first so the
    cascade does not depend on database-level ON DELETE support.

    Raises:
      AppError(GROUP_NOT_FOUND, 404)
      AppError(FORBIDDEN, 403) — caller is not the host
    """
    group = _get_group_or_404(group_id, session)
    _require_host(group, caller, "delete this group")

    for model in (FeedbackItem, Submission, Invitation, Membership):
        session.execute(delete(model).where(model.group_id == group_id))
    session.delete(group)
    session.flush()
    logger.info("Group %s deleted with all owned rows", group_id)


def list_groups(caller: CallerContext, role: str, session: Session) -> list[dict]:
    """
    Groups visible to the caller under a role filter.

    role: "host" (groups the caller hosts), "member" (groups joined through a
    redeemed invitation) or "all" (both, each group once).
    """
    if role == "host":
        return list_groups_for_host(caller, session)
    if role == "member":
        return list_groups_for_member(caller, session)
    return merge_group_lists(
        list_groups_for_host(caller, session),
        list_groups_for_member(caller, session),
    )
