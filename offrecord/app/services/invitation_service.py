"""
services/invitation_service.py — Invitation issuance and redemption.

Every roster member gets one invitation carrying a short one-time
credential. Redeeming (email + credential) binds the caller's identity to
that roster slot; the binding is what later authorizes survey access,
submission and feedback disclosure.

Redemption policy: STRICT. An invitation bound to one identity cannot be
rebound to another (INVITATION_ALREADY_REDEEMED, 409). Redeeming again
from the same identity is a no-op that returns the same invitation. The
group's host is refused outright, since the host is never on the roster.

Layer rules:
  - No Flask imports. Receives a SQLAlchemy session and a CallerContext.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from offrecord.app.caller import CallerContext
from offrecord.app.errors import AppError, ErrorCode
from offrecord.app.models.group import Group
from offrecord.app.models.invitation import Invitation

logger = logging.getLogger(__name__)

# No 0/O or 1/I: credentials are read off emails and typed by hand.
CREDENTIAL_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CREDENTIAL_LENGTH = 6

_MAX_CREDENTIAL_ATTEMPTS = 20


# ── Private helpers ────────────────────────────────────────────────────────

def _normalize_email(email: str | None) -> str:
    return str(email or "").strip().lower()


def _credential_in_use(email: str, credential: str, session: Session) -> bool:
    """True when (email, credential) already identifies an invitation anywhere."""
    existing = session.execute(
        select(Invitation.id).where(
            Invitation.email == email,
            Invitation.credential == credential,
        )
    ).first()
    return existing is not None


def _unique_credential(email: str, session: Session) -> str:
    """
    Draws credentials until the (email, credential) pair is unused, so a
    redemption lookup matches at most one invitation.
    """
    for _ in range(_MAX_CREDENTIAL_ATTEMPTS):
        credential = generate_credential()
        if not _credential_in_use(email, credential, session):
            return credential
    raise AppError(
        ErrorCode.INTERNAL_ERROR,
        "Could not generate a unique invitation credential.",
        500,
    )


def _already_redeemed() -> AppError:
    return AppError(
        ErrorCode.INVITATION_ALREADY_REDEEMED,
        "This invitation has already been redeemed from another account.",
        409,
    )


def _build_invitation_dict(invitation: Invitation, include_credential: bool = False) -> dict:
    """Serialises an Invitation. Credentials are only shown to the host."""
    payload = {
        "id": invitation.id,
        "group_id": invitation.group_id,
        "email": invitation.email,
        "display_name": invitation.display_name,
        "redeemed": invitation.redeemed_by_user_id is not None,
        "redeemed_at": invitation.redeemed_at.isoformat() if invitation.redeemed_at else None,
    }
    if include_credential:
        payload["credential"] = invitation.credential
    return payload


# ── Public service functions ───────────────────────────────────────────────

def generate_credential(length: int = CREDENTIAL_LENGTH) -> str:
    """A random code drawn from CREDENTIAL_ALPHABET with the secrets CSPRNG."""
    return "".join(secrets.choice(CREDENTIAL_ALPHABET) for _ in range(length))


def validate_member_emails(members: list[dict], host_email: str) -> list[dict]:
    """
    Normalises member entries and rejects duplicates and the host's own email.

    Returns: list of {"email": str, "name": str} with emails lowercased.

    Raises:
      AppError(DUPLICATE_MEMBER_EMAIL, 422)
      AppError(HOST_IN_ROSTER, 422)
    """
    host_email = _normalize_email(host_email)
    normalized = []
    seen: set[str] = set()

    for member in members:
        email = _normalize_email(member["email"])
        if email in seen:
            raise AppError(
                ErrorCode.DUPLICATE_MEMBER_EMAIL,
                f"Each member must have a unique email ({email} appears twice).",
                422,
                field="members",
            )
        if host_email and email == host_email:
            raise AppError(
                ErrorCode.HOST_IN_ROSTER,
                "The host organises the group and cannot also be a member.",
                422,
                field="members",
            )
        seen.add(email)
        normalized.append({"email": email, "name": str(member["name"]).strip()})

    return normalized


def issue_invitations(
        group: Group,
        host_email: str,
        members: list[dict],
        session: Session,
) -> list[Invitation]:
    """
    Mints one invitation per member for a freshly created group.

    Raises the same validation errors as validate_member_emails().
    Returns the flushed Invitation rows.
    """
    normalized = validate_member_emails(members, host_email)

    invitations = []
    for member in normalized:
        invitation = Invitation(
            group_id=group.id,
            email=member["email"],
            display_name=member["name"],
            credential=_unique_credential(member["email"], session),
        )
        session.add(invitation)
        invitations.append(invitation)

    session.flush()
    logger.info("Issued %d invitations for group %s", len(invitations), group.id)
    return invitations


def redeem(
        email: str,
        credential: str,
        caller: CallerContext,
        session: Session,
) -> dict:
    """
    Binds the caller's identity to the invitation matching (email, credential).

    Raises:
      AppError(INVALID_CREDENTIALS, 401)          — no such pair; never says which half
      AppError(FORBIDDEN, 403)                    — caller hosts this group
      AppError(INVITATION_ALREADY_REDEEMED, 409)  — bound to another identity
      AppError(ALREADY_IN_GROUP, 409)             — caller already holds another
                                                    slot in the same group

    Returns: invitation dict (without the credential).
    """
    invitation = session.execute(
        select(Invitation).where(
            Invitation.email == _normalize_email(email),
            Invitation.credential == str(credential or "").strip(),
        )
    ).scalar_one_or_none()

    if invitation is None:
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "Sign-in failed. Check your email and temporary password.",
            401,
        )

    if invitation.redeemed_by_user_id == caller.user_id:
        return _build_invitation_dict(invitation)

    if invitation.redeemed_by_user_id is not None:
        raise _already_redeemed()

    # The host holds every credential but never takes a roster slot.
    group = session.get(Group, invitation.group_id)
    if group is not None and group.host_user_id == caller.user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "The group host cannot redeem a member's invitation.",
            403,
        )

    # One identity answers for one roster slot per group.
    other_slot = session.execute(
        select(Invitation.id).where(
            Invitation.group_id == invitation.group_id,
            Invitation.redeemed_by_user_id == caller.user_id,
        )
    ).first()
    if other_slot is not None:
        raise AppError(
            ErrorCode.ALREADY_IN_GROUP,
            "You have already joined this group with a different invitation.",
            409,
        )

    # Conditional bind: of two concurrent redemptions only one matches the row.
    result = session.execute(
        update(Invitation)
        .where(
            Invitation.id == invitation.id,
            Invitation.redeemed_by_user_id.is_(None),
        )
        .values(
            redeemed_by_user_id=caller.user_id,
            redeemed_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise _already_redeemed()

    session.refresh(invitation)
    logger.info("Invitation %s redeemed", invitation.id)

    return _build_invitation_dict(invitation)


def get_bound_invitation(group_id: int, user_id: int, session: Session) -> Invitation | None:
    """The caller's redeemed invitation in a group, if any."""
    return session.execute(
        select(Invitation).where(
            Invitation.group_id == group_id,
            Invitation.redeemed_by_user_id == user_id,
        )
    ).scalar_one_or_none()


def list_invitations(group: Group, caller: CallerContext, session: Session) -> list[dict]:
    """
    Host view of a group's invitations, credentials included.

    Raises:
      AppError(FORBIDDEN, 403) — caller is not the host
    """
    if caller.user_id != group.host_user_id:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the group host can view invitations.",
            403,
        )

    rows = session.execute(
        select(Invitation)
        .where(Invitation.group_id == group.id)
        .order_by(Invitation.id.asc())
    ).scalars().all()
    return [_build_invitation_dict(inv, include_credential=True) for inv in rows]
