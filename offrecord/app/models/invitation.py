"""
models/invitation.py — Invitation table definition.

One invitation per roster entry. The credential is a short one-time code;
redemption binds exactly one identity (redeemed_by_user_id) to the slot.

FK policy:
  group_id            ON DELETE CASCADE
  redeemed_by_user_id ON DELETE SET NULL — a deleted account frees the slot.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from offrecord.app.extensions import db


class Invitation(db.Model):
    __tablename__ = "invitations"

    __table_args__ = (
        UniqueConstraint("group_id", "email", name="uq_invitations_group_email"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    credential: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
    )

    redeemed_by_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    redeemed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    group: Mapped["Group"] = relationship("Group")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Invitation id={self.id} "
            f"group_id={self.group_id} "
            f"redeemed={self.redeemed_by_user_id is not None}>"
        )
