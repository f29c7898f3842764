"""
models/membership.py — Roster entry table definition.

A membership is a (group, email) slot on the roster, created with the group
by the host. Identity binding happens on the matching Invitation when it is
redeemed; the roster itself only knows emails and display names.

FK policy: group_id ON DELETE CASCADE.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from offrecord.app.extensions import db


class Membership(db.Model):
    __tablename__ = "memberships"

    __table_args__ = (
        # An email appears on a roster at most once.
        UniqueConstraint("group_id", "email", name="uq_memberships_group_email"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Lowercased and trimmed.
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    group: Mapped["Group"] = relationship("Group")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Membership id={self.id} "
            f"group_id={self.group_id} "
            f"email={self.email!r}>"
        )
