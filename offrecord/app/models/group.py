"""
models/group.py — Group table definition.

The group is the ownership root: memberships, invitations, submissions and
feedback items all carry group_id and are removed with it
(group_service.delete_group_cascade). No collection relationships are
declared here so the cascade stays an explicit, ordered set of deletes.

FK policy: host_user_id ON DELETE CASCADE — a deleted host account takes
its groups with it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from offrecord.app.extensions import db


class Group(db.Model):
    __tablename__ = "groups"

    __table_args__ = (
        # Also enforced by the marshmallow schema; the schema is the primary gate.
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    host_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Denormalised, lowercased. Used to keep the host off the roster.
    host_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    host: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[host_user_id],
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r}>"
