"""
models/submission.py — Submission table definition.

A submission records that a respondent has submitted for a group. The
UNIQUE(group_id, respondent_user_id) constraint is the at-most-once rule:
two concurrent submits race on it and exactly one insert survives.
Rows are never updated.

FK policy: group_id ON DELETE CASCADE, respondent_user_id ON DELETE CASCADE.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from offrecord.app.extensions import db


class Submission(db.Model):
    __tablename__ = "submissions"

    __table_args__ = (
        UniqueConstraint(
            "group_id",
            "respondent_user_id",
            name="uq_submissions_group_respondent",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    respondent_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Roster email the respondent was bound to at submit time. Completion
    # intersects these with the current roster.
    respondent_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Submission id={self.id} group_id={self.group_id}>"
