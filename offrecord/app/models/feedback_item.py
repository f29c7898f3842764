"""
models/feedback_item.py — FeedbackItem table definition.

One row per (submission, recipient). Created in the same transaction as its
Submission and never updated. Only the matching recipient may read a row,
and the respondent columns never leave the server.

FK policy: submission_id and group_id ON DELETE CASCADE.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from offrecord.app.extensions import db


class FeedbackItem(db.Model):
    __tablename__ = "feedback_items"

    __table_args__ = (
        UniqueConstraint(
            "submission_id",
            "recipient_email",
            name="uq_feedback_items_submission_recipient",
        ),
        CheckConstraint("score > 0", name="ck_feedback_items_score_positive"),
        CheckConstraint(
            "LENGTH(TRIM(strengths)) > 0 AND LENGTH(TRIM(improvements)) > 0",
            name="ck_feedback_items_text_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    respondent_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    recipient_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    strengths: Mapped[str] = mapped_column(Text, nullable=False)

    improvements: Mapped[str] = mapped_column(Text, nullable=False)

    score: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<FeedbackItem id={self.id} group_id={self.group_id}>"
