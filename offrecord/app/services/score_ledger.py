"""
services/score_ledger.py — Point allocation for one respondent's submission.

A respondent rates every other roster member (the recipients). The total
budget is exactly POINTS_PER_RECIPIENT * len(recipients): over- and
under-allocation both block submission. Each recipient also needs
non-blank strengths and improvements text and a positive score.

This module is pure Python: no Flask, no database. The same ledger backs
the survey form on the client (offrecord.client) and the authoritative
check in submission_service.
"""

from __future__ import annotations

from dataclasses import dataclass

from offrecord.app.errors import AppError, ErrorCode

POINTS_PER_RECIPIENT = 100


@dataclass
class LedgerEntry:
    recipient: str
    strengths: str = ""
    improvements: str = ""
    points: int = 0

    def is_complete(self) -> bool:
        return bool(self.strengths.strip()) and bool(self.improvements.strip()) and self.points > 0


class ScoreLedger:
    """
    Tracks one respondent's allocation across their recipients.

    Recipients are roster emails (lowercased). Order is preserved so the
    client can walk members one at a time.
    """

    def __init__(self, recipients: list[str], points_per_recipient: int = POINTS_PER_RECIPIENT) -> None:
        if len(set(recipients)) != len(recipients):
            raise ValueError("recipients must be unique")
        self._entries = {r: LedgerEntry(recipient=r) for r in recipients}
        self.points_per_recipient = points_per_recipient

    # ── Inspection ─────────────────────────────────────────────────────────

    @property
    def recipients(self) -> list[str]:
        return list(self._entries)

    @property
    def budget(self) -> int:
        return self.points_per_recipient * len(self._entries)

    @property
    def allocated(self) -> int:
        return sum(e.points for e in self._entries.values())

    @property
    def remaining(self) -> int:
        return self.budget - self.allocated

    def entry(self, recipient: str) -> LedgerEntry:
        try:
            return self._entries[recipient]
        except KeyError:
            raise KeyError(f"{recipient!r} is not a recipient in this ledger") from None

    def is_entry_complete(self, recipient: str) -> bool:
        return self.entry(recipient).is_complete()

    # ── Mutation ───────────────────────────────────────────────────────────

    def allocate(self, recipient: str, points: int) -> None:
        """Sets the points for one recipient. Points must be a non-negative int."""
        # bool is an int subclass; True is not a score.
        if isinstance(points, bool) or not isinstance(points, int):
            raise TypeError("points must be an integer")
        if points < 0:
            raise ValueError("points must not be negative")
        self.entry(recipient).points = points

    def write(self, recipient: str, strengths: str | None = None, improvements: str | None = None) -> None:
        entry = self.entry(recipient)
        if strengths is not None:
            entry.strengths = strengths
        if improvements is not None:
            entry.improvements = improvements

    # ── Submission rules ───────────────────────────────────────────────────

    def problems(self) -> tuple[str, str] | None:
        """
        Returns the first reason the ledger cannot be submitted as
        (error_code, message), or None when it can.

        Per-recipient completeness is checked before the budget total.
        """
        for entry in self._entries.values():
            if not entry.strengths.strip() or not entry.improvements.strip():
                return (
                    ErrorCode.EMPTY_FEEDBACK_TEXT,
                    "Both strengths and improvements are required for every member.",
                )
            if entry.points <= 0:
                return (
                    ErrorCode.INVALID_SCORE,
                    "Every member must receive more than 0 points.",
                )

        if self.allocated != self.budget:
            return (
                ErrorCode.SCORE_BUDGET_MISMATCH,
                f"You must allocate exactly {self.budget} points. "
                f"You have {self.remaining} points remaining.",
            )
        return None

    def can_submit(self) -> bool:
        """True iff every entry is complete and the budget is spent exactly."""
        return self.problems() is None

    def to_items(self) -> list[dict]:
        """The submission payload for this ledger."""
        return [
            {
                "recipient_email": e.recipient,
                "strengths": e.strengths.strip(),
                "improvements": e.improvements.strip(),
                "score": e.points,
            }
            for e in self._entries.values()
        ]

    # ── Construction from a submitted payload ──────────────────────────────

    @classmethod
    def from_items(
            cls,
            respondent: str,
            recipients: list[str],
            items: list[dict],
            points_per_recipient: int = POINTS_PER_RECIPIENT,
    ) -> "ScoreLedger":
        """
        Builds a ledger from submitted items, checking that they cover every
        recipient exactly once and never the respondent.

        Raises:
          AppError(SELF_FEEDBACK, 422)      — an item targets the respondent
          AppError(RECIPIENT_MISMATCH, 422) — unknown, duplicated or missing recipients
        """
        ledger = cls(recipients, points_per_recipient=points_per_recipient)
        seen: set[str] = set()

        for item in items:
            recipient = str(item["recipient_email"]).strip().lower()
            if recipient == respondent:
                raise AppError(
                    ErrorCode.SELF_FEEDBACK,
                    "You cannot leave feedback for yourself.",
                    422,
                    field="items",
                )
            if recipient not in ledger._entries or recipient in seen:
                raise AppError(
                    ErrorCode.RECIPIENT_MISMATCH,
                    "Feedback must cover every other member of the group exactly once.",
                    422,
                    field="items",
                )
            seen.add(recipient)
            ledger.allocate(recipient, item["score"])
            ledger.write(recipient, strengths=item["strengths"], improvements=item["improvements"])

        if len(seen) != len(recipients):
            raise AppError(
                ErrorCode.RECIPIENT_MISMATCH,
                "Feedback must cover every other member of the group exactly once.",
                422,
                field="items",
            )
        return ledger


def validate_ledger(ledger: ScoreLedger) -> None:
    """
    Raises the ledger's first problem as an AppError (422).
    The authoritative budget check before anything is written.
    """
    problem = ledger.problems()
    if problem is not None:
        code, message = problem
        raise AppError(code, message, 422, field="items")
