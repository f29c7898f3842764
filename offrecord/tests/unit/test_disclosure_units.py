"""
tests/unit/test_disclosure_units.py — Unit tests for disclosure_service.

What this file proves:
  - average_score() rounds half-up (64.5 → 65, not banker's 64)
  - participation_level() band boundaries
  - get_feedback_for() gates on group existence, the caller's binding and
    completion, in that order
  - Rows leave without respondent columns, in the order the rng produces

Collaborators are patched; no database.
"""

from __future__ import annotations

import random
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from offrecord.app.caller import CallerContext
from offrecord.app.errors import AppError, ErrorCode
from offrecord.app.services import disclosure_service
from offrecord.app.services.disclosure_service import average_score, participation_level

CALLER = CallerContext(user_id=5)


# ── average_score ──────────────────────────────────────────────────────────

@pytest.mark.parametrize("scores, expected", [
    ([], 0),
    ([100], 100),
    ([79, 50], 65),     # 64.5
    ([121, 110], 116),  # 115.5
    ([100, 101], 101),  # 100.5
    ([1, 1, 2], 1),     # 1.33
    ([1, 2, 2], 2),     # 1.67
])
def test_average_score_rounds_half_up(scores, expected):
    assert average_score(scores) == expected


# ── participation_level ────────────────────────────────────────────────────

@pytest.mark.parametrize("average, label", [
    (150, "Great Participation"),
    (90, "Great Participation"),
    (89, "Strong Participation"),
    (80, "Strong Participation"),
    (79, "Good Participation"),
    (70, "Good Participation"),
    (60, "Moderate Participation"),
    (59, "Developing Participation"),
    (0, "Developing Participation"),
])
def test_participation_bands(average, label):
    assert participation_level(average)["label"] == label


def test_participation_includes_colours():
    level = participation_level(95)
    assert level["color"].startswith("#")
    assert level["background"].startswith("#")


# ── get_feedback_for ───────────────────────────────────────────────────────

def _patch(monkeypatch, invitation, completion):
    monkeypatch.setattr(
        disclosure_service.invitation_service,
        "get_bound_invitation",
        lambda group_id, user_id, session: invitation,
    )
    monkeypatch.setattr(
        disclosure_service.submission_service,
        "get_completion",
        lambda group_id, session: completion,
    )


def _session_with_rows(rows):
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=1, name="Retro")
    session.execute.return_value.scalars.return_value.all.return_value = rows
    return session


def _row(score, strengths="Good", improvements="More"):
    return SimpleNamespace(
        strengths=strengths,
        improvements=improvements,
        score=score,
        respondent_user_id=9,
        recipient_email="cleo@test.com",
    )


def test_missing_group_raises_404():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        disclosure_service.get_feedback_for(1, CALLER, session)
    assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND


def test_unbound_caller_raises_403(monkeypatch):
    _patch(monkeypatch, None, {"completed": 3, "total": 3, "is_complete": True})

    with pytest.raises(AppError) as exc_info:
        disclosure_service.get_feedback_for(1, CALLER, _session_with_rows([]))
    assert exc_info.value.code == ErrorCode.FORBIDDEN
    assert exc_info.value.http_status == 403


def test_incomplete_group_raises_409(monkeypatch):
    invitation = SimpleNamespace(email="cleo@test.com", display_name="Cleo")
    _patch(monkeypatch, invitation, {"completed": 2, "total": 3, "is_complete": False})

    with pytest.raises(AppError) as exc_info:
        disclosure_service.get_feedback_for(1, CALLER, _session_with_rows([]))
    err = exc_info.value
    assert err.code == ErrorCode.REPORT_NOT_READY
    assert err.http_status == 409
    assert "2 of 3" in err.message


def test_rows_are_shuffled_and_stripped(monkeypatch):
    invitation = SimpleNamespace(email="cleo@test.com", display_name="Cleo")
    _patch(monkeypatch, invitation, {"completed": 3, "total": 3, "is_complete": True})
    rows = [_row(79, strengths="first"), _row(50, strengths="second")]

    class _Reverse(random.Random):
        def shuffle(self, x):
            x.reverse()

    result = disclosure_service.get_feedback_for(1, CALLER, _session_with_rows(rows), rng=_Reverse())

    assert [item["strengths"] for item in result["items"]] == ["second", "first"]
    assert all(set(item) == {"strengths", "improvements", "score"} for item in result["items"])
    assert result["average_score"] == 65
    assert result["participation"]["label"] == "Moderate Participation"
    assert result["recipient_name"] == "Cleo"
    assert result["group_name"] == "Retro"
