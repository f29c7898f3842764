"""
Unit tests for submission_service: completion arithmetic and the
uniqueness-constraint path, against a mocked session.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from offrecord.app.caller import CallerContext
from offrecord.app.errors import AppError, ErrorCode
from offrecord.app.services import submission_service

ROSTER = ["ana@test.com", "ben@test.com", "cleo@test.com"]


def _completion_session(roster, respondents):
    session = MagicMock()
    roster_result = MagicMock()
    roster_result.scalars.return_value.all.return_value = roster
    respondent_result = MagicMock()
    respondent_result.scalars.return_value.all.return_value = respondents
    session.execute.side_effect = [roster_result, respondent_result]
    return session


@pytest.mark.parametrize("respondents, expected", [
    ([], {"completed": 0, "total": 3, "is_complete": False}),
    (["ana@test.com"], {"completed": 1, "total": 3, "is_complete": False}),
    (ROSTER, {"completed": 3, "total": 3, "is_complete": True}),
    # A removed member's submission never counts.
    (["ana@test.com", "gone@test.com"], {"completed": 1, "total": 3, "is_complete": False}),
])
def test_get_completion(respondents, expected):
    assert submission_service.get_completion(1, _completion_session(ROSTER, respondents)) == expected


def test_empty_roster_is_never_complete():
    result = submission_service.get_completion(1, _completion_session([], []))
    assert result == {"completed": 0, "total": 0, "is_complete": False}


@pytest.mark.parametrize("respondents, expected", [
    (ROSTER, True),
    (ROSTER[:2], False),
])
def test_is_complete(respondents, expected):
    assert submission_service.is_complete(1, _completion_session(ROSTER, respondents)) is expected


def _submit_session():
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=1, name="Retro")
    result = session.execute.return_value
    result.scalar_one_or_none.return_value = SimpleNamespace(email="ana@test.com")
    result.scalars.return_value.all.return_value = ROSTER
    return session


def _items():
    return [
        {"recipient_email": email, "strengths": "Good", "improvements": "More", "score": 100}
        for email in ROSTER[1:]
    ]


def test_unique_violation_becomes_already_submitted():
    session = _submit_session()
    session.flush.side_effect = IntegrityError("INSERT INTO submissions", {}, Exception("unique"))

    with pytest.raises(AppError) as exc_info:
        submission_service.submit(1, CallerContext(user_id=7), _items(), session)

    err = exc_info.value
    assert err.code == ErrorCode.ALREADY_SUBMITTED
    assert err.http_status == 409
    session.rollback.assert_called_once()


def test_budget_is_checked_before_anything_is_added():
    session = _submit_session()
    items = _items()
    items[0]["score"] = 150

    with pytest.raises(AppError) as exc_info:
        submission_service.submit(1, CallerContext(user_id=7), items, session)

    assert exc_info.value.code == ErrorCode.SCORE_BUDGET_MISMATCH
    session.add.assert_not_called()


def test_unbound_caller_is_forbidden():
    session = _submit_session()
    session.execute.return_value.scalar_one_or_none.return_value = None

    with pytest.raises(AppError) as exc_info:
        submission_service.submit(1, CallerContext(user_id=7), _items(), session)
    assert exc_info.value.code == ErrorCode.FORBIDDEN
