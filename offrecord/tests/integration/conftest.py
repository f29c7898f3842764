"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against an in-memory SQLite database (TestingConfig) unless
    TEST_DATABASE_URL points at a real PostgreSQL test database.
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Helper functions (not fixtures) are provided for common operations:
  - register(client, ...)        → dict with user + tokens
  - login(client, ...)           → dict with user + tokens
  - anonymous(client, ...)       → dict with user + tokens
  - auth_headers(token)          → {"Authorization": "Bearer <token>"}
  - make_group(client, ...)      → group dict (includes invitations)
  - join_group(client, ...)      → access token of a member bound to a roster slot
  - feedback_items(...)          → a valid submission payload
  - submit(client, ...)          → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

import pytest
from sqlalchemy import delete

from offrecord.app import create_app
from offrecord.app.extensions import db as _db


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows between tests in FK-safe order.
    """
    yield  # run the test

    from offrecord.app.models.feedback_item import FeedbackItem
    from offrecord.app.models.group import Group
    from offrecord.app.models.invitation import Invitation
    from offrecord.app.models.membership import Membership
    from offrecord.app.models.refresh_token import RefreshToken
    from offrecord.app.models.submission import Submission
    from offrecord.app.models.user import User

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        for model in (
            FeedbackItem,
            Submission,
            Invitation,
            Membership,
            Group,
            RefreshToken,
            User,
        ):
            _db.session.execute(delete(model))
        _db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

RETRO_MEMBERS = [
    {"email": "ana@test.com", "name": "Ana"},
    {"email": "ben@test.com", "name": "Ben"},
    {"email": "cleo@test.com", "name": "Cleo"},
]


def register(
    client,
    name: str = "host",
    email: str | None = None,
    password: str = "Password1",
    role: str = "host",
) -> dict:
    """
    Registers a new password account and returns the full response data dict.
    Returns: {"user": {...}, "access_token": "...", "refresh_token": "..."}
    """
    if email is None:
        email = f"{name}@test.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={
            "email": email,
            "password": password,
            "display_name": name.capitalize(),
            "role": role,
        },
    )
    assert resp.status_code == 201, f"register failed: {resp.get_json()}"
    return resp.get_json()["data"]


def login(client, email: str, password: str = "Password1") -> dict:
    resp = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )
    assert resp.status_code == 200, f"login failed: {resp.get_json()}"
    return resp.get_json()["data"]


def anonymous(client, display_name: str | None = None) -> dict:
    resp = client.post("/api/v1/auth/anonymous", json={"display_name": display_name})
    assert resp.status_code == 201, f"anonymous sign-in failed: {resp.get_json()}"
    return resp.get_json()["data"]


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def make_group(
    client,
    token: str,
    name: str = "Retro",
    members: list[dict] | None = None,
) -> dict:
    """
    Creates a group and returns the group data dict, invitations included.
    The caller (token owner) becomes the host.
    """
    resp = client.post(
        "/api/v1/groups/",
        json={"name": name, "members": members if members is not None else RETRO_MEMBERS},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def credential_for(group: dict, email: str) -> str:
    return next(inv["credential"] for inv in group["invitations"] if inv["email"] == email)


def redeem(client, token: str, email: str, credential: str):
    """Redeems an invitation. Returns the HTTP response."""
    return client.post(
        "/api/v1/invitations/redeem",
        json={"email": email, "credential": credential},
        headers=auth_headers(token),
    )


def join_group(client, group: dict, email: str) -> str:
    """
    Signs in anonymously and redeems the invitation for `email`.
    Returns the member's access token.
    """
    token = anonymous(client)["access_token"]
    resp = redeem(client, token, email, credential_for(group, email))
    assert resp.status_code == 200, f"redeem failed: {resp.get_json()}"
    return token


def feedback_items(recipients: list[str], scores: list[int] | None = None) -> list[dict]:
    """
    A valid payload: 100 points per recipient unless scores are given.
    """
    if scores is None:
        scores = [100] * len(recipients)
    return [
        {
            "recipient_email": email,
            "strengths": f"Clear updates ({i})",
            "improvements": f"Share drafts earlier ({i})",
            "score": score,
        }
        for i, (email, score) in enumerate(zip(recipients, scores), start=1)
    ]


def submit(client, token: str, group_id: int, items: list[dict]):
    """Submits feedback. Returns the HTTP response."""
    return client.post(
        f"/api/v1/groups/{group_id}/submissions",
        json={"items": items},
        headers=auth_headers(token),
    )


def others(email: str, members: list[dict] | None = None) -> list[str]:
    """Roster emails other than `email`."""
    return [m["email"] for m in (members or RETRO_MEMBERS) if m["email"] != email]
