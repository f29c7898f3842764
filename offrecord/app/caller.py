"""
caller.py — CallerContext, the explicit identity threaded into services.

The middleware builds one per request from the verified access token;
services take it as a parameter instead of reading ambient session state.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CallerContext:
    """The authenticated identity behind a request."""

    user_id: int
    email: str | None = None
    is_anonymous: bool = False
