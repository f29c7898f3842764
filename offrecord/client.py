"""
client.py — Python client for the OffRecord HTTP API.

Plays the part of the browser front end: signs in, hosts groups, redeems
invitations, submits feedback and downloads reports.

Network behaviour:
  - Every call uses a 15 s timeout. A timeout raises RequestTimedOut, which
    is retryable and is also a builtin TimeoutError.
  - If a call is still running after 2.5 s the `on_slow` callback fires
    once with the request path, so a UI can show a "still working" hint.
  - An expired access token is refreshed once and the call retried.
  - list_groups() asks for hosted and joined groups concurrently, merges
    them by id, and tolerates one of the two failing.

Testability: pass a fake `session` (anything with a requests.Session-like
`request()` method) instead of letting the client create a real one.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
SLOW_THRESHOLD = 2.5
DEFAULT_DISPLAY_NAME = "there"

# Calls that issue tokens themselves are never retried after a refresh.
_TOKEN_ISSUING_PATHS = frozenset({"/auth/register", "/auth/login", "/auth/anonymous", "/auth/refresh"})


# ── Errors ─────────────────────────────────────────────────────────────────

class ApiError(Exception):
    """An error response (or no response) from the OffRecord API."""

    retryable = False

    def __init__(
            self,
            message: str,
            code: str | None = None,
            status: int | None = None,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.field = field

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, status={self.status}, message={self.message!r})"


class ValidationFailed(ApiError):
    """400 / 422: the request was malformed or broke a business rule."""


class AuthFailed(ApiError):
    """401: missing, expired or rejected credentials."""


class PermissionDenied(ApiError):
    """403: authenticated, but not allowed."""


class NotFound(ApiError):
    """404"""


class Conflict(ApiError):
    """409: already submitted, already redeemed, not ready yet."""


class RequestTimedOut(ApiError, TimeoutError):
    """No answer within the timeout. Safe to retry."""

    retryable = True


_STATUS_ERRORS: dict[int, type[ApiError]] = {
    400: ValidationFailed,
    401: AuthFailed,
    403: PermissionDenied,
    404: NotFound,
    409: Conflict,
    422: ValidationFailed,
}


def error_from_response(resp: requests.Response) -> ApiError:
    """Builds the ApiError subclass matching an error response."""
    try:
        body = resp.json()
    except ValueError:
        body = None

    error = body.get("error", {}) if isinstance(body, dict) else {}
    message = error.get("message") or f"Request failed with status {resp.status_code}."
    cls = _STATUS_ERRORS.get(resp.status_code, ApiError)
    return cls(
        message,
        code=error.get("code"),
        status=resp.status_code,
        field=error.get("field"),
    )


# ── Client ─────────────────────────────────────────────────────────────────

class OffRecordClient:

    def __init__(
            self,
            base_url: str,
            session: requests.Session | None = None,
            timeout: float = DEFAULT_TIMEOUT,
            slow_threshold: float = SLOW_THRESHOLD,
            on_slow: Callable[[str], None] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.slow_threshold = slow_threshold
        self.on_slow = on_slow
        self.access_token: str | None = None
        self.refresh_token: str | None = None
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Transport ──────────────────────────────────────────────────────────

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v1{path}"

    def _headers(self) -> dict:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        timer = None
        if self.on_slow is not None:
            timer = threading.Timer(self.slow_threshold, self.on_slow, args=(path,))
            timer.daemon = True
            timer.start()
        try:
            return self.session.request(
                method,
                self._url(path),
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout as exc:
            raise RequestTimedOut(
                f"{method} {path} timed out after {self.timeout:g}s.",
                code="TIMEOUT",
            ) from exc
        except requests.RequestException as exc:
            raise ApiError(f"{method} {path} failed: {exc}", code="NETWORK_ERROR") from exc
        finally:
            if timer is not None:
                timer.cancel()

    def _request_raw(self, method: str, path: str, **kwargs) -> requests.Response:
        resp = self._send(method, path, **kwargs)

        if resp.status_code == 401 and self.refresh_token and path not in _TOKEN_ISSUING_PATHS:
            err = error_from_response(resp)
            if err.code == "TOKEN_EXPIRED":
                logger.debug("Access token expired; refreshing")
                self.refresh()
                resp = self._send(method, path, **kwargs)

        if not resp.ok:
            raise error_from_response(resp)
        return resp

    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Returns the `data` member of the response envelope."""
        return self._request_raw(method, path, **kwargs).json()["data"]

    def _store_tokens(self, data: dict) -> dict:
        self.access_token = data.get("access_token", self.access_token)
        self.refresh_token = data.get("refresh_token", self.refresh_token)
        return data

    # ── Auth ───────────────────────────────────────────────────────────────

    def register(self, email: str, password: str, display_name: str, role: str = "member") -> dict:
        return self._store_tokens(self._request(
            "POST", "/auth/register",
            json={"email": email, "password": password, "display_name": display_name, "role": role},
        ))

    def login(self, email: str, password: str) -> dict:
        return self._store_tokens(self._request(
            "POST", "/auth/login",
            json={"email": email, "password": password},
        ))

    def sign_in_anonymously(self, display_name: str | None = None) -> dict:
        return self._store_tokens(self._request(
            "POST", "/auth/anonymous",
            json={"display_name": display_name},
        ))

    def refresh(self) -> dict:
        if not self.refresh_token:
            raise AuthFailed("No refresh token; sign in again.", code="REFRESH_TOKEN_INVALID", status=401)
        return self._store_tokens(self._request(
            "POST", "/auth/refresh",
            json={"refresh_token": self.refresh_token},
        ))

    def logout(self) -> None:
        if self.refresh_token:
            self._request("POST", "/auth/logout", json={"refresh_token": self.refresh_token})
        self.access_token = None
        self.refresh_token = None

    def me(self) -> dict:
        return self._request("GET", "/auth/me")

    def update_profile(self, display_name: str) -> dict:
        return self._request("PATCH", "/auth/me", json={"display_name": display_name})

    def fetch_display_name(self, default: str = DEFAULT_DISPLAY_NAME) -> str:
        """
        Best-effort profile prefetch for greetings.

        Any API failure falls back to `default`; a missing name never blocks
        the caller.
        """
        try:
            return self.me().get("display_name") or default
        except ApiError as exc:
            logger.debug("Profile prefetch failed, using default name: %r", exc)
            return default

    # ── Groups ─────────────────────────────────────────────────────────────

    def create_group(self, name: str, members: list[dict]) -> dict:
        """members: [{"email": ..., "name": ...}]"""
        return self._request("POST", "/groups/", json={"name": name, "members": members})

    def list_groups(self) -> dict:
        """
        Hosted and joined groups, fetched concurrently and merged by id.

        Returns {"groups": [...], "warnings": [...]}. When exactly one of the
        two lookups fails, the other half is returned with a
        PARTIAL_GROUP_LIST warning. When both fail the first error is raised.
        """
        roles = ("host", "member")
        with ThreadPoolExecutor(max_workers=len(roles)) as pool:
            futures = [
                pool.submit(self._request, "GET", "/groups/", params={"role": role})
                for role in roles
            ]
            outcomes = []
            for role, future in zip(roles, futures):
                try:
                    outcomes.append((role, future.result(), None))
                except ApiError as exc:
                    outcomes.append((role, None, exc))

        errors = [(role, exc) for role, _, exc in outcomes if exc is not None]
        if len(errors) == len(roles):
            raise errors[0][1]

        merged: dict[int, dict] = {}
        for _, groups, _ in outcomes:
            for group in groups or []:
                merged.setdefault(group["id"], group)

        warnings = []
        for role, exc in errors:
            logger.warning("Listing %s groups failed: %r", role, exc)
            warnings.append({
                "code": "PARTIAL_GROUP_LIST",
                "message": f"Could not load the groups you {'host' if role == 'host' else 'joined'}.",
            })

        return {"groups": list(merged.values()), "warnings": warnings}

    def get_group(self, group_id: int) -> dict:
        return self._request("GET", f"/groups/{group_id}")

    def delete_group(self, group_id: int) -> dict:
        return self._request("DELETE", f"/groups/{group_id}")

    def remove_member(self, group_id: int, email: str) -> dict:
        return self._request("DELETE", f"/groups/{group_id}/members/{quote(email, safe='@')}")

    # ── Invitations ────────────────────────────────────────────────────────

    def list_invitations(self, group_id: int) -> list[dict]:
        return self._request("GET", f"/groups/{group_id}/invitations")

    def send_invitations(
            self,
            group_id: int,
            app_url: str | None = None,
            emails: list[str] | None = None,
    ) -> dict:
        return self._request(
            "POST", f"/groups/{group_id}/invitations/send",
            json={"app_url": app_url, "emails": emails},
        )

    def redeem_invitation(self, email: str, credential: str) -> dict:
        return self._request(
            "POST", "/invitations/redeem",
            json={"email": email, "credential": credential},
        )

    # ── Survey & feedback ──────────────────────────────────────────────────

    def get_completion(self, group_id: int) -> dict:
        return self._request("GET", f"/groups/{group_id}/completion")

    def get_survey(self, group_id: int) -> dict:
        return self._request("GET", f"/groups/{group_id}/survey")

    def submit_feedback(self, group_id: int, items: list[dict]) -> dict:
        """items: [{"recipient_email", "strengths", "improvements", "score"}]"""
        return self._request("POST", f"/groups/{group_id}/submissions", json={"items": items})

    def get_feedback(self, group_id: int) -> dict:
        return self._request("GET", f"/groups/{group_id}/feedback")

    def download_report(self, group_id: int) -> str:
        """The printable HTML report as text."""
        return self._request_raw("GET", f"/groups/{group_id}/report").text
