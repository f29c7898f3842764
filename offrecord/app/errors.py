"""
errors.py — AppError base class and error code registry.

Every error returned by the OffRecord API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized). See AUTH section below.
  - Messages never reveal another participant's identity or which half of a
    credential pair was wrong.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_ROLE               = "INVALID_ROLE"
    EMAIL_NOT_CONFIGURED       = "EMAIL_NOT_CONFIGURED"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL              = "DUPLICATE_EMAIL"
    ALREADY_SUBMITTED            = "ALREADY_SUBMITTED"
    INVITATION_ALREADY_REDEEMED  = "INVITATION_ALREADY_REDEEMED"
    ALREADY_IN_GROUP             = "ALREADY_IN_GROUP"
    GROUP_COMPLETE               = "GROUP_COMPLETE"
    REPORT_NOT_READY             = "REPORT_NOT_READY"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    INVALID_ROSTER_SIZE        = "INVALID_ROSTER_SIZE"
    DUPLICATE_MEMBER_EMAIL     = "DUPLICATE_MEMBER_EMAIL"
    HOST_IN_ROSTER             = "HOST_IN_ROSTER"
    SELF_FEEDBACK              = "SELF_FEEDBACK"
    RECIPIENT_MISMATCH         = "RECIPIENT_MISMATCH"
    EMPTY_FEEDBACK_TEXT        = "EMPTY_FEEDBACK_TEXT"
    INVALID_SCORE              = "INVALID_SCORE"
    SCORE_BUDGET_MISMATCH      = "SCORE_BUDGET_MISMATCH"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    # These must NEVER be swapped.
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # One of the two group listings failed; the other half is returned.
    PARTIAL_GROUP_LIST = "PARTIAL_GROUP_LIST"

    # Some invitation emails could not be delivered; see `failures`.
    INVITE_DELIVERY_FAILED = "INVITE_DELIVERY_FAILED"
