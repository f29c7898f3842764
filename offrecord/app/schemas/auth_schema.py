"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field types, lengths, formats.
  - services/auth_service.py: DUPLICATE_EMAIL and INVALID_ROLE checks.

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema — it requires an active Flask app context
           and breaks unit tests. See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_password_strength(value: str) -> None:
    """Min 8 chars, at least one letter and one digit."""
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if not any(c.isalpha() for c in value):
        raise ValidationError("Password must contain at least one letter.")
    if not any(c.isdigit() for c in value):
        raise ValidationError("Password must contain at least one digit.")


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class RegisterSchema(Schema):
    """
    POST /auth/register

    role is accepted as a free string here; the service rejects anything
    outside host/member with INVALID_ROLE so the error code is specific.
    """

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )
    password = fields.Str(
        required=True,
        load_only=True,
        validate=_validate_password_strength,
    )
    display_name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Display name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )
    role = fields.Str(load_default="member")


class LoginSchema(Schema):
    """
    POST /auth/login

    Credential correctness is checked in auth_service.py
    (INVALID_CREDENTIALS, 401).
    """

    email = fields.Str(required=True)
    password = fields.Str(required=True, load_only=True)


class AnonymousSignInSchema(Schema):
    """POST /auth/anonymous — display_name is optional ("Guest")."""

    display_name = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=100),
    )


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh, POST /auth/logout

    Token validity (revoked, expired, not found) is checked in
    auth_service.py (REFRESH_TOKEN_INVALID, 401).
    """

    refresh_token = fields.Str(required=True)


class UpdateProfileSchema(Schema):
    """PATCH /auth/me"""

    display_name = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, max=100),
            _validate_non_empty_after_trim,
        ],
    )
