"""
schemas/group_schema.py — Marshmallow schemas for group creation.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim).
  - services/group_service.py: roster size, duplicate emails and the
    host-in-roster rule (422). Roster size is configurable, so it is not
    checked here.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py for the full explanation.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    validate.Length(min=1) alone lets "   " through.
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class RosterMemberSchema(Schema):
    """One roster entry: {"email": ..., "name": ...}."""

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )
    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Member name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )


class CreateGroupSchema(Schema):
    """
    POST /groups

    name — non-empty after trim, max 100 chars.
    """

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )
    members = fields.List(
        fields.Nested(RosterMemberSchema),
        required=True,
    )


class ListGroupsQuerySchema(Schema):
    """GET /groups?role=host|member|all"""

    role = fields.Str(
        load_default="all",
        validate=validate.OneOf(
            ["host", "member", "all"],
            error="role must be one of: host, member, all.",
        ),
    )
