"""
schemas/invitation_schema.py — Marshmallow schemas for invitation endpoints.

Whether an (email, credential) pair matches anything is a DB concern
(INVALID_CREDENTIALS, 401) checked in invitation_service.py.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate


class RedeemInvitationSchema(Schema):
    """POST /invitations/redeem"""

    email = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    credential = fields.Str(required=True, validate=validate.Length(min=1, max=16))


class SendInvitationsSchema(Schema):
    """
    POST /groups/:id/invitations/send

    app_url overrides the configured APP_URL in the email body.
    emails restricts sending to a subset of the roster.
    """

    app_url = fields.Url(load_default=None, allow_none=True, require_tld=False)
    emails = fields.List(fields.Email(), load_default=None, allow_none=True)
