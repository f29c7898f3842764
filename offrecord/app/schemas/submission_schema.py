"""
schemas/submission_schema.py — Marshmallow schema for feedback submission.

Validation responsibility:
  - This file: shape and types only. score must be a real integer
    (strict=True rejects 50.0 and "50").
  - services/score_ledger.py: blank text, zero scores, the exact budget,
    self-feedback and recipient coverage (422).
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate


class FeedbackItemSchema(Schema):
    recipient_email = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    strengths = fields.Str(required=True, validate=validate.Length(max=5000))
    improvements = fields.Str(required=True, validate=validate.Length(max=5000))
    score = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=0, error="score must be a non-negative integer."),
    )


class SubmitFeedbackSchema(Schema):
    """
    POST /groups/:id/submissions

    A member of a one-person roster has nobody to score and submits [].
    """

    items = fields.List(fields.Nested(FeedbackItemSchema), required=True)
