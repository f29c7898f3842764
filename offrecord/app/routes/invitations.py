"""
routes/invitations.py — Invitation redemption.

Endpoints (base url_prefix=/api/v1/invitations):
  POST   /invitations/redeem  → 200  bind (email, credential) to the caller
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from offrecord.app.extensions import db
from offrecord.app.middleware.auth_middleware import require_auth
from offrecord.app.schemas.invitation_schema import RedeemInvitationSchema
from offrecord.app.services import invitation_service

invitations_bp = Blueprint("invitations", __name__)


@invitations_bp.route("/redeem", methods=["POST"])
@require_auth
def redeem():
    """POST /invitations/redeem — Works for password and anonymous sessions alike."""
    data = RedeemInvitationSchema().load(request.get_json(force=True) or {})
    result = invitation_service.redeem(
        email=data["email"],
        credential=data["credential"],
        caller=g.caller,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
