"""
routes/groups.py — Group, roster, survey and feedback route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                          → 201  create group + invitations
  GET    /groups?role=host|member|all     → 200  list caller's groups
  GET    /groups/:id                      → 200  group + roster + completion
  DELETE /groups/:id                      → 200  cascade delete (host)
  DELETE /groups/:id/members/:email       → 200  remove roster entry (host)
  GET    /groups/:id/invitations          → 200  credentials (host)
  POST   /groups/:id/invitations/send     → 200  email credentials (host)
  GET    /groups/:id/completion           → 200  {completed, total, is_complete}
  GET    /groups/:id/survey               → 200  recipients + budget
  POST   /groups/:id/submissions          → 201  atomic submission
  GET    /groups/:id/feedback             → 200  caller's own feedback
  GET    /groups/:id/report               → 200  HTML report download
"""

from __future__ import annotations

from flask import Blueprint, Response, current_app, g, jsonify, request

from offrecord.app.extensions import db
from offrecord.app.middleware.auth_middleware import require_auth
from offrecord.app.schemas.group_schema import CreateGroupSchema, ListGroupsQuerySchema
from offrecord.app.schemas.invitation_schema import SendInvitationsSchema
from offrecord.app.schemas.submission_schema import SubmitFeedbackSchema
from offrecord.app.services import (
    disclosure_service,
    group_service,
    invitation_service,
    invite_mail_service,
    report_service,
    submission_service,
)

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a group; the caller becomes its host."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.create_group(
        name=data["name"],
        caller=g.caller,
        members=data["members"],
        session=db.session,
        min_members=current_app.config["MIN_GROUP_MEMBERS"],
        max_members=current_app.config["MAX_GROUP_MEMBERS"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — Groups the caller hosts and/or has joined."""
    args = ListGroupsQuerySchema().load(request.args.to_dict())
    result = group_service.list_groups(
        caller=g.caller,
        role=args["role"],
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    """GET /groups/:id — Host or bound member only."""
    result = group_service.get_group(
        group_id=group_id,
        caller=g.caller,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["DELETE"])
@require_auth
def delete_group(group_id: int):
    """DELETE /groups/:id — Removes the group and everything it owns."""
    group_service.delete_group_cascade(
        group_id=group_id,
        caller=g.caller,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": {"message": "Group deleted.", "group_id": group_id}, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members/<string:email>", methods=["DELETE"])
@require_auth
def remove_member(group_id: int, email: str):
    """DELETE /groups/:id/members/:email — Idempotent."""
    result = group_service.remove_member(
        group_id=group_id,
        caller=g.caller,
        email=email,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/invitations", methods=["GET"])
@require_auth
def list_invitations(group_id: int):
    """GET /groups/:id/invitations — Host view, credentials included."""
    group = group_service.get_group_for_host(group_id, g.caller, db.session)
    result = invitation_service.list_invitations(
        group=group,
        caller=g.caller,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/invitations/send", methods=["POST"])
@require_auth
def send_invitations(group_id: int):
    """POST /groups/:id/invitations/send — Email each invitee their credential."""
    data = SendInvitationsSchema().load(request.get_json(silent=True) or {})
    group_service.get_group_for_host(group_id, g.caller, db.session)  # 403 before 400
    sender = invite_mail_service.build_sender_from_config(current_app.config)
    app_url = (
        data["app_url"]
        or current_app.config.get("APP_URL")
        or request.headers.get("Origin", "")
    )
    result, warnings = invite_mail_service.send_group_invitations(
        group_id=group_id,
        caller=g.caller,
        session=db.session,
        sender=sender,
        app_url=app_url,
        emails=data["emails"],
    )
    return jsonify({"data": result, "warnings": warnings}), 200


@groups_bp.route("/<int:group_id>/completion", methods=["GET"])
@require_auth
def get_completion(group_id: int):
    """GET /groups/:id/completion — Counts only; never who submitted."""
    group_service.get_group(group_id, g.caller, db.session)  # access check
    result = submission_service.get_completion(group_id, db.session)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/survey", methods=["GET"])
@require_auth
def get_survey(group_id: int):
    """GET /groups/:id/survey — Recipients and point budget for the caller."""
    result = submission_service.get_survey(
        group_id=group_id,
        caller=g.caller,
        session=db.session,
        points_per_recipient=current_app.config["POINTS_PER_RECIPIENT"],
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/submissions", methods=["POST"])
@require_auth
def submit_feedback(group_id: int):
    """POST /groups/:id/submissions — All feedback for the group at once."""
    data = SubmitFeedbackSchema().load(request.get_json(force=True) or {})
    result = submission_service.submit(
        group_id=group_id,
        caller=g.caller,
        items=data["items"],
        session=db.session,
        points_per_recipient=current_app.config["POINTS_PER_RECIPIENT"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/feedback", methods=["GET"])
@require_auth
def get_feedback(group_id: int):
    """GET /groups/:id/feedback — Only rows addressed to the caller."""
    result = disclosure_service.get_feedback_for(
        group_id=group_id,
        caller=g.caller,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/report", methods=["GET"])
@require_auth
def download_report(group_id: int):
    """GET /groups/:id/report — Printable HTML, served as an attachment."""
    html, filename = report_service.build_report_for(
        group_id=group_id,
        caller=g.caller,
        session=db.session,
    )
    return Response(
        html,
        status=200,
        mimetype="text/html",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
