"""Study schedule routes."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from audit import log_event
from db_stores import StudyAssignmentStoreDB
from helpers import can_manage_team_members, current_user_id, date_range_args, json_body, team_manager_required
from models import utc_now
from resilience import AuthorizationError, NotFoundError, ValidationError, must_succeed, require_uuid
from study_schedule import assignment_progress, get_assignment_for, schedule_assignment

bp = Blueprint("planner", __name__)


@bp.route("/api/schedule")
@login_required
def api_my_schedule():
    """The caller's assignments in a date range, or upcoming ones by default."""
    start, end = date_range_args()
    uid = current_user_id()
    if start or end:
        assignments = must_succeed(StudyAssignmentStoreDB.query, user_id=uid, start_date=start, end_date=end)
    else:
        limit = min(max(request.args.get("limit", 10, type=int), 1), 100)
        assignments = must_succeed(StudyAssignmentStoreDB.upcoming, uid, utc_now().date().isoformat(), limit)
    return jsonify({"assignments": [a.to_dict() for a in assignments]})


@bp.route("/api/teams/<team_id>/schedule")
@login_required
@team_manager_required
def api_team_schedule(team_id):
    start, end = date_range_args()
    user_id = request.args.get("user_id", type=int)
    assignments = must_succeed(StudyAssignmentStoreDB.query, team_id=team_id, user_id=user_id,
                               start_date=start, end_date=end)
    return jsonify({"assignments": [a.to_dict() for a in assignments]})


@bp.route("/api/teams/<team_id>/schedule", methods=["POST"])
@login_required
@team_manager_required
def api_create_assignment(team_id):
    data = json_body()
    user_ids = data.get("user_ids")
    if user_ids is None:
        user_ids = [data.get("user_id")]
    if not isinstance(user_ids, list) or not user_ids or any(u is None for u in user_ids):
        raise ValidationError("user_id or user_ids is required")
    if not data.get("date"):
        raise ValidationError("date is required")

    try:
        user_ids = [int(u) for u in user_ids]
    except (TypeError, ValueError):
        raise ValidationError("user ids must be integers") from None

    created = [
        schedule_assignment(team_id, uid, data["date"], data.get("study_items"),
                            description=str(data.get("description", "")),
                            created_by=current_user.id)
        for uid in user_ids
    ]
    log_event("assignment_created", current_user.id, f"team={team_id} count={len(created)}")
    return jsonify({"assignments": [a.to_dict() for a in created]}), 201


@bp.route("/api/schedule/<assignment_id>")
@login_required
def api_assignment(assignment_id):
    require_uuid(assignment_id, "assignment id")
    assignment = get_assignment_for(assignment_id, current_user)
    return jsonify({
        "assignment": assignment.to_dict(),
        "progress": assignment_progress(assignment),
    })


@bp.route("/api/schedule/<assignment_id>", methods=["DELETE"])
@login_required
def api_delete_assignment(assignment_id):
    require_uuid(assignment_id, "assignment id")
    assignment = must_succeed(StudyAssignmentStoreDB.get, assignment_id)
    if not assignment:
        raise NotFoundError("Study assignment not found")
    if not can_manage_team_members(current_user, assignment.team_id):
        raise AuthorizationError("Only team owners and admins can delete assignments")
    must_succeed(StudyAssignmentStoreDB.delete, assignment_id)
    log_event("assignment_deleted", current_user.id, f"assignment={assignment_id}")
    return jsonify({"success": True})
