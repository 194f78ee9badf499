"""Analytics routes: personal summary, per-report breakdowns and team trends."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from analytics import (
    Scope,
    book_chapter_performance,
    engagement,
    knowledge_gaps,
    question_performance,
    quiz_history,
    study_schedule_analysis,
    team_performance_trends,
)
from helpers import can_manage_team_members, current_user_id, date_range_args, team_manager_required
from procedures import get_user_analytics_data
from resilience import AuthorizationError, NotFoundError, ValidationError, must_succeed, require_uuid
from subscription_store import requires_feature

bp = Blueprint("insights", __name__)

REPORTS = {
    "book-chapter": book_chapter_performance,
    "questions": question_performance,
    "knowledge-gaps": knowledge_gaps,
    "engagement": engagement,
    "history": quiz_history,
}


def _scope_from_args() -> Scope:
    """Own data by default; team managers may pass team_id and/or user_id."""
    start, end = date_range_args()
    team_id = request.args.get("team_id", "").strip() or None
    user_id = request.args.get("user_id", type=int)

    if team_id:
        require_uuid(team_id, "team id")
        if not can_manage_team_members(current_user, team_id):
            raise AuthorizationError("Team analytics are limited to team owners and admins")
        return Scope(user_id=user_id, team_id=team_id, start=start, end=end)
    if user_id is not None and user_id != current_user_id():
        raise AuthorizationError("Pass team_id to view another member's analytics")
    return Scope(user_id=current_user_id(), start=start, end=end)


@bp.route("/api/analytics/summary")
@login_required
@requires_feature("allow_analytics_access")
def api_analytics_summary():
    start, end = date_range_args()
    data = must_succeed(
        get_user_analytics_data, current_user_id(), start, end,
        current_app.config.get("ANALYTICS_DEFAULT_DAYS", 30),
    )
    return jsonify(data)


@bp.route("/api/analytics/<report>")
@login_required
@requires_feature("allow_analytics_access")
def api_analytics_report(report):
    fn = REPORTS.get(report)
    if fn is None:
        raise NotFoundError(f"Unknown report: {report}")
    scope = _scope_from_args()
    return jsonify({"report": report, "data": must_succeed(fn, scope)})


@bp.route("/api/teams/<team_id>/analytics/trends")
@login_required
@requires_feature("allow_analytics_access")
@team_manager_required
def api_team_trends(team_id):
    timeframe = request.args.get("timeframe", "weekly")
    if timeframe not in ("weekly", "monthly"):
        raise ValidationError("timeframe must be 'weekly' or 'monthly'")
    start, end = date_range_args()
    return jsonify({
        "timeframe": timeframe,
        "trends": must_succeed(team_performance_trends, team_id, timeframe, start, end),
    })


@bp.route("/api/teams/<team_id>/analytics/schedule")
@login_required
@requires_feature("allow_analytics_access")
@team_manager_required
def api_team_schedule_analysis(team_id):
    start, end = date_range_args()
    user_id = request.args.get("user_id", type=int)
    return jsonify({
        "assignments": must_succeed(study_schedule_analysis, team_id, user_id, start, end),
    })
