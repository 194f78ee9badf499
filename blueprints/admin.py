"""Super-admin routes: question bank, achievements, plan settings, users, audit log."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from audit import log_event, recent_events
from database import get_db
from db_stores import AchievementStoreDB, QuestionBankDB
from gamification import CRITERIA_TYPES
from helpers import admin_required, json_body
from models import TIERS
from resilience import NotFoundError, ValidationError, must_succeed, require_fields, require_uuid
from subscription_store import PLAN_ORDER, PlanSettingsDB

logger = logging.getLogger(__name__)

bp = Blueprint("admin", __name__)

_QUESTION_INT_FIELDS = ("chapter", "verse", "points", "time_to_answer")


def _question_fields(data: dict, partial: bool = False) -> dict:
    fields = {}
    for key in ("book_of_bible", "question", "answer", "tier", *_QUESTION_INT_FIELDS):
        if key not in data:
            continue
        value = data[key]
        if key in _QUESTION_INT_FIELDS and value is not None:
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be an integer") from None
            if value < (0 if key == "points" else 1):
                raise ValidationError(f"{key} is out of range")
        fields[key] = value
    if "tier" in fields and fields["tier"] not in TIERS:
        raise ValidationError(f"tier must be one of: {', '.join(TIERS)}")
    if not partial:
        require_fields(fields, "book_of_bible", "chapter", "question", "answer")
    return fields


def _achievement_fields(data: dict, partial: bool = False) -> dict:
    fields = {k: data[k] for k in ("name", "description", "icon", "criteria_type", "criteria_value")
              if k in data}
    if "criteria_type" in fields and fields["criteria_type"] not in CRITERIA_TYPES:
        raise ValidationError(f"criteria_type must be one of: {', '.join(CRITERIA_TYPES)}")
    if "criteria_value" in fields:
        try:
            fields["criteria_value"] = int(fields["criteria_value"])
        except (TypeError, ValueError):
            raise ValidationError("criteria_value must be an integer") from None
        if fields["criteria_value"] < 1:
            raise ValidationError("criteria_value must be at least 1")
    if not partial:
        require_fields(fields, "name", "criteria_type", "criteria_value")
    return fields


# ── Question bank ─────────────────────────────────────────

@bp.route("/api/admin/questions")
@login_required
@admin_required
def api_admin_questions():
    tier = request.args.get("tier", "").strip()
    questions = must_succeed(
        QuestionBankDB.search,
        tiers=[tier] if tier else None,
        book=request.args.get("book", "").strip() or None,
        chapter=request.args.get("chapter", type=int),
    )
    return jsonify({"questions": [q.to_dict() for q in questions]})


@bp.route("/api/admin/questions", methods=["POST"])
@login_required
@admin_required
def api_admin_create_question():
    question = must_succeed(QuestionBankDB.create, **_question_fields(json_body()))
    log_event("question_created", current_user.id, f"question={question.id}")
    return jsonify({"question": question.to_dict()}), 201


@bp.route("/api/admin/questions/<question_id>", methods=["PATCH"])
@login_required
@admin_required
def api_admin_update_question(question_id):
    require_uuid(question_id, "question id")
    fields = _question_fields(json_body(), partial=True)
    if not fields:
        raise ValidationError("Nothing to update")
    if not must_succeed(QuestionBankDB.update, question_id, **fields):
        raise NotFoundError("Question not found")
    return jsonify({"question": QuestionBankDB.get(question_id).to_dict()})


@bp.route("/api/admin/questions/<question_id>", methods=["DELETE"])
@login_required
@admin_required
def api_admin_delete_question(question_id):
    require_uuid(question_id, "question id")
    if not must_succeed(QuestionBankDB.delete, question_id):
        raise NotFoundError("Question not found")
    log_event("question_deleted", current_user.id, f"question={question_id}")
    return jsonify({"success": True})


# ── Achievements ──────────────────────────────────────────

@bp.route("/api/admin/achievements")
@login_required
@admin_required
def api_admin_achievements():
    return jsonify({"achievements": [a.to_dict() for a in must_succeed(AchievementStoreDB.all)]})


@bp.route("/api/admin/achievements", methods=["POST"])
@login_required
@admin_required
def api_admin_create_achievement():
    achievement = must_succeed(AchievementStoreDB.create, **_achievement_fields(json_body()))
    log_event("achievement_created", current_user.id, f"achievement={achievement.id}")
    return jsonify({"achievement": achievement.to_dict()}), 201


@bp.route("/api/admin/achievements/<achievement_id>", methods=["PATCH"])
@login_required
@admin_required
def api_admin_update_achievement(achievement_id):
    require_uuid(achievement_id, "achievement id")
    fields = _achievement_fields(json_body(), partial=True)
    if not must_succeed(AchievementStoreDB.update, achievement_id, **fields):
        raise NotFoundError("Achievement not found")
    return jsonify({"achievement": AchievementStoreDB.get(achievement_id).to_dict()})


@bp.route("/api/admin/achievements/<achievement_id>", methods=["DELETE"])
@login_required
@admin_required
def api_admin_delete_achievement(achievement_id):
    require_uuid(achievement_id, "achievement id")
    if not must_succeed(AchievementStoreDB.delete, achievement_id):
        raise NotFoundError("Achievement not found")
    log_event("achievement_deleted", current_user.id, f"achievement={achievement_id}")
    return jsonify({"success": True})


# ── Plans ─────────────────────────────────────────────────

@bp.route("/api/admin/plans/<plan_id>", methods=["PATCH"])
@login_required
@admin_required
def api_admin_update_plan(plan_id):
    if plan_id not in PLAN_ORDER:
        raise NotFoundError("Plan not found")
    try:
        plan = PlanSettingsDB.update(plan_id, **json_body())
    except (TypeError, ValueError) as e:
        raise ValidationError(str(e)) from e
    log_event("plan_updated", current_user.id, f"plan={plan_id}")
    return jsonify({"plan": plan})


# ── Users ─────────────────────────────────────────────────

@bp.route("/api/admin/users")
@login_required
@admin_required
def api_admin_users():
    db = get_db()
    rows = db.execute(
        "SELECT u.id, u.name, u.email, u.role, u.plan_id, u.created_at, tm.team_id, "
        "tm.role AS team_role, COALESCE(us.total_xp, 0) AS total_xp "
        "FROM users u LEFT JOIN team_members tm ON tm.user_id = u.id "
        "LEFT JOIN user_stats us ON us.user_id = u.id ORDER BY u.id",
    ).fetchall()
    return jsonify({"users": [dict(r) for r in rows]})


@bp.route("/api/admin/users/<int:user_id>/role", methods=["POST"])
@login_required
@admin_required
def api_admin_set_role(user_id):
    role = json_body().get("role")
    if role not in ("admin", "user"):
        raise ValidationError("role must be 'admin' or 'user'")
    if user_id == current_user.id:
        raise ValidationError("You cannot change your own role")
    db = get_db()
    cur = db.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
    db.commit()
    if cur.rowcount == 0:
        raise NotFoundError("User not found")
    log_event("role_changed", current_user.id, f"user={user_id} role={role}")
    return jsonify({"success": True, "user_id": user_id, "role": role})


@bp.route("/api/admin/audit")
@login_required
@admin_required
def api_admin_audit():
    limit = min(max(request.args.get("limit", 50, type=int), 1), 500)
    return jsonify({"events": recent_events(request.args.get("user_id", type=int), limit)})
