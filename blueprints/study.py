"""Question and quiz session routes."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from audit import log_event
from db_stores import StudyAssignmentStoreDB
from helpers import current_user_id, is_super_admin, json_body
from question_bank import (
    QUICK_START_QUESTION_COUNT,
    build_custom_quiz,
    build_quick_start_quiz,
    estimate_minutes,
    format_study_items,
    question_payload,
)
from quiz_sessions import get_app_state, update_quiz_approval_status
from resilience import AuthorizationError, NotFoundError, ValidationError, require_uuid
from subscription_store import SubscriptionStoreDB, requires_feature

logger = logging.getLogger(__name__)

bp = Blueprint("study", __name__)


# ── Questions ─────────────────────────────────────────────

@bp.route("/api/questions")
@login_required
def api_questions():
    state = get_app_state()
    book = request.args.get("book", "").strip()
    chapter = request.args.get("chapter", type=int)
    questions = [
        q for q in state.questions.questions
        if (not book or q.book_of_bible == book) and (chapter is None or q.chapter == chapter)
    ]
    return jsonify({
        "questions": [q.to_dict() for q in questions],
        "tier_access": state.questions.tier_access,
    })


# ── Quiz sessions ─────────────────────────────────────────

@bp.route("/api/quizzes")
@login_required
def api_quizzes():
    state = get_app_state()
    status = request.args.get("status", "")
    if status == "active":
        sessions = state.sessions.active_sessions()
    elif status == "completed":
        sessions = state.sessions.completed_sessions()
    else:
        sessions = state.sessions.sessions
    return jsonify({"sessions": [s.to_dict() for s in sessions]})


@bp.route("/api/quizzes/quick-start", methods=["POST"])
@login_required
@requires_feature("allow_quick_start_quiz")
def api_quick_start():
    data = json_body()
    try:
        count = int(data.get("count", QUICK_START_QUESTION_COUNT))
    except (TypeError, ValueError):
        raise ValidationError("count must be an integer") from None
    if count < 1:
        raise ValidationError("count must be at least 1")

    state = get_app_state()
    picked = build_quick_start_quiz(state.questions.questions, count)
    session = state.sessions.create(
        questions=[question_payload(q) for q in picked],
        session_type="quick-start",
        title=data.get("title") or "Quick Start Quiz",
        estimated_minutes=estimate_minutes(picked),
    )
    return jsonify({"session": session.to_dict()}), 201


@bp.route("/api/quizzes/custom", methods=["POST"])
@login_required
@requires_feature("allow_create_own_quiz")
def api_custom_quiz():
    data = json_body()
    question_ids = data.get("question_ids") or []
    if not isinstance(question_ids, list):
        raise ValidationError("question_ids must be a list")

    state = get_app_state()
    max_questions = SubscriptionStoreDB(current_user_id()).current_plan()["max_questions_custom_quiz"]
    picked = build_custom_quiz(state.questions.questions, [str(q) for q in question_ids], max_questions)
    session = state.sessions.create(
        questions=[question_payload(q) for q in picked],
        session_type="custom",
        title=data.get("title") or "Custom Quiz",
        description=data.get("description", ""),
        estimated_minutes=estimate_minutes(picked),
    )
    return jsonify({"session": session.to_dict()}), 201


@bp.route("/api/quizzes/assignment/<assignment_id>", methods=["POST"])
@login_required
@requires_feature("allow_study_schedule_quiz")
def api_assignment_quiz(assignment_id):
    """Start (or resume) the quiz for one of the caller's study assignments."""
    require_uuid(assignment_id, "assignment id")
    state = get_app_state()
    existing = state.sessions.session_for_assignment(assignment_id)
    if existing and not existing.is_completed:
        return jsonify({"session": existing.to_dict(), "resumed": True})

    assignment = StudyAssignmentStoreDB.get(assignment_id)
    if not assignment:
        raise NotFoundError("Study assignment not found")
    if assignment.user_id != current_user_id():
        raise AuthorizationError("This assignment belongs to another user")
    if assignment.completed:
        raise ValidationError("This assignment is already completed")

    picked = state.questions.for_study_items(assignment.study_items)
    if not picked:
        raise ValidationError("No questions available for this assignment's study items")
    session = state.sessions.create(
        questions=[question_payload(q) for q in picked],
        session_type="study-assignment",
        title=f"Study: {format_study_items(assignment.study_items)}",
        description=assignment.description,
        assignment_id=assignment_id,
        estimated_minutes=estimate_minutes(picked),
    )
    return jsonify({"session": session.to_dict(), "resumed": False}), 201


@bp.route("/api/quizzes/<session_id>")
@login_required
def api_quiz(session_id):
    session = get_app_state().sessions.get(session_id)
    return jsonify({"session": session.to_dict()})


@bp.route("/api/quizzes/<session_id>/answers", methods=["POST"])
@login_required
def api_quiz_answer(session_id):
    session = get_app_state().sessions.record_answer(session_id, json_body())
    return jsonify({"session": session.to_dict()})


@bp.route("/api/quizzes/<session_id>/complete", methods=["POST"])
@login_required
def api_quiz_complete(session_id):
    data = json_body()
    results = data.get("results")
    if results is not None and not isinstance(results, list):
        raise ValidationError("results must be a list")
    try:
        outcome = get_app_state().sessions.complete(
            session_id, completed_at=data.get("completed_at"), final_results=results,
        )
    except ValueError as e:
        if isinstance(e, ValidationError):
            raise
        raise ValidationError("completed_at must be an ISO timestamp") from e
    return jsonify(outcome.to_dict())


@bp.route("/api/quizzes/<session_id>", methods=["DELETE"])
@login_required
def api_quiz_delete(session_id):
    result = get_app_state().sessions.delete(session_id, actor_id=current_user_id())
    log_event("quiz_deleted", current_user_id(), f"session={session_id}")
    return jsonify(result)


@bp.route("/api/quizzes/<session_id>/approval", methods=["POST"])
@login_required
def api_quiz_approval(session_id):
    data = json_body()
    session = update_quiz_approval_status(
        session_id, str(data.get("status", "")), current_user.id,
        actor_is_admin=is_super_admin(),
    )
    return jsonify({"session": session.to_dict()})
