"""XP, level, streak and achievement routes."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_required

from db_stores import AchievementStoreDB, QuizSessionStoreDB, UserStatsDB
from gamification import calculate_current_streak, xp_progress
from helpers import current_user_id
from procedures import recompute_user_stats
from quiz_sessions import evaluate_achievements
from resilience import must_succeed

bp = Blueprint("gamification", __name__)


@bp.route("/api/gamification")
@login_required
def api_gamification():
    uid = current_user_id()
    stats = must_succeed(UserStatsDB(uid).get)
    completions = [s.completed_at for s in QuizSessionStoreDB(uid).completed() if s.completed_at]
    current_streak = calculate_current_streak(completions)
    return jsonify({
        "total_xp": stats.total_xp,
        "level": stats.current_level,
        "current_streak": current_streak,
        "longest_streak": stats.longest_streak,
        "last_quiz_date": stats.last_quiz_date,
        **xp_progress(stats.total_xp),
    })


@bp.route("/api/achievements")
@login_required
def api_achievements():
    achievements = must_succeed(AchievementStoreDB.for_user, current_user_id())
    return jsonify({
        "achievements": achievements,
        "unlocked_count": sum(1 for a in achievements if a["unlocked"]),
    })


@bp.route("/api/gamification/recompute", methods=["POST"])
@login_required
def api_gamification_recompute():
    """Rebuild stats from history and unlock anything now earned."""
    uid = current_user_id()
    stats = must_succeed(recompute_user_stats, uid)
    unlocked = must_succeed(evaluate_achievements, uid, stats)
    return jsonify({
        "stats": stats.to_dict(),
        "unlocked_achievements": [a.to_dict() for a in unlocked],
    })
