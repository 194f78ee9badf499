"""Named multi-row procedures.

Each procedure runs its reads and writes on one connection inside a single
transaction (``with db:`` commits on success, rolls back on error), so callers
can treat it as one atomic call returning data or raising.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime, timedelta
from typing import Optional

from database import get_db
from gamification import calculate_current_streak, calculate_level, calculate_streaks, criteria_met
from models import UserStats, parse_timestamp, utc_date, utc_now
from resilience import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)


def _is_super_admin(db: sqlite3.Connection, user_id: int) -> bool:
    row = db.execute("SELECT role FROM users WHERE id = ?", (user_id,)).fetchone()
    return bool(row) and row["role"] == "admin"


def _team_role(db: sqlite3.Connection, team_id: Optional[str], user_id: int) -> Optional[str]:
    if not team_id:
        return None
    row = db.execute(
        "SELECT role FROM team_members WHERE team_id = ? AND user_id = ? AND status = 'active'",
        (team_id, user_id),
    ).fetchone()
    return row["role"] if row else None


def _completed_rows(db: sqlite3.Connection, user_id: int) -> list[sqlite3.Row]:
    return db.execute(
        "SELECT total_points, bonus_xp, completed_at FROM quiz_sessions "
        "WHERE user_id = ? AND status = 'completed'",
        (user_id,),
    ).fetchall()


def _recompute(db: sqlite3.Connection, user_id: int, today: Optional[date] = None) -> tuple[UserStats, int]:
    """Derive and upsert the stats row without committing. Returns (stats, quiz count)."""
    rows = _completed_rows(db, user_id)
    total_xp = sum(r["total_points"] + (r["bonus_xp"] or 0) for r in rows)
    timestamps = [r["completed_at"] for r in rows if r["completed_at"]]
    current, longest = calculate_streaks(timestamps, today=today)
    dates = [utc_date(ts) for ts in timestamps]
    last_quiz = max(dates) if dates else (today or utc_now().date())

    stats = UserStats(
        user_id=user_id,
        total_xp=total_xp,
        current_level=calculate_level(total_xp),
        longest_streak=longest,
        current_streak=current,
        last_quiz_date=last_quiz.isoformat(),
    )
    db.execute(
        "INSERT INTO user_stats (user_id, total_xp, current_level, longest_streak, "
        "last_quiz_date, updated_at) VALUES (?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(user_id) DO UPDATE SET total_xp = excluded.total_xp, "
        "current_level = excluded.current_level, longest_streak = excluded.longest_streak, "
        "last_quiz_date = excluded.last_quiz_date, updated_at = excluded.updated_at",
        (user_id, stats.total_xp, stats.current_level, stats.longest_streak,
         stats.last_quiz_date, utc_now().isoformat()),
    )
    return stats, len(rows)


def recompute_user_stats(user_id: int, today: Optional[date] = None) -> UserStats:
    """Rebuild a user's stats row from every completed session they own."""
    db = get_db()
    with db:
        stats, _ = _recompute(db, user_id, today)
    logger.info("Recomputed stats: user=%s xp=%s level=%s longest_streak=%s",
                user_id, stats.total_xp, stats.current_level, stats.longest_streak)
    return stats


def delete_quiz_and_adjust_gamification(session_id: str, actor_id: int) -> dict:
    """Delete a session with its question logs and re-derive the owner's stats.

    An active session may be deleted by its owner or an owner of its team.
    A completed session may only be deleted by an owner of its team. Super
    admins may delete either. Deleting a completed session also revokes
    achievements whose criteria the remaining history no longer meets.
    """
    db = get_db()
    session = db.execute(
        "SELECT id, user_id, team_id, status FROM quiz_sessions WHERE id = ?", (session_id,),
    ).fetchone()
    if not session:
        raise NotFoundError("Quiz session not found")

    is_team_owner = _team_role(db, session["team_id"], actor_id) == "owner"
    if session["status"] == "completed":
        allowed = is_team_owner or _is_super_admin(db, actor_id)
        if not allowed:
            raise AuthorizationError("Only team owners can delete completed quiz sessions")
    else:
        allowed = session["user_id"] == actor_id or is_team_owner or _is_super_admin(db, actor_id)
        if not allowed:
            raise AuthorizationError("Not authorized to delete this quiz session")

    owner_id = session["user_id"]
    with db:
        db.execute("DELETE FROM quiz_question_logs WHERE quiz_session_id = ?", (session_id,))
        db.execute("UPDATE study_assignments SET completed = 0, completed_at = '', quiz_session_id = '' "
                   "WHERE quiz_session_id = ?", (session_id,))
        db.execute("DELETE FROM quiz_sessions WHERE id = ?", (session_id,))

        if session["status"] != "completed":
            logger.info("Deleted active session %s (user=%s)", session_id, owner_id)
            return {"success": True, "adjusted": False, "revoked_achievements": []}

        stats, quiz_count = _recompute(db, owner_id)
        revoked = []
        for ach in db.execute(
            "SELECT a.id, a.criteria_type, a.criteria_value FROM achievements a "
            "JOIN user_achievements ua ON ua.achievement_id = a.id WHERE ua.user_id = ?",
            (owner_id,),
        ).fetchall():
            met = criteria_met(ach["criteria_type"], ach["criteria_value"],
                               total_quizzes=quiz_count, total_xp=stats.total_xp,
                               longest_streak=stats.longest_streak)
            if met is False:
                revoked.append(ach["id"])
        if revoked:
            db.execute(
                f"DELETE FROM user_achievements WHERE user_id = ? AND achievement_id IN "
                f"({', '.join('?' for _ in revoked)})",
                (owner_id, *revoked),
            )

    logger.info("Deleted completed session %s (user=%s), xp now %s, revoked %d achievement(s)",
                session_id, owner_id, stats.total_xp, len(revoked))
    return {"success": True, "adjusted": True, "total_xp": stats.total_xp,
            "revoked_achievements": revoked}


def _time_minutes(rows) -> int:
    seconds = sum(r["total_actual_time_spent_seconds"] or 0 for r in rows)
    if seconds > 0:
        return round(seconds / 60)
    return sum(r["estimated_minutes"] or 0 for r in rows)


def _question_count(rows) -> int:
    return sum(len(json.loads(r["results"] or "[]")) for r in rows)


def get_user_analytics_data(user_id: int, start: Optional[datetime] = None,
                            end: Optional[datetime] = None, default_days: int = 30) -> dict:
    """Summary figures for one user over a window (default: the last 30 days)."""
    date_only_end = isinstance(end, str) and len(end) == 10
    end = parse_timestamp(end) or utc_now()
    start = parse_timestamp(start) or end - timedelta(days=default_days)
    # A bare end date covers that whole day.
    upper = end + timedelta(days=1) if date_only_end else end
    db = get_db()
    rows = db.execute(
        "SELECT total_points, max_points, results, estimated_minutes, "
        "total_actual_time_spent_seconds, completed_at FROM quiz_sessions "
        f"WHERE user_id = ? AND status = 'completed' AND completed_at >= ? "
        f"AND completed_at {'<' if date_only_end else '<='} ?",
        (user_id, start.isoformat(), upper.isoformat()),
    ).fetchall()

    earned = sum(r["total_points"] for r in rows)
    possible = sum(r["max_points"] for r in rows)
    all_completions = [r["completed_at"] for r in _completed_rows(db, user_id) if r["completed_at"]]
    current_streak = calculate_current_streak(all_completions)
    return {
        "total_quizzes_completed": len(rows),
        "total_questions_answered": _question_count(rows),
        "average_score": round(earned / possible * 100, 2) if possible else 0,
        "total_time_spent_minutes": _time_minutes(rows),
        "study_streak": current_streak,
        "total_points_earned": earned,
        "total_possible_points": possible,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
    }


def get_team_members_for_user(user_id: int) -> list[dict]:
    """Members of the caller's team with their stats, or [] when teamless."""
    db = get_db()
    membership = db.execute(
        "SELECT team_id FROM team_members WHERE user_id = ? AND status = 'active'", (user_id,),
    ).fetchone()
    if not membership:
        return []
    rows = db.execute(
        "SELECT tm.user_id, tm.role, tm.status, tm.joined_at, u.name, u.email, "
        "COALESCE(us.total_xp, 0) AS total_xp, COALESCE(us.current_level, 1) AS current_level, "
        "COALESCE(us.longest_streak, 0) AS longest_streak "
        "FROM team_members tm JOIN users u ON u.id = tm.user_id "
        "LEFT JOIN user_stats us ON us.user_id = tm.user_id "
        "WHERE tm.team_id = ? ORDER BY tm.role = 'owner' DESC, u.name",
        (membership["team_id"],),
    ).fetchall()
    return [dict(r) for r in rows]


def get_team_leaderboard_data(team_id: str, actor_id: int, start: Optional[datetime] = None,
                              end: Optional[datetime] = None) -> list[dict]:
    """Per-member totals for a team, highest points first. Members and admins only."""
    db = get_db()
    if _team_role(db, team_id, actor_id) is None and not _is_super_admin(db, actor_id):
        raise AuthorizationError("Not a member of this team")

    clauses = ["user_id = ?", "status = 'completed'"]
    window: list[str] = []
    if start:
        clauses.append("completed_at >= ?")
        window.append(parse_timestamp(start).isoformat())
    if end:
        clauses.append("completed_at < ?")
        window.append((parse_timestamp(end) + timedelta(days=1)).isoformat())

    members = db.execute(
        "SELECT tm.user_id, tm.role, u.name FROM team_members tm "
        "JOIN users u ON u.id = tm.user_id WHERE tm.team_id = ? AND tm.status = 'active'",
        (team_id,),
    ).fetchall()

    board = []
    for m in members:
        rows = db.execute(
            "SELECT total_points, max_points, bonus_xp, results, estimated_minutes, "
            f"total_actual_time_spent_seconds, completed_at FROM quiz_sessions WHERE {' AND '.join(clauses)}",
            (m["user_id"], *window),
        ).fetchall()
        earned = sum(r["total_points"] for r in rows)
        possible = sum(r["max_points"] for r in rows)
        all_completions = [r["completed_at"] for r in _completed_rows(db, m["user_id"]) if r["completed_at"]]
        board.append({
            "user_id": m["user_id"],
            "user_name": m["name"],
            "role": m["role"],
            "total_quizzes_completed": len(rows),
            "total_questions_answered": _question_count(rows),
            "average_score": round(earned / possible * 100, 2) if possible else 0,
            "total_time_spent_minutes": _time_minutes(rows),
            "study_streak": calculate_current_streak(all_completions),
            "total_points_earned": earned + sum(r["bonus_xp"] or 0 for r in rows),
            "total_possible_points": possible,
        })
    board.sort(key=lambda r: (-r["total_points_earned"], r["user_name"]))
    return board
