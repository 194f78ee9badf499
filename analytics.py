"""Read-only analytics over completed quiz sessions and question logs.

Every report follows the same fold: fetch completed sessions for a scope
(one user or one team) within an optional date range, fetch their question
logs, group by a dimension and compute accuracy, average time and points
efficiency per group. Weakest groups come first.
"""

from __future__ import annotations

import calendar
import json
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from database import get_db
from models import parse_timestamp, utc_date, utc_now

KNOWLEDGE_GAP_MIN_ATTEMPTS = 3
KNOWLEDGE_GAP_ACCURACY = 90.0
TREND_STABLE_PCT = 5.0


@dataclass
class Scope:
    """Which sessions a report covers. At least one of user_id/team_id is set."""
    user_id: Optional[int] = None
    team_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self):
        if self.user_id is None and not self.team_id:
            raise ValueError("Scope needs a user_id or team_id")
        self.start = _day_start(self.start)
        self.end = _day_start(self.end)

    def session_filter(self, prefix: str = "") -> tuple[str, list]:
        clauses = [f"{prefix}status = 'completed'"]
        params: list = []
        if self.user_id is not None:
            clauses.append(f"{prefix}user_id = ?")
            params.append(self.user_id)
        if self.team_id:
            clauses.append(f"{prefix}team_id = ?")
            params.append(self.team_id)
        if self.start:
            clauses.append(f"{prefix}completed_at >= ?")
            params.append(self.start.isoformat())
        if self.end:
            # End date is inclusive: everything before the following midnight.
            clauses.append(f"{prefix}completed_at < ?")
            params.append((self.end + timedelta(days=1)).isoformat())
        return " AND ".join(clauses), params


def _day_start(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str) and len(value) == 10:
        return datetime.combine(date.fromisoformat(value), time.min, tzinfo=timezone.utc)
    return parse_timestamp(value)


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def calculate_average_score(points_earned: float, points_possible: float) -> float:
    return points_earned / points_possible * 100 if points_possible > 0 else 0.0


def calculate_trend(current: float, previous: float) -> str:
    """'up', 'down' or 'stable' (within 5% of the previous value)."""
    if previous == 0:
        return "up" if current > 0 else "stable"
    change = (current - previous) / abs(previous) * 100
    if abs(change) <= TREND_STABLE_PCT:
        return "stable"
    return "up" if change > 0 else "down"


def fetch_completed_sessions(scope: Scope) -> list[dict]:
    where, params = scope.session_filter()
    db = get_db()
    rows = db.execute(
        "SELECT id, user_id, team_id, assignment_id, type, title, total_points, max_points, "
        "bonus_xp, results, estimated_minutes, total_actual_time_spent_seconds, approval_status, "
        f"completed_at FROM quiz_sessions WHERE {where} ORDER BY completed_at DESC",
        params,
    ).fetchall()
    return [dict(r) for r in rows]


def fetch_question_logs(scope: Scope) -> list[dict]:
    """Question logs of the scope's completed sessions joined to their questions."""
    where, params = scope.session_filter("qs.")
    db = get_db()
    rows = db.execute(
        "SELECT l.quiz_session_id, l.user_id, l.question_id, l.points_earned, "
        "l.total_points_possible, l.time_spent, l.is_correct, l.answered_at, "
        "q.book_of_bible, q.chapter, q.verse, q.tier, q.question, q.answer "
        "FROM quiz_question_logs l JOIN quiz_sessions qs ON qs.id = l.quiz_session_id "
        f"LEFT JOIN questions q ON q.id = l.question_id WHERE {where}",
        params,
    ).fetchall()
    return [dict(r) for r in rows]


def _fold(logs: list[dict]) -> dict:
    total = len(logs)
    correct = sum(1 for r in logs if r["is_correct"])
    earned = sum(r["points_earned"] for r in logs)
    possible = sum(r["total_points_possible"] for r in logs)
    time_spent = sum(r["time_spent"] for r in logs)
    return {
        "total_attempts": total,
        "correct_attempts": correct,
        "accuracy": _pct(correct, total),
        "average_time": round(time_spent / total, 1) if total else 0.0,
        "points_earned": earned,
        "points_possible": possible,
        "points_efficiency": _pct(earned, possible),
    }


def book_chapter_performance(scope: Scope) -> list[dict]:
    groups: dict[tuple, list[dict]] = defaultdict(list)
    for log in fetch_question_logs(scope):
        if log["book_of_bible"] is None:
            continue
        groups[(log["book_of_bible"], log["chapter"])].append(log)
    report = [{"book": book, "chapter": chapter, **_fold(logs)}
              for (book, chapter), logs in groups.items()]
    report.sort(key=lambda r: (r["accuracy"], r["book"], r["chapter"]))
    return report


def question_performance(scope: Scope) -> list[dict]:
    groups: dict[str, list[dict]] = defaultdict(list)
    for log in fetch_question_logs(scope):
        groups[log["question_id"]].append(log)
    report = []
    for question_id, logs in groups.items():
        first = logs[0]
        report.append({
            "question_id": question_id,
            "question": first["question"],
            "answer": first["answer"],
            "book": first["book_of_bible"],
            "chapter": first["chapter"],
            "verse": first["verse"],
            "tier": first["tier"],
            **_fold(logs),
        })
    report.sort(key=lambda r: (r["accuracy"], -r["total_attempts"]))
    return report


def knowledge_gaps(scope: Scope, min_attempts: int = KNOWLEDGE_GAP_MIN_ATTEMPTS,
                   threshold: float = KNOWLEDGE_GAP_ACCURACY) -> list[dict]:
    """Book/chapter/tier groups with enough attempts and accuracy below threshold."""
    groups: dict[tuple, list[dict]] = defaultdict(list)
    for log in fetch_question_logs(scope):
        if log["book_of_bible"] is None:
            continue
        groups[(log["book_of_bible"], log["chapter"], log["tier"])].append(log)
    gaps = []
    for (book, chapter, tier), logs in groups.items():
        folded = _fold(logs)
        if folded["total_attempts"] >= min_attempts and folded["accuracy"] < threshold:
            gaps.append({"book": book, "chapter": chapter, "tier": tier, **folded})
    gaps.sort(key=lambda r: (r["accuracy"], r["book"], r["chapter"]))
    return gaps


def engagement(scope: Scope) -> list[dict]:
    """One row per active UTC day, oldest first."""
    days: dict[date, dict] = {}
    for s in fetch_completed_sessions(scope):
        day = utc_date(s["completed_at"])
        row = days.setdefault(day, {"quizzes": 0, "questions": 0, "seconds": 0})
        row["quizzes"] += 1
        row["questions"] += len(json.loads(s["results"] or "[]"))
        row["seconds"] += s["total_actual_time_spent_seconds"] or 0
    report = []
    for day in sorted(days):
        row = days[day]
        minutes = round(row["seconds"] / 60, 1)
        report.append({
            "date": day.isoformat(),
            "quizzes_completed": row["quizzes"],
            "questions_answered": row["questions"],
            "time_spent_minutes": minutes,
            "average_session_minutes": round(minutes / row["quizzes"], 1) if row["quizzes"] else 0,
        })
    return report


def quiz_history(scope: Scope, limit: int = 50, offset: int = 0) -> list[dict]:
    sessions = fetch_completed_sessions(scope)[offset: offset + limit]
    return [
        {
            "id": s["id"],
            "user_id": s["user_id"],
            "title": s["title"],
            "type": s["type"],
            "total_points": s["total_points"],
            "max_points": s["max_points"],
            "bonus_xp": s["bonus_xp"],
            "percentage": _pct(s["total_points"], s["max_points"]),
            "questions_answered": len(json.loads(s["results"] or "[]")),
            "time_spent_minutes": round((s["total_actual_time_spent_seconds"] or 0) / 60, 1),
            "approval_status": s["approval_status"],
            "completed_at": s["completed_at"],
        }
        for s in sessions
    ]


def study_schedule_analysis(team_id: str, user_id: Optional[int] = None,
                            start: Optional[str] = None, end: Optional[str] = None) -> list[dict]:
    """Assignments (newest first) with the latest completed session's results."""
    clauses, params = ["a.team_id = ?"], [team_id]
    if user_id is not None:
        clauses.append("a.user_id = ?")
        params.append(user_id)
    if start:
        clauses.append("a.date >= ?")
        params.append(str(start)[:10])
    if end:
        clauses.append("a.date <= ?")
        params.append(str(end)[:10])
    db = get_db()
    rows = db.execute(
        "SELECT a.*, u.name AS user_name FROM study_assignments a "
        f"JOIN users u ON u.id = a.user_id WHERE {' AND '.join(clauses)} ORDER BY a.date DESC",
        params,
    ).fetchall()

    report = []
    for a in rows:
        entry = {
            "id": a["id"],
            "user_id": a["user_id"],
            "user_name": a["user_name"],
            "date": a["date"],
            "description": a["description"],
            "study_items": json.loads(a["study_items"] or "[]"),
            "completed": bool(a["completed"]),
            "completed_at": a["completed_at"],
            "quiz_session_id": None,
            "total_points_earned": None,
            "max_points_possible": None,
            "total_questions_answered": None,
            "total_time_spent_minutes": None,
        }
        if a["completed"]:
            s = db.execute(
                "SELECT id, total_points, max_points, questions, total_actual_time_spent_seconds "
                "FROM quiz_sessions WHERE assignment_id = ? AND status = 'completed' "
                "ORDER BY completed_at DESC LIMIT 1",
                (a["id"],),
            ).fetchone()
            if s:
                entry.update({
                    "quiz_session_id": s["id"],
                    "total_points_earned": s["total_points"],
                    "max_points_possible": s["max_points"],
                    "total_questions_answered": len(json.loads(s["questions"] or "[]")),
                    "total_time_spent_minutes": round((s["total_actual_time_spent_seconds"] or 0) / 60),
                })
        report.append(entry)
    return report


def calculate_date_periods(timeframe: str, start: Optional[date] = None,
                           end: Optional[date] = None, default_periods: int = 12) -> list[dict]:
    """Week (Sunday-start) or calendar-month buckets ending at ``end``.

    Without an explicit range the last ``default_periods`` buckets are
    returned; with one, enough buckets to cover it (1..24).
    """
    if timeframe not in ("weekly", "monthly"):
        raise ValueError("timeframe must be 'weekly' or 'monthly'")
    end = utc_date(end) or utc_now().date()
    start = utc_date(start)

    count = default_periods
    if start:
        span = (end - start).days
        count = -(-span // (7 if timeframe == "weekly" else 30))
        count = min(max(count, 1), 24)

    periods = []
    for i in range(count - 1, -1, -1):
        if timeframe == "weekly":
            # Python weekday(): Monday=0; shift so weeks start on Sunday.
            week_start = end - timedelta(days=(end.weekday() + 1) % 7 + 7 * i)
            p_start, p_end = week_start, week_start + timedelta(days=6)
            label = f"Week of {p_start.strftime('%b')} {p_start.day}"
        else:
            year, month = end.year, end.month - i
            while month <= 0:
                month += 12
                year -= 1
            p_start = date(year, month, 1)
            p_end = date(year, month, calendar.monthrange(year, month)[1])
            label = p_start.strftime("%b %Y")
        if start and p_end < start:
            continue
        periods.append({"start": p_start, "end": p_end, "label": label})
    return periods


def team_performance_trends(team_id: str, timeframe: str = "weekly",
                            start: Optional[date] = None, end: Optional[date] = None) -> list[dict]:
    trends = []
    previous_score: Optional[float] = None
    for period in calculate_date_periods(timeframe, start, end):
        scope = Scope(team_id=team_id, start=period["start"], end=period["end"])
        sessions = fetch_completed_sessions(scope)
        earned = sum(s["total_points"] for s in sessions)
        possible = sum(s["max_points"] for s in sessions)
        seconds = sum(s["total_actual_time_spent_seconds"] or 0 for s in sessions)
        score = round(calculate_average_score(earned, possible), 1)
        trends.append({
            "period": period["label"],
            "start_date": period["start"].isoformat(),
            "end_date": period["end"].isoformat(),
            "total_quizzes_completed": len(sessions),
            "total_questions_answered": sum(len(json.loads(s["results"] or "[]")) for s in sessions),
            "total_points_earned": earned,
            "total_possible_points": possible,
            "average_score": score,
            "total_time_spent_minutes": round(seconds / 60),
            "active_days": len({utc_date(s["completed_at"]) for s in sessions}),
            "active_members": len({s["user_id"] for s in sessions}),
            "trend": calculate_trend(score, previous_score) if previous_score is not None else "stable",
        })
        previous_score = score
    return trends
