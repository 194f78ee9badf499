"""
DB-backed stores for PBE Journey.

Each store wraps one table (or a tight group of tables) and commits after
every mutation. Multi-row operations that must be atomic live in
procedures.py instead.
"""

from __future__ import annotations

import json
import secrets
import uuid
from datetime import timedelta
from typing import Optional

from database import get_db
from models import (
    Achievement,
    Question,
    QuizResult,
    QuizSession,
    StudyAssignment,
    StudyItem,
    UserStats,
    utc_now,
)


def _now() -> str:
    return utc_now().isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


# ── Quiz sessions ───────────────────────────────────────────

class QuizSessionStoreDB:
    """Quiz sessions owned by one user."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def sessions(self) -> list[QuizSession]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM quiz_sessions WHERE user_id = ? ORDER BY created_at DESC",
            (self.user_id,),
        ).fetchall()
        return [QuizSession.from_row(r) for r in rows]

    @staticmethod
    def get(session_id: str) -> Optional[QuizSession]:
        db = get_db()
        row = db.execute("SELECT * FROM quiz_sessions WHERE id = ?", (session_id,)).fetchone()
        return QuizSession.from_row(row) if row else None

    def create(self, *, questions: list[dict], session_type: str = "custom",
               title: str = "", description: str = "", team_id: str | None = None,
               assignment_id: str | None = None, max_points: int = 0,
               estimated_minutes: int = 0, approval_status: str = "approved") -> QuizSession:
        now = _now()
        session = QuizSession(
            id=_new_id(),
            user_id=self.user_id,
            type=session_type,
            title=title,
            description=description,
            team_id=team_id,
            assignment_id=assignment_id,
            questions=questions,
            max_points=max_points,
            estimated_minutes=estimated_minutes,
            approval_status=approval_status,
            created_at=now,
            updated_at=now,
        )
        db = get_db()
        db.execute(
            "INSERT INTO quiz_sessions (id, user_id, team_id, assignment_id, type, title, "
            "description, questions, max_points, estimated_minutes, approval_status, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (session.id, self.user_id, team_id, assignment_id, session_type, title,
             description, json.dumps(questions), max_points, estimated_minutes,
             approval_status, now, now),
        )
        db.commit()
        return session

    @staticmethod
    def save_progress(session: QuizSession) -> int:
        """Persist index, results and the derived totals of an active session.

        Returns the number of rows written: 0 once the session is completed.
        """
        session.updated_at = _now()
        db = get_db()
        cur = db.execute(
            "UPDATE quiz_sessions SET current_question_index = ?, results = ?, "
            "total_points = ?, total_actual_time_spent_seconds = ?, updated_at = ? "
            "WHERE id = ? AND status = 'active'",
            (session.current_question_index,
             json.dumps([r.__dict__ for r in session.results]),
             session.total_points, session.total_actual_time_spent_seconds,
             session.updated_at, session.id),
        )
        db.commit()
        return cur.rowcount

    @staticmethod
    def mark_completed(session: QuizSession) -> int:
        """Complete an active session; 0 rows means it was already completed."""
        session.updated_at = _now()
        db = get_db()
        cur = db.execute(
            "UPDATE quiz_sessions SET status = 'completed', completed_at = ?, "
            "current_question_index = ?, results = ?, total_points = ?, "
            "total_actual_time_spent_seconds = ?, updated_at = ? WHERE id = ? AND status = 'active'",
            (session.completed_at, session.current_question_index,
             json.dumps([r.__dict__ for r in session.results]),
             session.total_points, session.total_actual_time_spent_seconds,
             session.updated_at, session.id),
        )
        db.commit()
        return cur.rowcount

    @staticmethod
    def set_bonus_xp(session_id: str, bonus_xp: int) -> None:
        db = get_db()
        db.execute("UPDATE quiz_sessions SET bonus_xp = ?, updated_at = ? WHERE id = ?",
                   (bonus_xp, _now(), session_id))
        db.commit()

    @staticmethod
    def set_approval_status(session_id: str, status: str) -> None:
        db = get_db()
        db.execute("UPDATE quiz_sessions SET approval_status = ?, updated_at = ? WHERE id = ?",
                   (status, _now(), session_id))
        db.commit()

    def log_answer(self, session_id: str, result: QuizResult) -> None:
        db = get_db()
        db.execute(
            "INSERT INTO quiz_question_logs (quiz_session_id, user_id, question_id, "
            "points_earned, total_points_possible, time_spent, is_correct, answered_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (session_id, self.user_id, result.question_id, result.points_earned,
             result.points_possible, result.time_spent, int(result.is_correct),
             result.answered_at or _now()),
        )
        db.commit()

    def completed(self) -> list[QuizSession]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM quiz_sessions WHERE user_id = ? AND status = 'completed' "
            "ORDER BY completed_at DESC",
            (self.user_id,),
        ).fetchall()
        return [QuizSession.from_row(r) for r in rows]

    def completed_count(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS n FROM quiz_sessions WHERE user_id = ? AND status = 'completed'",
            (self.user_id,),
        ).fetchone()
        return row["n"]


# ── Study assignments ───────────────────────────────────────

class StudyAssignmentStoreDB:
    """Team study schedule. Static: assignments are addressed by team, not owner."""

    @staticmethod
    def create(*, user_id: int, date: str, study_items: list[StudyItem],
               team_id: str | None = None, description: str = "",
               created_by: int | None = None) -> StudyAssignment:
        assignment = StudyAssignment(
            id=_new_id(), user_id=user_id, date=date, team_id=team_id,
            study_items=study_items, description=description,
            created_by=created_by, created_at=_now(),
        )
        db = get_db()
        db.execute(
            "INSERT INTO study_assignments (id, user_id, team_id, date, study_items, "
            "description, created_by, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (assignment.id, user_id, team_id, date,
             json.dumps([i.__dict__ for i in study_items]),
             description, created_by, assignment.created_at),
        )
        db.commit()
        return assignment

    @staticmethod
    def get(assignment_id: str) -> Optional[StudyAssignment]:
        db = get_db()
        row = db.execute("SELECT * FROM study_assignments WHERE id = ?", (assignment_id,)).fetchone()
        return StudyAssignment.from_row(row) if row else None

    @staticmethod
    def query(*, team_id: str | None = None, user_id: int | None = None,
             start_date: str | None = None, end_date: str | None = None) -> list[StudyAssignment]:
        clauses, params = [], []
        if team_id:
            clauses.append("team_id = ?")
            params.append(team_id)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if start_date:
            clauses.append("date >= ?")
            params.append(start_date)
        if end_date:
            clauses.append("date <= ?")
            params.append(end_date)
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        db = get_db()
        rows = db.execute(
            f"SELECT * FROM study_assignments{where} ORDER BY date DESC", params,
        ).fetchall()
        return [StudyAssignment.from_row(r) for r in rows]

    @staticmethod
    def upcoming(user_id: int, from_date: str, limit: int = 10) -> list[StudyAssignment]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM study_assignments WHERE user_id = ? AND completed = 0 AND date >= ? "
            "ORDER BY date ASC LIMIT ?",
            (user_id, from_date, limit),
        ).fetchall()
        return [StudyAssignment.from_row(r) for r in rows]

    @staticmethod
    def mark_completed(assignment_id: str, session_id: str, completed_at: str) -> None:
        db = get_db()
        db.execute(
            "UPDATE study_assignments SET completed = 1, completed_at = ?, quiz_session_id = ? "
            "WHERE id = ?",
            (completed_at, session_id, assignment_id),
        )
        db.commit()

    @staticmethod
    def delete(assignment_id: str) -> bool:
        db = get_db()
        cur = db.execute("DELETE FROM study_assignments WHERE id = ?", (assignment_id,))
        db.commit()
        return cur.rowcount > 0


# ── User stats ──────────────────────────────────────────────

class UserStatsDB:
    """The single derived stats row per user. Only written by recompute."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def get(self) -> UserStats:
        db = get_db()
        row = db.execute("SELECT * FROM user_stats WHERE user_id = ?", (self.user_id,)).fetchone()
        if not row:
            return UserStats(user_id=self.user_id)
        return UserStats(
            user_id=self.user_id,
            total_xp=row["total_xp"],
            current_level=row["current_level"],
            longest_streak=row["longest_streak"],
            last_quiz_date=row["last_quiz_date"],
        )


# ── Achievements ────────────────────────────────────────────

class AchievementStoreDB:
    """Achievement definitions plus per-user unlock records."""

    @staticmethod
    def all() -> list[Achievement]:
        db = get_db()
        rows = db.execute("SELECT * FROM achievements ORDER BY criteria_type, criteria_value").fetchall()
        return [Achievement.from_row(r) for r in rows]

    @staticmethod
    def get(achievement_id: str) -> Optional[Achievement]:
        db = get_db()
        row = db.execute("SELECT * FROM achievements WHERE id = ?", (achievement_id,)).fetchone()
        return Achievement.from_row(row) if row else None

    @staticmethod
    def create(name: str, criteria_type: str, criteria_value: int,
               description: str = "", icon: str = "trophy") -> Achievement:
        achievement = Achievement(id=_new_id(), name=name, criteria_type=criteria_type,
                                  criteria_value=criteria_value, description=description,
                                  icon=icon)
        db = get_db()
        db.execute(
            "INSERT INTO achievements (id, name, description, icon, criteria_type, "
            "criteria_value, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (achievement.id, name, description, icon, criteria_type, criteria_value, _now()),
        )
        db.commit()
        return achievement

    @staticmethod
    def update(achievement_id: str, **fields) -> bool:
        allowed = {"name", "description", "icon", "criteria_type", "criteria_value"}
        updates = {k: v for k, v in fields.items() if k in allowed and v is not None}
        if not updates:
            return False
        assignments = ", ".join(f"{k} = ?" for k in updates)
        db = get_db()
        cur = db.execute(f"UPDATE achievements SET {assignments} WHERE id = ?",
                         (*updates.values(), achievement_id))
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def delete(achievement_id: str) -> bool:
        db = get_db()
        cur = db.execute("DELETE FROM achievements WHERE id = ?", (achievement_id,))
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def unlocked_ids(user_id: int) -> set[str]:
        db = get_db()
        rows = db.execute("SELECT achievement_id FROM user_achievements WHERE user_id = ?",
                          (user_id,)).fetchall()
        return {r["achievement_id"] for r in rows}

    @staticmethod
    def unlock(user_id: int, achievement_id: str) -> bool:
        """Record an unlock; False when the pair already existed."""
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO user_achievements (user_id, achievement_id, unlocked_at) "
            "VALUES (?, ?, ?)",
            (user_id, achievement_id, _now()),
        )
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def for_user(user_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT a.*, ua.unlocked_at FROM achievements a "
            "LEFT JOIN user_achievements ua ON ua.achievement_id = a.id AND ua.user_id = ? "
            "ORDER BY a.criteria_type, a.criteria_value",
            (user_id,),
        ).fetchall()
        return [
            {**Achievement.from_row(r).to_dict(),
             "unlocked": r["unlocked_at"] is not None,
             "unlocked_at": r["unlocked_at"]}
            for r in rows
        ]


# ── Question bank ───────────────────────────────────────────

class QuestionBankDB:
    """Read-mostly question reference data."""

    @staticmethod
    def search(tiers: list[str] | None = None, book: str | None = None,
             chapter: int | None = None) -> list[Question]:
        clauses, params = [], []
        if tiers:
            clauses.append(f"tier IN ({', '.join('?' for _ in tiers)})")
            params.extend(tiers)
        if book:
            clauses.append("book_of_bible = ?")
            params.append(book)
        if chapter is not None:
            clauses.append("chapter = ?")
            params.append(chapter)
        where = " WHERE " + " AND ".join(clauses) if clauses else ""
        db = get_db()
        rows = db.execute(
            f"SELECT * FROM questions{where} ORDER BY book_of_bible, chapter, verse", params,
        ).fetchall()
        return [Question.from_row(r) for r in rows]

    @staticmethod
    def get(question_id: str) -> Optional[Question]:
        db = get_db()
        row = db.execute("SELECT * FROM questions WHERE id = ?", (question_id,)).fetchone()
        return Question.from_row(row) if row else None

    @staticmethod
    def create(*, book_of_bible: str, chapter: int, question: str, answer: str,
               verse: int | None = None, points: int = 1, time_to_answer: int = 30,
               tier: str = "free") -> Question:
        q = Question(id=_new_id(), book_of_bible=book_of_bible, chapter=chapter,
                     verse=verse, question=question, answer=answer, points=points,
                     time_to_answer=time_to_answer, tier=tier)
        db = get_db()
        db.execute(
            "INSERT INTO questions (id, book_of_bible, chapter, verse, question, answer, "
            "points, time_to_answer, tier, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (q.id, book_of_bible, chapter, verse, question, answer, points,
             time_to_answer, tier, _now()),
        )
        db.commit()
        return q

    @staticmethod
    def update(question_id: str, **fields) -> bool:
        allowed = {"book_of_bible", "chapter", "verse", "question", "answer",
                   "points", "time_to_answer", "tier"}
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            return False
        assignments = ", ".join(f"{k} = ?" for k in updates)
        db = get_db()
        cur = db.execute(f"UPDATE questions SET {assignments} WHERE id = ?",
                         (*updates.values(), question_id))
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def delete(question_id: str) -> bool:
        db = get_db()
        cur = db.execute("DELETE FROM questions WHERE id = ?", (question_id,))
        db.commit()
        return cur.rowcount > 0


# ── Teams ───────────────────────────────────────────────────

class TeamStoreDB:
    """Teams, memberships and invitations."""

    @staticmethod
    def create(name: str, owner_id: int) -> dict:
        team_id = _new_id()
        now = _now()
        db = get_db()
        db.execute("INSERT INTO teams (id, name, owner_id, created_at) VALUES (?, ?, ?, ?)",
                   (team_id, name, owner_id, now))
        db.execute(
            "INSERT INTO team_members (team_id, user_id, role, status, joined_at) "
            "VALUES (?, ?, 'owner', 'active', ?)",
            (team_id, owner_id, now),
        )
        db.commit()
        return {"id": team_id, "name": name, "owner_id": owner_id, "created_at": now}

    @staticmethod
    def get(team_id: str) -> Optional[dict]:
        db = get_db()
        row = db.execute("SELECT * FROM teams WHERE id = ?", (team_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def membership(user_id: int) -> Optional[dict]:
        db = get_db()
        row = db.execute(
            "SELECT team_id, role, status, joined_at FROM team_members WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def active_member_count(team_id: str) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS n FROM team_members WHERE team_id = ? AND status != 'suspended'",
            (team_id,),
        ).fetchone()
        return row["n"]

    @staticmethod
    def add_member(team_id: str, user_id: int, role: str = "member") -> None:
        db = get_db()
        db.execute(
            "INSERT INTO team_members (team_id, user_id, role, status, joined_at) "
            "VALUES (?, ?, ?, 'active', ?)",
            (team_id, user_id, role, _now()),
        )
        db.commit()

    @staticmethod
    def update_member(team_id: str, user_id: int, *, role: str | None = None,
                      status: str | None = None) -> bool:
        updates = {k: v for k, v in (("role", role), ("status", status)) if v}
        if not updates:
            return False
        assignments = ", ".join(f"{k} = ?" for k in updates)
        db = get_db()
        cur = db.execute(
            f"UPDATE team_members SET {assignments} WHERE team_id = ? AND user_id = ?",
            (*updates.values(), team_id, user_id),
        )
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def remove_member(team_id: str, user_id: int) -> bool:
        db = get_db()
        cur = db.execute("DELETE FROM team_members WHERE team_id = ? AND user_id = ?",
                         (team_id, user_id))
        db.commit()
        return cur.rowcount > 0

    @staticmethod
    def create_invitation(team_id: str, email: str, role: str, invited_by: int,
                          expiry_days: int = 7) -> dict:
        token = secrets.token_urlsafe(32)
        now = utc_now()
        invitation = {
            "team_id": team_id,
            "email": email,
            "role": role,
            "token": token,
            "invited_by": invited_by,
            "expires_at": (now + timedelta(days=expiry_days)).isoformat(),
            "created_at": now.isoformat(),
        }
        db = get_db()
        cur = db.execute(
            "INSERT INTO team_invitations (team_id, email, role, token, invited_by, "
            "expires_at, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (team_id, email, role, token, invited_by, invitation["expires_at"],
             invitation["created_at"]),
        )
        db.commit()
        invitation["id"] = cur.lastrowid
        return invitation

    @staticmethod
    def get_invitation(token: str) -> Optional[dict]:
        db = get_db()
        row = db.execute("SELECT * FROM team_invitations WHERE token = ?", (token,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def pending_invitations(team_id: str) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT id, email, role, expires_at, created_at FROM team_invitations "
            "WHERE team_id = ? AND accepted_at = '' AND expires_at > ? ORDER BY created_at DESC",
            (team_id, _now()),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def mark_invitation_accepted(invitation_id: int) -> None:
        db = get_db()
        db.execute("UPDATE team_invitations SET accepted_at = ? WHERE id = ?",
                   (_now(), invitation_id))
        db.commit()
