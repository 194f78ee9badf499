"""Tests for procedures.py — stats recompute, deletion, leaderboard and summaries."""

from __future__ import annotations

import json
import uuid
from datetime import date

import pytest

from conftest import Q_DANIEL_1_1, Q_DANIEL_2_1, TEAM_ID


def insert_session(db, user_id, completed_at, points=40, max_points=50, bonus=0,
                   status="completed", seconds=120, team_id=TEAM_ID, results=None):
    session_id = str(uuid.uuid4())
    if results is None:
        results = [{"question_id": Q_DANIEL_1_1, "points_earned": points, "points_possible": max_points,
                    "time_spent": seconds, "is_correct": points > 0, "answered_at": completed_at}]
    db.execute(
        "INSERT INTO quiz_sessions (id, user_id, team_id, type, questions, results, status, "
        "total_points, max_points, total_actual_time_spent_seconds, bonus_xp, completed_at, "
        "created_at, updated_at) VALUES (?, ?, ?, 'custom', '[]', ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (session_id, user_id, team_id, json.dumps(results), status, points, max_points,
         seconds, bonus, completed_at if status == "completed" else None,
         completed_at or "2024-01-01", completed_at or "2024-01-01"),
    )
    db.commit()
    return session_id


class TestRecomputeUserStats:
    def test_sums_points_and_bonus(self, db):
        from procedures import recompute_user_stats

        insert_session(db, 1, "2024-03-14T10:00:00+00:00", points=300, bonus=10)
        insert_session(db, 1, "2024-03-15T10:00:00+00:00", points=250)
        stats = recompute_user_stats(1, today=date(2024, 3, 15))
        assert stats.total_xp == 560
        assert stats.current_level == 2
        assert stats.current_streak == 2
        assert stats.longest_streak == 2
        assert stats.last_quiz_date == "2024-03-15"

    def test_active_sessions_do_not_count(self, db):
        from procedures import recompute_user_stats

        insert_session(db, 1, None, points=50, status="active")
        stats = recompute_user_stats(1)
        assert stats.total_xp == 0
        assert stats.current_level == 1

    def test_row_is_upserted(self, db):
        from db_stores import UserStatsDB
        from procedures import recompute_user_stats

        insert_session(db, 1, "2024-03-14T10:00:00+00:00", points=30)
        recompute_user_stats(1)
        insert_session(db, 1, "2024-03-16T10:00:00+00:00", points=20)
        recompute_user_stats(1)
        assert UserStatsDB(1).get().total_xp == 50
        count = db.execute("SELECT COUNT(*) AS n FROM user_stats WHERE user_id = 1").fetchone()["n"]
        assert count == 1


class TestDeleteQuiz:
    def test_owner_may_not_delete_completed(self, db):
        from procedures import delete_quiz_and_adjust_gamification
        from resilience import AuthorizationError

        sid = insert_session(db, 1, "2024-03-14T10:00:00+00:00")
        with pytest.raises(AuthorizationError):
            delete_quiz_and_adjust_gamification(sid, actor_id=1)
        assert db.execute("SELECT 1 FROM quiz_sessions WHERE id = ?", (sid,)).fetchone() is not None

    def test_owner_may_delete_active(self, db):
        from procedures import delete_quiz_and_adjust_gamification

        sid = insert_session(db, 1, None, status="active")
        result = delete_quiz_and_adjust_gamification(sid, actor_id=1)
        assert result == {"success": True, "adjusted": False, "revoked_achievements": []}
        assert db.execute("SELECT 1 FROM quiz_sessions WHERE id = ?", (sid,)).fetchone() is None

    def test_team_owner_may_delete(self, db):
        from procedures import delete_quiz_and_adjust_gamification

        sid = insert_session(db, 1, "2024-03-14T10:00:00+00:00")
        result = delete_quiz_and_adjust_gamification(sid, actor_id=2)
        assert result["success"] is True
        assert result["adjusted"] is True
        assert result["total_xp"] == 0
        assert db.execute("SELECT 1 FROM quiz_sessions WHERE id = ?", (sid,)).fetchone() is None

    def test_super_admin_may_delete(self, db):
        from procedures import delete_quiz_and_adjust_gamification

        sid = insert_session(db, 2, "2024-03-14T10:00:00+00:00")
        assert delete_quiz_and_adjust_gamification(sid, actor_id=3)["success"] is True

    def test_team_member_may_not_delete_others(self, db):
        from procedures import delete_quiz_and_adjust_gamification
        from resilience import AuthorizationError

        sid = insert_session(db, 2, "2024-03-14T10:00:00+00:00")
        with pytest.raises(AuthorizationError):
            delete_quiz_and_adjust_gamification(sid, actor_id=1)
        assert db.execute("SELECT 1 FROM quiz_sessions WHERE id = ?", (sid,)).fetchone() is not None

    def test_missing_session(self, db):
        from procedures import delete_quiz_and_adjust_gamification
        from resilience import NotFoundError

        with pytest.raises(NotFoundError):
            delete_quiz_and_adjust_gamification(str(uuid.uuid4()), actor_id=1)

    def test_question_logs_removed(self, db):
        from procedures import delete_quiz_and_adjust_gamification

        sid = insert_session(db, 1, "2024-03-14T10:00:00+00:00")
        db.execute(
            "INSERT INTO quiz_question_logs (quiz_session_id, user_id, question_id, points_earned) "
            "VALUES (?, 1, ?, 5)", (sid, Q_DANIEL_2_1),
        )
        db.commit()
        delete_quiz_and_adjust_gamification(sid, actor_id=2)
        left = db.execute("SELECT COUNT(*) AS n FROM quiz_question_logs WHERE quiz_session_id = ?",
                          (sid,)).fetchone()["n"]
        assert left == 0

    def test_streak_achievement_revoked(self, db):
        from db_stores import AchievementStoreDB
        from procedures import delete_quiz_and_adjust_gamification
        from quiz_sessions import evaluate_achievements
        from procedures import recompute_user_stats

        ids = [insert_session(db, 1, f"2024-02-0{d}T12:00:00+00:00") for d in (1, 2, 3)]
        evaluate_achievements(1, recompute_user_stats(1))
        on_fire = "8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e04"
        assert on_fire in AchievementStoreDB.unlocked_ids(1)

        result = delete_quiz_and_adjust_gamification(ids[1], actor_id=2)
        assert on_fire in result["revoked_achievements"]
        # Two quizzes remain, so First Steps stays
        assert "8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e01" in AchievementStoreDB.unlocked_ids(1)


class TestUserAnalyticsSummary:
    def test_window_and_totals(self, db):
        from procedures import get_user_analytics_data

        insert_session(db, 1, "2024-03-01T10:00:00+00:00", points=40, max_points=50, seconds=120)
        insert_session(db, 1, "2024-03-10T23:00:00+00:00", points=10, max_points=50, seconds=180)
        insert_session(db, 1, "2024-02-01T10:00:00+00:00", points=50, max_points=50)

        data = get_user_analytics_data(1, start="2024-03-01", end="2024-03-10")
        assert data["total_quizzes_completed"] == 2
        assert data["total_questions_answered"] == 2
        assert data["average_score"] == 50.0
        assert data["total_time_spent_minutes"] == 5
        assert data["total_points_earned"] == 50
        assert data["total_possible_points"] == 100

    def test_empty_window(self, db):
        from procedures import get_user_analytics_data

        data = get_user_analytics_data(1, start="2020-01-01", end="2020-01-31")
        assert data["total_quizzes_completed"] == 0
        assert data["average_score"] == 0


class TestTeamQueries:
    def test_members_for_user(self, db):
        from procedures import get_team_members_for_user

        members = get_team_members_for_user(1)
        assert [m["user_id"] for m in members] == [2, 1]
        assert members[0]["role"] == "owner"

    def test_members_for_teamless_user(self, db):
        from procedures import get_team_members_for_user

        assert get_team_members_for_user(3) == []

    def test_suspended_member_sees_no_roster(self, db):
        from db_stores import TeamStoreDB
        from procedures import get_team_members_for_user

        TeamStoreDB.update_member(TEAM_ID, 1, status="suspended")
        assert get_team_members_for_user(1) == []
        assert [m["user_id"] for m in get_team_members_for_user(2)] == [2, 1]

    def test_leaderboard_orders_by_points(self, db):
        from procedures import get_team_leaderboard_data

        insert_session(db, 1, "2024-03-01T10:00:00+00:00", points=40, bonus=10)
        insert_session(db, 2, "2024-03-01T10:00:00+00:00", points=30)
        board = get_team_leaderboard_data(TEAM_ID, actor_id=1)
        assert [r["user_id"] for r in board] == [1, 2]
        assert board[0]["total_points_earned"] == 50
        assert board[0]["total_quizzes_completed"] == 1

    def test_leaderboard_date_window(self, db):
        from procedures import get_team_leaderboard_data

        insert_session(db, 1, "2024-03-01T10:00:00+00:00", points=40)
        insert_session(db, 1, "2024-04-01T10:00:00+00:00", points=20)
        board = get_team_leaderboard_data(TEAM_ID, actor_id=2, start="2024-03-01", end="2024-03-31")
        member = next(r for r in board if r["user_id"] == 1)
        assert member["total_points_earned"] == 40

    def test_leaderboard_rejects_outsiders(self, db):
        from procedures import get_team_leaderboard_data
        from resilience import AuthorizationError

        db.execute("INSERT INTO users (id, name, email, role) VALUES (4, 'Outsider', 'out@example.com', 'user')")
        db.commit()
        with pytest.raises(AuthorizationError):
            get_team_leaderboard_data(TEAM_ID, actor_id=4)

    def test_leaderboard_open_to_super_admin(self, db):
        from procedures import get_team_leaderboard_data

        assert len(get_team_leaderboard_data(TEAM_ID, actor_id=3)) == 2
