"""Tests for database.py — schema creation, migrations, seeds, constraints."""

import sqlite3

import pytest
from database import get_db, init_db, run_migrations, schema_version


class TestSchema:
    """Verify all tables are created correctly."""

    def test_tables_exist(self, app):
        with app.app_context():
            db = get_db()
            tables = [r["name"] for r in db.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            ).fetchall()]
            expected = [
                "achievements", "audit_log", "plan_settings", "questions",
                "quiz_question_logs", "quiz_sessions", "schema_version",
                "study_assignments", "team_invitations", "team_members", "teams",
                "user_achievements", "user_stats", "users",
            ]
            for t in expected:
                assert t in tables, f"Table {t} not found"

    def test_wal_mode(self, app):
        with app.app_context():
            db = get_db()
            mode = db.execute("PRAGMA journal_mode").fetchone()[0]
            assert mode == "wal"

    def test_foreign_keys_enabled(self, app):
        with app.app_context():
            db = get_db()
            fk = db.execute("PRAGMA foreign_keys").fetchone()[0]
            assert fk == 1

    def test_seed_user_exists(self, db):
        row = db.execute("SELECT * FROM users WHERE id=1").fetchone()
        assert row is not None
        assert row["name"] == "Test Member"


class TestMigrations:
    def test_all_migrations_applied(self, db):
        assert schema_version() == 3

    def test_rerun_is_noop(self, db):
        init_db()
        run_migrations()
        count = db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        assert count == 3

    def test_plans_seeded(self, db):
        rows = {r["plan_id"]: r for r in db.execute("SELECT * FROM plan_settings").fetchall()}
        assert set(rows) == {"free", "pro", "enterprise"}
        assert rows["free"]["allow_study_schedule_quiz"] == 0
        assert rows["enterprise"]["max_questions_custom_quiz"] == 200

    def test_achievements_seeded(self, db):
        names = [r["name"] for r in db.execute("SELECT name FROM achievements ORDER BY name").fetchall()]
        assert names == ["First Steps", "On Fire", "Point Collector", "Quiz Enthusiast", "Week Warrior"]


class TestConstraints:
    def test_one_team_per_user(self, db):
        db.execute("INSERT INTO teams (id, name, owner_id) VALUES ('t2', 'Other', 3)")
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("INSERT INTO team_members (team_id, user_id, role) VALUES ('t2', 1, 'member')")

    def test_achievement_unlocked_once(self, db):
        db.execute("INSERT INTO user_achievements (user_id, achievement_id) "
                   "VALUES (1, '8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e01')")
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("INSERT INTO user_achievements (user_id, achievement_id) "
                       "VALUES (1, '8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e01')")

    def test_session_status_checked(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("INSERT INTO quiz_sessions (id, user_id, status) VALUES ('s1', 1, 'paused')")

    def test_deleting_session_cascades_logs(self, db):
        db.execute("INSERT INTO quiz_sessions (id, user_id) VALUES ('s1', 1)")
        db.execute("INSERT INTO quiz_question_logs (quiz_session_id, user_id, question_id) "
                   "VALUES ('s1', 1, 'q')")
        db.execute("DELETE FROM quiz_sessions WHERE id = 's1'")
        assert db.execute("SELECT COUNT(*) FROM quiz_question_logs").fetchone()[0] == 0
