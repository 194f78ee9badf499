"""
SQLite database layer for PBE Journey.

Uses raw sqlite3 with WAL mode and parameterized queries.
A schema_version table handles migrations.
"""

from __future__ import annotations

import fcntl
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from flask import current_app, g

DEFAULT_DB_PATH = Path(__file__).parent / "pbe_journey.db"


SCHEMA = """
-- Migration tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);

-- Users
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT UNIQUE,
    password_hash TEXT,
    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('admin', 'user')),
    plan_id TEXT NOT NULL DEFAULT 'free',
    stripe_customer_id TEXT NOT NULL DEFAULT '',
    stripe_subscription_id TEXT NOT NULL DEFAULT '',
    login_attempts INTEGER NOT NULL DEFAULT 0,
    locked_until TEXT NOT NULL DEFAULT '',
    reset_token TEXT NOT NULL DEFAULT '',
    reset_token_expires TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT ''
);

-- Teams
CREATE TABLE IF NOT EXISTS teams (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    owner_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL DEFAULT ''
);

-- One team per user
CREATE TABLE IF NOT EXISTS team_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
    role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('owner', 'admin', 'member')),
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'pending', 'suspended')),
    joined_at TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS team_invitations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    email TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'member' CHECK (role IN ('admin', 'member')),
    token TEXT NOT NULL UNIQUE,
    invited_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    expires_at TEXT NOT NULL,
    accepted_at TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT ''
);

-- Question bank
CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    book_of_bible TEXT NOT NULL,
    chapter INTEGER NOT NULL,
    verse INTEGER,
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    points INTEGER NOT NULL DEFAULT 1,
    time_to_answer INTEGER NOT NULL DEFAULT 30,
    tier TEXT NOT NULL DEFAULT 'free' CHECK (tier IN ('free', 'pro', 'enterprise')),
    created_at TEXT NOT NULL DEFAULT ''
);

-- Study schedule
CREATE TABLE IF NOT EXISTS study_assignments (
    id TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    team_id TEXT REFERENCES teams(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    study_items TEXT NOT NULL DEFAULT '[]',
    description TEXT NOT NULL DEFAULT '',
    completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT NOT NULL DEFAULT '',
    quiz_session_id TEXT NOT NULL DEFAULT '',
    created_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL DEFAULT ''
);

-- Quiz sessions (questions/results stored as JSON arrays)
CREATE TABLE IF NOT EXISTS quiz_sessions (
    id TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    team_id TEXT REFERENCES teams(id) ON DELETE SET NULL,
    assignment_id TEXT REFERENCES study_assignments(id) ON DELETE SET NULL,
    type TEXT NOT NULL DEFAULT 'custom' CHECK (type IN ('quick-start', 'custom', 'study-assignment')),
    title TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    questions TEXT NOT NULL DEFAULT '[]',
    current_question_index INTEGER NOT NULL DEFAULT 0,
    results TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'completed')),
    total_points INTEGER NOT NULL DEFAULT 0,
    max_points INTEGER NOT NULL DEFAULT 0,
    estimated_minutes INTEGER NOT NULL DEFAULT 0,
    total_actual_time_spent_seconds INTEGER NOT NULL DEFAULT 0,
    bonus_xp INTEGER NOT NULL DEFAULT 0,
    approval_status TEXT NOT NULL DEFAULT 'approved'
        CHECK (approval_status IN ('approved', 'pending', 'rejected')),
    completed_at TEXT,
    created_at TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS quiz_question_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    quiz_session_id TEXT NOT NULL REFERENCES quiz_sessions(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    question_id TEXT NOT NULL,
    points_earned INTEGER NOT NULL DEFAULT 0,
    total_points_possible INTEGER NOT NULL DEFAULT 0,
    time_spent INTEGER NOT NULL DEFAULT 0,
    is_correct INTEGER NOT NULL DEFAULT 0,
    answered_at TEXT NOT NULL DEFAULT ''
);

-- Gamification
CREATE TABLE IF NOT EXISTS user_stats (
    user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    total_xp INTEGER NOT NULL DEFAULT 0,
    current_level INTEGER NOT NULL DEFAULT 1,
    longest_streak INTEGER NOT NULL DEFAULT 0,
    last_quiz_date TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS achievements (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    icon TEXT NOT NULL DEFAULT 'trophy',
    criteria_type TEXT NOT NULL,
    criteria_value INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS user_achievements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    achievement_id TEXT NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
    unlocked_at TEXT NOT NULL DEFAULT '',
    UNIQUE(user_id, achievement_id)
);

-- Subscription plans and their feature settings
CREATE TABLE IF NOT EXISTS plan_settings (
    plan_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    price_monthly REAL NOT NULL DEFAULT 0,
    max_questions_custom_quiz INTEGER NOT NULL DEFAULT 10,
    max_team_members INTEGER NOT NULL DEFAULT 5,
    question_tier_access TEXT NOT NULL DEFAULT '["free"]',
    allow_quick_start_quiz INTEGER NOT NULL DEFAULT 1,
    allow_create_own_quiz INTEGER NOT NULL DEFAULT 1,
    allow_study_schedule_quiz INTEGER NOT NULL DEFAULT 0,
    allow_analytics_access INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT ''
);

-- Audit log
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    action TEXT NOT NULL,
    detail TEXT NOT NULL DEFAULT '',
    ip_address TEXT NOT NULL DEFAULT '',
    user_agent TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_quiz_sessions_user ON quiz_sessions(user_id, status);
CREATE INDEX IF NOT EXISTS idx_quiz_sessions_team ON quiz_sessions(team_id, status);
CREATE INDEX IF NOT EXISTS idx_quiz_sessions_assignment ON quiz_sessions(assignment_id);
CREATE INDEX IF NOT EXISTS idx_question_logs_session ON quiz_question_logs(quiz_session_id);
CREATE INDEX IF NOT EXISTS idx_question_logs_question ON quiz_question_logs(question_id);
CREATE INDEX IF NOT EXISTS idx_assignments_team_date ON study_assignments(team_id, date);
CREATE INDEX IF NOT EXISTS idx_assignments_user ON study_assignments(user_id, date);
"""


# ---------------------------------------------------------------------------
# Versioned migrations
# ---------------------------------------------------------------------------
MIGRATIONS: list[tuple[int, str]] = [
    (1, """
        INSERT OR IGNORE INTO plan_settings
            (plan_id, name, price_monthly, max_questions_custom_quiz, max_team_members,
             question_tier_access, allow_quick_start_quiz, allow_create_own_quiz,
             allow_study_schedule_quiz, allow_analytics_access)
        VALUES
            ('free', 'Free', 0, 10, 5, '["free"]', 1, 1, 0, 0),
            ('pro', 'Pro', 15, 50, 25, '["free","pro"]', 1, 1, 1, 1),
            ('enterprise', 'Enterprise', 150, 200, 200, '["free","pro","enterprise"]', 1, 1, 1, 1);
    """),
    (2, """
        INSERT OR IGNORE INTO achievements (id, name, description, icon, criteria_type, criteria_value)
        VALUES
            ('8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e01', 'First Steps', 'Complete your first quiz',
             'footprints', 'total_quizzes_completed', 1),
            ('8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e02', 'Quiz Enthusiast', 'Complete 10 quizzes',
             'book-open', 'total_quizzes_completed', 10),
            ('8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e03', 'Point Collector', 'Earn 1,000 XP',
             'star', 'total_points_earned', 1000),
            ('8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e04', 'On Fire', 'Study three days in a row',
             'flame', 'longest_streak', 3),
            ('8d0e5a4c-1f7b-4b7e-9a51-0c2f6a1b3e05', 'Week Warrior', 'Study seven days in a row',
             'calendar', 'longest_streak', 7);
    """),
    (3, """
        CREATE INDEX IF NOT EXISTS idx_team_invitations_email ON team_invitations(email);
        CREATE INDEX IF NOT EXISTS idx_audit_log_user ON audit_log(user_id, created_at);
    """),
]


def get_db() -> sqlite3.Connection:
    """Return the request's SQLite connection from Flask g, creating it if needed."""
    if "db" not in g:
        db_path = current_app.config.get("DATABASE", str(DEFAULT_DB_PATH))
        g.db = sqlite3.connect(db_path)
        g.db.row_factory = sqlite3.Row
        g.db.execute("PRAGMA journal_mode=WAL")
        g.db.execute("PRAGMA foreign_keys=ON")
    return g.db


def close_db(e=None) -> None:
    """Teardown handler — close DB connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db() -> None:
    """Execute schema DDL to create all tables."""
    db = get_db()
    db.executescript(SCHEMA)
    db.commit()


def run_migrations() -> None:
    """Apply any unapplied versioned migrations.

    Uses file-based locking to prevent race conditions when multiple
    Gunicorn workers start simultaneously.
    """
    db_path = current_app.config.get("DATABASE", str(DEFAULT_DB_PATH))
    lock_file = None

    if db_path != ":memory:":
        lock_path = Path(db_path).with_suffix(".migration.lock")
        try:
            lock_file = open(lock_path, "w")
            fcntl.flock(lock_file, fcntl.LOCK_EX)
        except OSError:
            lock_file = None

    try:
        db = get_db()
        applied = {
            row["version"]
            for row in db.execute("SELECT version FROM schema_version").fetchall()
        }
        for version, sql in MIGRATIONS:
            if version in applied:
                continue
            try:
                db.executescript(sql)
            except sqlite3.OperationalError as e:
                err_msg = str(e).lower()
                if "duplicate column" not in err_msg and "already exists" not in err_msg:
                    raise
            db.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (version, datetime.now(timezone.utc).isoformat()),
            )
            db.commit()
    finally:
        if lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_UN)
            lock_file.close()


def schema_version() -> int:
    """Highest applied migration version (0 when none)."""
    row = get_db().execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
    return row["v"] or 0


def init_app(app) -> None:
    """Register teardown and auto-init on first request."""
    app.teardown_appcontext(close_db)

    @app.before_request
    def _ensure_db():
        if not getattr(app, "_db_initialized", False):
            init_db()
            run_migrations()
            app._db_initialized = True
