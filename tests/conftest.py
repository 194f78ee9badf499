"""
Test fixtures for PBE Journey.

Provides app, client, auth_client, owner_client, admin_client and db fixtures
with file-based SQLite. Seeds three users, one team and a small question bank.
"""

from __future__ import annotations

import pytest
from werkzeug.security import generate_password_hash

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

PASSWORD = "Testpass123"

TEAM_ID = "3f2b9c1e-7a4d-4e8b-9c61-2d5f0a7b8e10"

Q_DANIEL_1_1 = "a1000000-0000-4000-8000-000000000001"
Q_DANIEL_1_2 = "a1000000-0000-4000-8000-000000000002"
Q_DANIEL_2_1 = "a1000000-0000-4000-8000-000000000003"
Q_ESTHER_2_3 = "a1000000-0000-4000-8000-000000000004"
Q_ESTHER_3_1 = "a1000000-0000-4000-8000-000000000005"

QUESTIONS = [
    (Q_DANIEL_1_1, "Daniel", 1, 1, "Who was king of Judah when Nebuchadnezzar besieged Jerusalem?",
     "Jehoiakim", 50, 30, "free"),
    (Q_DANIEL_1_2, "Daniel", 1, 2, "Whose house did Nebuchadnezzar put the vessels in?",
     "His god's treasure house", 50, 30, "free"),
    (Q_DANIEL_2_1, "Daniel", 2, 1, "In which year of his reign did Nebuchadnezzar dream?",
     "The second", 20, 20, "free"),
    (Q_ESTHER_2_3, "Esther", 2, 3, "Who had custody of the women?", "Hegai", 30, 30, "pro"),
    (Q_ESTHER_3_1, "Esther", 3, 1, "Whom did the king promote?", "Haman", 10, 20, "enterprise"),
]


def fast_hash(password: str) -> str:
    return generate_password_hash(password, method="pbkdf2:sha256:1000")


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    db_file = str(tmp_path / "test.db")
    app = create_app({
        "TESTING": True,
        "DATABASE": db_file,
        "SECRET_KEY": "test-secret-key",
        "WTF_CSRF_ENABLED": False,
    })

    with app.app_context():
        from database import init_db, run_migrations, get_db

        init_db()
        run_migrations()
        app._db_initialized = True

        db = get_db()
        pw = fast_hash(PASSWORD)
        db.executemany(
            "INSERT INTO users (id, name, email, password_hash, role, plan_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, '2024-01-01T00:00:00+00:00')",
            [
                (1, "Test Member", "test@example.com", pw, "user", "free"),
                (2, "Team Owner", "owner@example.com", pw, "user", "pro"),
                (3, "Site Admin", "admin@example.com", pw, "admin", "free"),
            ],
        )
        db.execute(
            "INSERT INTO teams (id, name, owner_id, created_at) VALUES (?, 'Pathfinders', 2, '2024-01-01')",
            (TEAM_ID,),
        )
        db.executemany(
            "INSERT INTO team_members (team_id, user_id, role, status, joined_at) "
            "VALUES (?, ?, ?, 'active', '2024-01-01')",
            [(TEAM_ID, 2, "owner"), (TEAM_ID, 1, "member")],
        )
        db.executemany(
            "INSERT INTO questions (id, book_of_bible, chapter, verse, question, answer, points, "
            "time_to_answer, tier) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            QUESTIONS,
        )
        db.commit()

    # No app context stays pushed: each request gets its own g.
    yield app


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


def _login(app, email):
    client = app.test_client()
    resp = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def auth_client(app):
    """Logged in as the plain team member (user 1, free plan)."""
    return _login(app, "test@example.com")


@pytest.fixture
def owner_client(app):
    """Logged in as the team owner (user 2, pro plan)."""
    return _login(app, "owner@example.com")


@pytest.fixture
def admin_client(app):
    """Logged in as the super admin (user 3)."""
    return _login(app, "admin@example.com")


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def make_assignment(app):
    """Create a study assignment directly through the store."""
    from db_stores import StudyAssignmentStoreDB
    from models import StudyItem

    def _make(date="2024-01-10", user_id=1, items=None):
        items = items or [StudyItem(book="Daniel", chapters=[1])]
        return StudyAssignmentStoreDB.create(
            user_id=user_id, date=date, study_items=items, team_id=TEAM_ID, created_by=2,
        )
    return _make
