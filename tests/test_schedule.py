"""Tests for study_schedule.py and the planner blueprint."""

from __future__ import annotations

import pytest

from conftest import Q_DANIEL_1_1, Q_DANIEL_2_1, TEAM_ID
from models import StudyItem


class TestParsing:
    def test_parse_study_items(self):
        from study_schedule import parse_study_items

        items = parse_study_items([{"book": "Daniel", "chapters": ["1", 2], "verses": []}])
        assert items == [StudyItem(book="Daniel", chapters=[1, 2], verses=[])]

    @pytest.mark.parametrize("raw", [
        None,
        [],
        ["Daniel 1"],
        [{"book": "", "chapters": [1]}],
        [{"book": "Daniel", "chapters": ["one"]}],
        [{"book": "Daniel", "chapters": [0]}],
    ])
    def test_invalid_study_items(self, raw):
        from resilience import ValidationError
        from study_schedule import parse_study_items

        with pytest.raises(ValidationError):
            parse_study_items(raw)

    def test_parse_date(self):
        from resilience import ValidationError
        from study_schedule import parse_date

        assert parse_date("2024-01-10T08:00:00Z") == "2024-01-10"
        with pytest.raises(ValidationError):
            parse_date("10/01/2024")


class TestScheduleAssignment:
    def test_default_description(self, app):
        from study_schedule import schedule_assignment

        with app.app_context():
            a = schedule_assignment(TEAM_ID, 1, "2024-01-10",
                                    [{"book": "Daniel", "chapters": [1, 2, 3]}], created_by=2)
        assert a.description == "Daniel 1-3"
        assert a.team_id == TEAM_ID

    def test_non_member(self, app):
        from resilience import NotFoundError
        from study_schedule import schedule_assignment

        with app.app_context():
            with pytest.raises(NotFoundError):
                schedule_assignment(TEAM_ID, 3, "2024-01-10", [{"book": "Daniel", "chapters": [1]}])

    def test_suspended_member(self, app):
        from database import get_db
        from resilience import ValidationError
        from study_schedule import schedule_assignment

        with app.app_context():
            db = get_db()
            db.execute("UPDATE team_members SET status = 'suspended' WHERE user_id = 1")
            db.commit()
            with pytest.raises(ValidationError):
                schedule_assignment(TEAM_ID, 1, "2024-01-10", [{"book": "Daniel", "chapters": [1]}])


class TestAssignmentProgress:
    def test_coverage_from_completed_sessions(self, app, make_assignment):
        from quiz_sessions import QuizSessionState
        from study_schedule import assignment_progress

        with app.app_context():
            assignment = make_assignment(items=[StudyItem(book="Daniel", chapters=[1, 2])])
            state = QuizSessionState(1, TEAM_ID)
            session = state.create(
                questions=[{"id": Q_DANIEL_1_1, "book_of_bible": "Daniel", "chapter": 1, "points": 50},
                           {"id": Q_DANIEL_2_1, "book_of_bible": "Daniel", "chapter": 2, "points": 20}],
                session_type="study-assignment", assignment_id=assignment.id,
            )
            # Only the chapter 1 question was answered
            state.complete(session.id, completed_at="2024-01-10T12:00:00+00:00",
                           final_results=[{"question_id": Q_DANIEL_1_1, "points_earned": 50}])

            from db_stores import StudyAssignmentStoreDB
            progress = assignment_progress(StudyAssignmentStoreDB.get(assignment.id))

        assert progress["completed"] is True
        assert progress["covered"] == [{"book": "Daniel", "chapter": 1}]
        assert progress["missing"] == [{"book": "Daniel", "chapter": 2}]
        assert progress["coverage_pct"] == 50.0

    def test_untouched_assignment(self, app, make_assignment):
        from study_schedule import assignment_progress

        with app.app_context():
            progress = assignment_progress(make_assignment())
        assert progress["coverage_pct"] == 0.0
        assert progress["required"] == [{"book": "Daniel", "chapter": 1}]


class TestPlannerRoutes:
    def test_owner_creates_assignments_for_many(self, owner_client):
        resp = owner_client.post(f"/api/teams/{TEAM_ID}/schedule", json={
            "user_ids": [1, 2], "date": "2024-01-10",
            "study_items": [{"book": "Esther", "chapters": [2], "verses": [1, 2, 3]}],
        })
        assert resp.status_code == 201
        assignments = resp.get_json()["assignments"]
        assert [a["user_id"] for a in assignments] == [1, 2]
        assert assignments[0]["description"] == "Esther 2:1-3"

    def test_member_cannot_schedule(self, auth_client):
        resp = auth_client.post(f"/api/teams/{TEAM_ID}/schedule", json={
            "user_id": 1, "date": "2024-01-10", "study_items": [{"book": "Daniel", "chapters": [1]}],
        })
        assert resp.status_code == 403

    def test_missing_date(self, owner_client):
        resp = owner_client.post(f"/api/teams/{TEAM_ID}/schedule", json={
            "user_id": 1, "study_items": [{"book": "Daniel", "chapters": [1]}],
        })
        assert resp.status_code == 400

    def test_team_schedule_filters_by_user(self, app, owner_client, make_assignment):
        with app.app_context():
            make_assignment(user_id=1)
            make_assignment(user_id=2)
        resp = owner_client.get(f"/api/teams/{TEAM_ID}/schedule?user_id=2")
        assert [a["user_id"] for a in resp.get_json()["assignments"]] == [2]

    def test_my_schedule_by_range(self, app, auth_client, make_assignment):
        with app.app_context():
            make_assignment(date="2024-01-10")
            make_assignment(date="2024-02-10")
        resp = auth_client.get("/api/schedule?start_date=2024-01-01&end_date=2024-01-31")
        assert [a["date"] for a in resp.get_json()["assignments"]] == ["2024-01-10"]

    def test_my_schedule_upcoming(self, app, auth_client, make_assignment):
        with app.app_context():
            make_assignment(date="2020-01-10")
            future = make_assignment(date="2999-01-10")
        resp = auth_client.get("/api/schedule")
        assert [a["id"] for a in resp.get_json()["assignments"]] == [future.id]

    def test_assignment_detail_with_progress(self, app, auth_client, make_assignment):
        with app.app_context():
            assignment = make_assignment()
        body = auth_client.get(f"/api/schedule/{assignment.id}").get_json()
        assert body["assignment"]["id"] == assignment.id
        assert body["progress"]["coverage_pct"] == 0.0

    def test_assignment_hidden_from_other_member(self, app, auth_client, make_assignment):
        with app.app_context():
            assignment = make_assignment(user_id=2)
        assert auth_client.get(f"/api/schedule/{assignment.id}").status_code == 403

    def test_delete_requires_manager(self, app, auth_client, owner_client, make_assignment):
        with app.app_context():
            assignment = make_assignment()
        assert auth_client.delete(f"/api/schedule/{assignment.id}").status_code == 403
        assert owner_client.delete(f"/api/schedule/{assignment.id}").status_code == 200
        assert owner_client.get(f"/api/schedule/{assignment.id}").status_code == 404
