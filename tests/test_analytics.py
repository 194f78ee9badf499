"""Tests for analytics.py — scopes, performance folds, gaps, engagement, trends."""

from __future__ import annotations

import json
import uuid
from datetime import date, datetime, timezone

import pytest

from analytics import (
    Scope,
    book_chapter_performance,
    calculate_average_score,
    calculate_date_periods,
    calculate_trend,
    engagement,
    knowledge_gaps,
    question_performance,
    quiz_history,
    study_schedule_analysis,
    team_performance_trends,
)
from conftest import Q_DANIEL_1_1, Q_DANIEL_1_2, Q_DANIEL_2_1, Q_ESTHER_2_3, TEAM_ID


def add_session(db, user_id, completed_at, answers, seconds=60, team_id=TEAM_ID, assignment_id=None):
    """Insert a completed session plus one question log per (question_id, earned, possible, correct)."""
    sid = str(uuid.uuid4())
    results = [{"question_id": q, "points_earned": e, "points_possible": p, "time_spent": 10,
                "is_correct": c} for q, e, p, c in answers]
    db.execute(
        "INSERT INTO quiz_sessions (id, user_id, team_id, assignment_id, type, title, questions, "
        "results, status, total_points, max_points, total_actual_time_spent_seconds, completed_at, "
        "created_at, updated_at) VALUES (?, ?, ?, ?, 'custom', 'Practice', '[]', ?, 'completed', "
        "?, ?, ?, ?, ?, ?)",
        (sid, user_id, team_id, assignment_id, json.dumps(results),
         sum(a[1] for a in answers), sum(a[2] for a in answers), seconds,
         completed_at, completed_at, completed_at),
    )
    db.executemany(
        "INSERT INTO quiz_question_logs (quiz_session_id, user_id, question_id, points_earned, "
        "total_points_possible, time_spent, is_correct, answered_at) VALUES (?, ?, ?, ?, ?, 10, ?, ?)",
        [(sid, user_id, q, e, p, int(c), completed_at) for q, e, p, c in answers],
    )
    db.commit()
    return sid


class TestScope:
    def test_requires_user_or_team(self):
        with pytest.raises(ValueError):
            Scope()

    def test_date_strings_become_utc_midnight(self):
        scope = Scope(user_id=1, start="2024-03-01", end=date(2024, 3, 10))
        assert scope.start == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert scope.end == datetime(2024, 3, 10, tzinfo=timezone.utc)

    def test_end_is_inclusive(self):
        where, params = Scope(team_id=TEAM_ID, end="2024-03-10").session_filter()
        assert "completed_at < ?" in where
        assert params[-1].startswith("2024-03-11T00:00:00")


class TestScoreHelpers:
    def test_average_score(self):
        assert calculate_average_score(40, 50) == 80.0
        assert calculate_average_score(10, 0) == 0.0

    @pytest.mark.parametrize("current,previous,expected", [
        (80, 70, "up"),
        (60, 70, "down"),
        (72, 70, "stable"),
        (10, 0, "up"),
        (0, 0, "stable"),
    ])
    def test_trend(self, current, previous, expected):
        assert calculate_trend(current, previous) == expected


class TestPerformanceReports:
    def test_book_chapter_weakest_first(self, db):
        add_session(db, 1, "2024-03-01T10:00:00+00:00", [
            (Q_DANIEL_1_1, 50, 50, True),
            (Q_DANIEL_1_2, 0, 50, False),
            (Q_DANIEL_2_1, 20, 20, True),
        ])
        report = book_chapter_performance(Scope(user_id=1))
        assert [(r["book"], r["chapter"]) for r in report] == [("Daniel", 1), ("Daniel", 2)]
        assert report[0]["accuracy"] == 50.0
        assert report[0]["points_efficiency"] == 50.0
        assert report[1]["accuracy"] == 100.0

    def test_question_performance_includes_question_text(self, db):
        add_session(db, 1, "2024-03-01T10:00:00+00:00", [(Q_ESTHER_2_3, 0, 30, False)])
        report = question_performance(Scope(user_id=1))
        assert report[0]["question_id"] == Q_ESTHER_2_3
        assert report[0]["answer"] == "Hegai"
        assert report[0]["tier"] == "pro"
        assert report[0]["total_attempts"] == 1

    def test_team_scope_covers_all_members(self, db):
        add_session(db, 1, "2024-03-01T10:00:00+00:00", [(Q_DANIEL_2_1, 20, 20, True)])
        add_session(db, 2, "2024-03-01T11:00:00+00:00", [(Q_DANIEL_2_1, 0, 20, False)])
        report = question_performance(Scope(team_id=TEAM_ID))
        assert report[0]["total_attempts"] == 2
        assert report[0]["accuracy"] == 50.0

    def test_date_range_excludes_outside_sessions(self, db):
        add_session(db, 1, "2024-02-01T10:00:00+00:00", [(Q_DANIEL_2_1, 20, 20, True)])
        add_session(db, 1, "2024-03-10T23:59:00+00:00", [(Q_DANIEL_2_1, 0, 20, False)])
        report = question_performance(Scope(user_id=1, start="2024-03-01", end="2024-03-10"))
        assert report[0]["total_attempts"] == 1
        assert report[0]["accuracy"] == 0.0


class TestKnowledgeGaps:
    def test_needs_minimum_attempts(self, db):
        add_session(db, 1, "2024-03-01T10:00:00+00:00", [
            (Q_DANIEL_1_1, 0, 50, False),
            (Q_DANIEL_1_2, 0, 50, False),
        ])
        assert knowledge_gaps(Scope(user_id=1)) == []

    def test_low_accuracy_group_is_a_gap(self, db):
        add_session(db, 1, "2024-03-01T10:00:00+00:00", [
            (Q_DANIEL_1_1, 50, 50, True),
            (Q_DANIEL_1_2, 0, 50, False),
        ])
        add_session(db, 1, "2024-03-02T10:00:00+00:00", [
            (Q_DANIEL_1_1, 0, 50, False),
            (Q_DANIEL_2_1, 20, 20, True),
        ])
        gaps = knowledge_gaps(Scope(user_id=1))
        assert len(gaps) == 1
        gap = gaps[0]
        assert (gap["book"], gap["chapter"], gap["tier"]) == ("Daniel", 1, "free")
        assert gap["total_attempts"] == 3
        assert gap["accuracy"] == 33.3

    def test_accurate_group_is_not_a_gap(self, db):
        add_session(db, 1, "2024-03-01T10:00:00+00:00", [(Q_DANIEL_2_1, 20, 20, True)] * 3)
        assert knowledge_gaps(Scope(user_id=1)) == []


class TestEngagementAndHistory:
    def test_engagement_groups_by_utc_day(self, db):
        add_session(db, 1, "2024-03-01T10:00:00+00:00", [(Q_DANIEL_2_1, 20, 20, True)], seconds=120)
        add_session(db, 1, "2024-03-01T22:00:00+00:00",
                    [(Q_DANIEL_1_1, 50, 50, True), (Q_DANIEL_1_2, 0, 50, False)], seconds=240)
        add_session(db, 1, "2024-03-03T09:00:00+00:00", [(Q_DANIEL_2_1, 0, 20, False)], seconds=60)
        rows = engagement(Scope(user_id=1))
        assert [r["date"] for r in rows] == ["2024-03-01", "2024-03-03"]
        assert rows[0]["quizzes_completed"] == 2
        assert rows[0]["questions_answered"] == 3
        assert rows[0]["time_spent_minutes"] == 6.0
        assert rows[0]["average_session_minutes"] == 3.0

    def test_history_newest_first_with_paging(self, db):
        older = add_session(db, 1, "2024-03-01T10:00:00+00:00", [(Q_DANIEL_2_1, 10, 20, True)])
        newer = add_session(db, 1, "2024-03-05T10:00:00+00:00", [(Q_DANIEL_2_1, 20, 20, True)])
        history = quiz_history(Scope(user_id=1))
        assert [h["id"] for h in history] == [newer, older]
        assert history[1]["percentage"] == 50.0
        assert [h["id"] for h in quiz_history(Scope(user_id=1), limit=1, offset=1)] == [older]


class TestDatePeriods:
    def test_weekly_buckets_start_on_sunday(self):
        periods = calculate_date_periods("weekly", end=date(2024, 3, 15), default_periods=2)
        assert [p["start"] for p in periods] == [date(2024, 3, 3), date(2024, 3, 10)]
        assert periods[-1]["end"] == date(2024, 3, 16)
        assert periods[-1]["label"] == "Week of Mar 10"

    def test_monthly_buckets_cover_range(self):
        periods = calculate_date_periods("monthly", start=date(2024, 1, 1), end=date(2024, 3, 15))
        assert [p["label"] for p in periods] == ["Jan 2024", "Feb 2024", "Mar 2024"]
        assert periods[1]["end"] == date(2024, 2, 29)

    def test_monthly_wraps_year(self):
        periods = calculate_date_periods("monthly", end=date(2024, 1, 20), default_periods=2)
        assert [p["label"] for p in periods] == ["Dec 2023", "Jan 2024"]

    def test_period_count_is_capped(self):
        periods = calculate_date_periods("weekly", start=date(2020, 1, 1), end=date(2024, 1, 1))
        assert len(periods) == 24

    def test_bad_timeframe(self):
        with pytest.raises(ValueError):
            calculate_date_periods("daily")


class TestTeamReports:
    def test_trends_per_week(self, db):
        add_session(db, 1, "2024-03-05T10:00:00+00:00", [(Q_DANIEL_1_1, 25, 50, False)])
        add_session(db, 2, "2024-03-12T10:00:00+00:00", [(Q_DANIEL_1_1, 50, 50, True)])
        trends = team_performance_trends(TEAM_ID, "weekly", start="2024-03-03", end="2024-03-15")
        assert [t["period"] for t in trends] == ["Week of Mar 3", "Week of Mar 10"]
        assert trends[0]["average_score"] == 50.0
        assert trends[0]["trend"] == "stable"
        assert trends[1]["average_score"] == 100.0
        assert trends[1]["trend"] == "up"
        assert trends[1]["active_members"] == 1

    def test_schedule_analysis_links_completed_session(self, db, make_assignment):
        done = make_assignment(date="2024-03-05")
        make_assignment(date="2024-03-06")
        sid = add_session(db, 1, "2024-03-05T18:00:00+00:00", [(Q_DANIEL_1_1, 50, 50, True)],
                          seconds=300, assignment_id=done.id)
        db.execute("UPDATE study_assignments SET completed = 1, completed_at = ?, quiz_session_id = ? "
                   "WHERE id = ?", ("2024-03-05T18:00:00+00:00", sid, done.id))
        db.commit()

        report = study_schedule_analysis(TEAM_ID, user_id=1)
        assert [r["date"] for r in report] == ["2024-03-06", "2024-03-05"]
        assert report[0]["completed"] is False
        assert report[0]["total_points_earned"] is None
        assert report[1]["quiz_session_id"] == sid
        assert report[1]["total_points_earned"] == 50
        assert report[1]["total_time_spent_minutes"] == 5
        assert report[1]["user_name"] == "Test Member"
