"""Quiz session lifecycle and the completion/gamification update flow.

A session is ``active`` until it is completed; completion is terminal.

Completion order:
    1. write the session row as completed            (must succeed)
    2. on-time bonus XP for a linked assignment       (best effort)
    3. mark the linked assignment completed           (best effort)
    4. recompute the user's stats from all sessions   (best effort)
    5. unlock any newly met achievements              (best effort)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from flask import g

from db_stores import (
    AchievementStoreDB,
    QuizSessionStoreDB,
    StudyAssignmentStoreDB,
    TeamStoreDB,
    UserStatsDB,
)
from gamification import STUDY_SCHEDULE_BONUS_XP, calculate_bonus_xp, criteria_met
from models import (
    APPROVAL_STATUSES,
    SESSION_TYPES,
    Achievement,
    Notification,
    QuizResult,
    QuizSession,
    UserStats,
    parse_timestamp,
    utc_now,
)
from procedures import delete_quiz_and_adjust_gamification, recompute_user_stats
from question_bank import QuestionCatalog
from resilience import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
    best_effort,
    must_succeed,
    require_uuid,
)

logger = logging.getLogger(__name__)


def evaluate_achievements(user_id: int, stats: Optional[UserStats] = None) -> list[Achievement]:
    """Unlock every achievement the user now qualifies for; return the new ones."""
    stats = stats or UserStatsDB(user_id).get()
    already = AchievementStoreDB.unlocked_ids(user_id)
    total_quizzes = QuizSessionStoreDB(user_id).completed_count()

    unlocked = []
    for achievement in AchievementStoreDB.all():
        if achievement.id in already:
            continue
        met = criteria_met(
            achievement.criteria_type, achievement.criteria_value,
            total_quizzes=total_quizzes,
            total_xp=stats.total_xp,
            longest_streak=stats.longest_streak,
        )
        if met and AchievementStoreDB.unlock(user_id, achievement.id):
            logger.info("Achievement unlocked: user=%s achievement=%s", user_id, achievement.name)
            unlocked.append(achievement)
    return unlocked


def assignment_bonus_xp(session: QuizSession, bonus: int = STUDY_SCHEDULE_BONUS_XP) -> int:
    """Bonus for the session's linked assignment, looked up from the store."""
    if not session.assignment_id:
        return 0
    assignment = StudyAssignmentStoreDB.get(session.assignment_id)
    if not assignment:
        logger.warning("Session %s links missing assignment %s", session.id, session.assignment_id)
        return 0
    return calculate_bonus_xp(assignment.date, session.completed_at, bonus)


@dataclass
class CompletionOutcome:
    session: QuizSession
    bonus_xp: int = 0
    stats: Optional[UserStats] = None
    unlocked: list[Achievement] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "session": self.session.to_dict(),
            "bonus_xp": self.bonus_xp,
            "stats": self.stats.to_dict() if self.stats else None,
            "unlocked_achievements": [a.to_dict() for a in self.unlocked],
            "notifications": [n.to_dict() for n in self.notifications],
        }


class QuizSessionState:
    """The current user's quiz sessions, loaded once and kept in memory.

    Every mutation writes through to the store and then updates the
    in-memory list so reads never need another query.
    """

    def __init__(self, user_id: int, team_id: Optional[str] = None,
                 bonus_xp: int = STUDY_SCHEDULE_BONUS_XP):
        self.user_id = user_id
        self.team_id = team_id
        self.bonus_xp = bonus_xp
        self.store = QuizSessionStoreDB(user_id)
        self.sessions: list[QuizSession] = []
        self.loaded = False

    # --- loading ---

    def load(self) -> list[QuizSession]:
        self.sessions = must_succeed(self.store.sessions)
        self.loaded = True
        return self.sessions

    def clear(self) -> None:
        self.sessions = []
        self.loaded = False

    def _replace(self, session: QuizSession) -> None:
        for i, existing in enumerate(self.sessions):
            if existing.id == session.id:
                self.sessions[i] = session
                return
        self.sessions.insert(0, session)

    # --- queries ---

    def get(self, session_id: str) -> QuizSession:
        require_uuid(session_id, "session id")
        for session in self.sessions:
            if session.id == session_id:
                return session
        session = must_succeed(QuizSessionStoreDB.get, session_id)
        if not session or session.user_id != self.user_id:
            raise NotFoundError("Quiz session not found")
        self._replace(session)
        return session

    def active_sessions(self) -> list[QuizSession]:
        return [s for s in self.sessions if s.status == "active"]

    def completed_sessions(self) -> list[QuizSession]:
        return [s for s in self.sessions if s.status == "completed"]

    def session_for_assignment(self, assignment_id: str) -> Optional[QuizSession]:
        for session in self.sessions:
            if session.assignment_id == assignment_id:
                return session
        return None

    # --- lifecycle ---

    def create(self, *, questions: list[dict], session_type: str = "custom",
               title: str = "", description: str = "",
               assignment_id: Optional[str] = None,
               estimated_minutes: int = 0) -> QuizSession:
        if session_type not in SESSION_TYPES:
            raise ValidationError(f"Invalid quiz type: {session_type}")
        if not questions:
            raise ValidationError("A quiz needs at least one question")
        if session_type == "study-assignment" and not assignment_id:
            raise ValidationError("Study assignment quizzes need an assignment_id")

        team_id = self.team_id
        if assignment_id:
            require_uuid(assignment_id, "assignment_id")
            assignment = must_succeed(StudyAssignmentStoreDB.get, assignment_id)
            if not assignment:
                raise NotFoundError("Study assignment not found")
            if assignment.user_id != self.user_id:
                raise AuthorizationError("This assignment belongs to another user")
            team_id = assignment.team_id or team_id

        max_points = sum(int(q.get("points", 0) or 0) for q in questions)
        session = must_succeed(
            self.store.create,
            questions=questions,
            session_type=session_type,
            title=title,
            description=description,
            team_id=team_id,
            assignment_id=assignment_id,
            max_points=max_points,
            estimated_minutes=estimated_minutes,
        )
        self.sessions.insert(0, session)
        logger.info("Quiz session created: user=%s session=%s type=%s questions=%d",
                    self.user_id, session.id, session_type, len(questions))
        return session

    @staticmethod
    def _recompute_totals(session: QuizSession) -> None:
        session.total_points = sum(r.points_earned for r in session.results)
        session.total_actual_time_spent_seconds = sum(r.time_spent for r in session.results)

    def _parse_result(self, session: QuizSession, data: dict[str, Any]) -> QuizResult:
        if not isinstance(data, dict) or not data.get("question_id"):
            raise ValidationError("Each result needs a question_id")
        result = QuizResult.from_dict(data)
        if result.points_earned < 0 or result.time_spent < 0:
            raise ValidationError("points_earned and time_spent must be non-negative")
        if not result.points_possible:
            for q in session.questions:
                if str(q.get("id")) == result.question_id:
                    result.points_possible = int(q.get("points", 0) or 0)
                    break
        if result.points_possible and result.points_earned > result.points_possible:
            raise ValidationError("points_earned exceeds the question's points")
        result.answered_at = result.answered_at or utc_now().isoformat()
        return result

    def record_answer(self, session_id: str, data: dict[str, Any]) -> QuizSession:
        """Append one result, advance the index and re-derive the totals."""
        session = self.get(session_id)
        if session.is_completed:
            raise ValidationError("Completed quiz sessions cannot be changed")
        result = self._parse_result(session, data)

        updated = replace(session, results=[*session.results, result])
        updated.current_question_index = len(updated.results)
        self._recompute_totals(updated)
        if not must_succeed(QuizSessionStoreDB.save_progress, updated):
            best_effort(self.load, self.sessions)
            raise ValidationError("Completed quiz sessions cannot be changed")
        self._replace(updated)
        best_effort(self.store.log_answer, None, updated.id, result)
        return updated

    def complete(self, session_id: str, completed_at: Optional[datetime] = None,
                 final_results: Optional[list[dict]] = None) -> CompletionOutcome:
        session = self.get(session_id)
        if session.is_completed:
            raise ValidationError("Quiz session is already completed")

        new_results: list[QuizResult] = []
        if final_results is not None:
            new_results = [self._parse_result(session, r) for r in final_results[len(session.results):]]

        # The cached session only changes once the row is written
        finished = parse_timestamp(completed_at) or utc_now()
        session = replace(
            session,
            results=[*session.results, *new_results],
            status="completed",
            completed_at=finished.astimezone(timezone.utc).isoformat(),
        )
        if final_results is not None:
            session.current_question_index = len(session.results)
        self._recompute_totals(session)
        if not must_succeed(QuizSessionStoreDB.mark_completed, session):
            best_effort(self.load, self.sessions)
            raise ValidationError("Quiz session is already completed")
        self._replace(session)
        for result in new_results:
            best_effort(self.store.log_answer, None, session.id, result)
        outcome = CompletionOutcome(session=session)

        if session.assignment_id:
            outcome.bonus_xp = best_effort(assignment_bonus_xp, 0, session, self.bonus_xp)
            if outcome.bonus_xp:
                best_effort(QuizSessionStoreDB.set_bonus_xp, None, session.id, outcome.bonus_xp)
                session.bonus_xp = outcome.bonus_xp
                outcome.notifications.append(Notification(
                    id="bonus-xp",
                    title="On-time bonus!",
                    description=f"You earned {outcome.bonus_xp} bonus XP for completing "
                                "your study assignment on time!",
                    kind="bonus_xp",
                    icon="clock",
                ))
            best_effort(StudyAssignmentStoreDB.mark_completed, None,
                        session.assignment_id, session.id, session.completed_at)

        outcome.stats = best_effort(recompute_user_stats, None, self.user_id)
        if outcome.stats is not None:
            outcome.unlocked = best_effort(evaluate_achievements, [], self.user_id, outcome.stats)
        for achievement in outcome.unlocked:
            outcome.notifications.append(Notification(
                id=achievement.id,
                title=f"Achievement unlocked: {achievement.name}",
                description=achievement.description,
                icon=achievement.icon,
            ))

        logger.info("Quiz completed: user=%s session=%s points=%s/%s bonus=%s",
                    self.user_id, session.id, session.total_points, session.max_points,
                    outcome.bonus_xp)
        return outcome

    def delete(self, session_id: str, actor_id: Optional[int] = None) -> dict:
        """Delete through the procedure, then re-fetch the session list."""
        require_uuid(session_id, "session id")
        result = must_succeed(delete_quiz_and_adjust_gamification, session_id,
                              actor_id if actor_id is not None else self.user_id)
        best_effort(self.load, self.sessions)
        return result


def update_quiz_approval_status(session_id: str, status: str, actor_id: int,
                                actor_is_admin: bool = False) -> QuizSession:
    """Approve or reject a completed team session. Team owners and admins only."""
    require_uuid(session_id, "session id")
    if status not in APPROVAL_STATUSES:
        raise ValidationError(f"Invalid approval status: {status}")
    session = must_succeed(QuizSessionStoreDB.get, session_id)
    if not session:
        raise NotFoundError("Quiz session not found")
    if not actor_is_admin:
        membership = TeamStoreDB.membership(actor_id)
        if (not membership or not session.team_id
                or membership["team_id"] != session.team_id
                or membership["role"] not in ("owner", "admin")
                or membership["status"] != "active"):
            raise AuthorizationError("Only team owners and admins can review quizzes")
    if not session.is_completed:
        raise ValidationError("Only completed quiz sessions can be reviewed")
    must_succeed(QuizSessionStoreDB.set_approval_status, session_id, status)
    session.approval_status = status
    logger.info("Approval status set: session=%s status=%s by user=%s", session_id, status, actor_id)
    return session


class AppState:
    """Per-user application state: auth, then questions, then sessions.

    Built once per request (see get_app_state) and torn down on logout.
    """

    def __init__(self, user):
        self.user = user
        self.questions: Optional[QuestionCatalog] = None
        self.sessions: Optional[QuizSessionState] = None

    def initialize(self, tier_access: list[str], bonus_xp: int = STUDY_SCHEDULE_BONUS_XP) -> AppState:
        if not getattr(self.user, "is_authenticated", False):
            raise AuthorizationError("Authentication required")
        self.questions = QuestionCatalog(tier_access)
        self.questions.load()
        self.sessions = QuizSessionState(self.user.id, getattr(self.user, "team_id", None), bonus_xp)
        self.sessions.load()
        return self

    def teardown(self) -> None:
        if self.sessions is not None:
            self.sessions.clear()
        if self.questions is not None:
            self.questions.clear()
        self.sessions = None
        self.questions = None


def get_app_state() -> AppState:
    """Request-scoped AppState for the logged-in user."""
    if "app_state" not in g:
        from flask import current_app
        from flask_login import current_user
        from subscription_store import SubscriptionStoreDB

        tiers = SubscriptionStoreDB(current_user.id).tier_access() if current_user.is_authenticated else []
        g.app_state = AppState(current_user).initialize(
            tiers, current_app.config.get("STUDY_SCHEDULE_BONUS_XP", STUDY_SCHEDULE_BONUS_XP),
        )
    return g.app_state


def teardown_app_state() -> None:
    state = g.pop("app_state", None)
    if state is not None:
        state.teardown()
