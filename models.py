"""
Domain records for PBE Journey.

Plain dataclasses built from sqlite3 rows; stores in db_stores.py do the I/O.
JSON columns (questions, results, study_items) are decoded here.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

SESSION_TYPES = ("quick-start", "custom", "study-assignment")
SESSION_STATUSES = ("active", "completed")
APPROVAL_STATUSES = ("approved", "pending", "rejected")
TEAM_ROLES = ("owner", "admin", "member")
MEMBER_STATUSES = ("active", "pending", "suspended")
TIERS = ("free", "pro", "enterprise")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def utc_date(value: str | datetime | date | None) -> Optional[date]:
    """Truncate a timestamp (or date string) to its UTC calendar date."""
    if value is None or value == "":
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str) and len(value) == 10:
        return date.fromisoformat(value)
    return parse_timestamp(value).astimezone(timezone.utc).date()


@dataclass
class QuizResult:
    question_id: str
    points_earned: int = 0
    points_possible: int = 0
    time_spent: int = 0  # seconds
    is_correct: bool = False
    answered_at: str = ""

    @staticmethod
    def from_dict(data: dict[str, Any]) -> QuizResult:
        return QuizResult(
            question_id=str(data.get("question_id", "")),
            points_earned=int(data.get("points_earned", 0) or 0),
            points_possible=int(data.get("points_possible", 0) or 0),
            time_spent=int(data.get("time_spent", 0) or 0),
            is_correct=bool(data.get("is_correct", False)),
            answered_at=data.get("answered_at", "") or "",
        )


@dataclass
class QuizSession:
    id: str
    user_id: int
    type: str = "custom"
    title: str = ""
    description: str = ""
    team_id: Optional[str] = None
    assignment_id: Optional[str] = None
    questions: list[dict] = field(default_factory=list)
    current_question_index: int = 0
    results: list[QuizResult] = field(default_factory=list)
    status: str = "active"
    total_points: int = 0
    max_points: int = 0
    estimated_minutes: int = 0
    total_actual_time_spent_seconds: int = 0
    bonus_xp: int = 0
    approval_status: str = "approved"
    completed_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def percentage(self) -> float:
        if self.max_points <= 0:
            return 0.0
        return round(self.total_points / self.max_points * 100, 1)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["percentage"] = self.percentage
        return data

    @staticmethod
    def from_row(row) -> QuizSession:
        return QuizSession(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            title=row["title"],
            description=row["description"],
            team_id=row["team_id"],
            assignment_id=row["assignment_id"],
            questions=json.loads(row["questions"] or "[]"),
            current_question_index=row["current_question_index"],
            results=[QuizResult.from_dict(r) for r in json.loads(row["results"] or "[]")],
            status=row["status"],
            total_points=row["total_points"],
            max_points=row["max_points"],
            estimated_minutes=row["estimated_minutes"],
            total_actual_time_spent_seconds=row["total_actual_time_spent_seconds"],
            bonus_xp=row["bonus_xp"] or 0,
            approval_status=row["approval_status"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class StudyItem:
    book: str
    chapters: list[int] = field(default_factory=list)
    verses: list[int] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> StudyItem:
        return StudyItem(
            book=str(data.get("book", "")).strip(),
            chapters=[int(c) for c in data.get("chapters", []) or []],
            verses=[int(v) for v in data.get("verses", []) or []],
        )


@dataclass
class StudyAssignment:
    id: str
    user_id: int
    date: str  # YYYY-MM-DD
    team_id: Optional[str] = None
    study_items: list[StudyItem] = field(default_factory=list)
    description: str = ""
    completed: bool = False
    completed_at: str = ""
    quiz_session_id: str = ""
    created_by: Optional[int] = None
    created_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row) -> StudyAssignment:
        return StudyAssignment(
            id=row["id"],
            user_id=row["user_id"],
            date=row["date"],
            team_id=row["team_id"],
            study_items=[StudyItem.from_dict(i) for i in json.loads(row["study_items"] or "[]")],
            description=row["description"],
            completed=bool(row["completed"]),
            completed_at=row["completed_at"],
            quiz_session_id=row["quiz_session_id"],
            created_by=row["created_by"],
            created_at=row["created_at"],
        )


@dataclass
class UserStats:
    user_id: int
    total_xp: int = 0
    current_level: int = 1
    longest_streak: int = 0
    current_streak: int = 0
    last_quiz_date: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Achievement:
    id: str
    name: str
    criteria_type: str
    criteria_value: int
    description: str = ""
    icon: str = "trophy"

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row) -> Achievement:
        return Achievement(
            id=row["id"],
            name=row["name"],
            criteria_type=row["criteria_type"],
            criteria_value=row["criteria_value"],
            description=row["description"],
            icon=row["icon"],
        )


@dataclass
class Question:
    id: str
    book_of_bible: str
    chapter: int
    question: str
    answer: str
    verse: Optional[int] = None
    points: int = 1
    time_to_answer: int = 30
    tier: str = "free"

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row) -> Question:
        return Question(
            id=row["id"],
            book_of_bible=row["book_of_bible"],
            chapter=row["chapter"],
            verse=row["verse"],
            question=row["question"],
            answer=row["answer"],
            points=row["points"],
            time_to_answer=row["time_to_answer"],
            tier=row["tier"],
        )


@dataclass
class Notification:
    """Transient notice handed back to the caller, never persisted."""
    id: str
    title: str
    description: str
    kind: str = "achievement"
    icon: str = "trophy"

    def to_dict(self) -> dict:
        return asdict(self)
