"""Team study schedule: assignment validation, scheduling and chapter coverage."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from db_stores import QuizSessionStoreDB, StudyAssignmentStoreDB, TeamStoreDB
from models import StudyAssignment, StudyItem
from question_bank import format_study_items
from resilience import AuthorizationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def parse_study_items(raw: Any) -> list[StudyItem]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("study_items must be a non-empty list")
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError("Each study item must be an object")
        try:
            item = StudyItem.from_dict(entry)
        except (TypeError, ValueError):
            raise ValidationError("Chapters and verses must be integers") from None
        if not item.book:
            raise ValidationError("Each study item needs a book")
        if any(n < 1 for n in item.chapters + item.verses):
            raise ValidationError("Chapters and verses start at 1")
        items.append(item)
    return items


def parse_date(value: Any, field_name: str = "date") -> str:
    try:
        return date.fromisoformat(str(value)[:10]).isoformat()
    except ValueError:
        raise ValidationError(f"{field_name} must be YYYY-MM-DD") from None


def schedule_assignment(team_id: str, user_id: int, assignment_date: Any, study_items: Any,
                        description: str = "", created_by: Optional[int] = None) -> StudyAssignment:
    """Assign study items to a member of ``team_id`` for one day."""
    membership = TeamStoreDB.membership(user_id)
    if not membership or membership["team_id"] != team_id:
        raise NotFoundError("User is not a member of this team")
    if membership["status"] == "suspended":
        raise ValidationError("Cannot schedule study for a suspended member")

    items = parse_study_items(study_items)
    assignment = StudyAssignmentStoreDB.create(
        user_id=user_id,
        date=parse_date(assignment_date),
        study_items=items,
        team_id=team_id,
        description=description or format_study_items(items),
        created_by=created_by,
    )
    logger.info("Study assignment created: team=%s user=%s date=%s", team_id, user_id, assignment.date)
    return assignment


def get_assignment_for(assignment_id: str, user) -> StudyAssignment:
    """Load an assignment its assignee, their team managers or an admin may see."""
    assignment = StudyAssignmentStoreDB.get(assignment_id)
    if not assignment:
        raise NotFoundError("Study assignment not found")
    if assignment.user_id == user.id or getattr(user, "is_admin", False):
        return assignment
    if (assignment.team_id and assignment.team_id == getattr(user, "team_id", None)
            and getattr(user, "team_role", None) in ("owner", "admin")):
        return assignment
    raise AuthorizationError("Not authorized to view this assignment")


def required_chapters(study_items: list[StudyItem]) -> set[tuple[str, int]]:
    return {(item.book, chapter) for item in study_items for chapter in item.chapters}


def assignment_progress(assignment: StudyAssignment) -> dict:
    """Required book/chapter pairs vs those covered by completed linked sessions."""
    required = required_chapters(assignment.study_items)
    covered: set[tuple[str, int]] = set()
    for session in QuizSessionStoreDB(assignment.user_id).completed():
        if session.assignment_id != assignment.id:
            continue
        answered = {r.question_id for r in session.results}
        for q in session.questions:
            if str(q.get("id")) in answered and q.get("chapter") is not None:
                covered.add((q.get("book_of_bible"), int(q["chapter"])))

    hit = required & covered
    pct = round(len(hit) / len(required) * 100, 1) if required else (100.0 if assignment.completed else 0.0)
    return {
        "assignment_id": assignment.id,
        "completed": assignment.completed,
        "required": [{"book": b, "chapter": c} for b, c in sorted(required)],
        "covered": [{"book": b, "chapter": c} for b, c in sorted(hit)],
        "missing": [{"book": b, "chapter": c} for b, c in sorted(required - covered)],
        "coverage_pct": pct,
    }
