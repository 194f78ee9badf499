"""Question selection: tier access, study-item filtering and quiz assembly."""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from typing import Optional

from db_stores import QuestionBankDB
from models import Question, StudyItem
from resilience import ValidationError

logger = logging.getLogger(__name__)

TIER_ORDER = ["free", "pro", "enterprise"]
QUICK_START_QUESTION_COUNT = 10


def tiers_up_to(tier: str) -> list[str]:
    """All tiers at or below ``tier`` in the hierarchy."""
    if tier not in TIER_ORDER:
        return ["free"]
    return TIER_ORDER[: TIER_ORDER.index(tier) + 1]


def accessible_questions(questions: Iterable[Question], tier_access: list[str]) -> list[Question]:
    allowed = set(tier_access or ["free"])
    return [q for q in questions if q.tier in allowed]


def filter_questions_by_study_items(questions: Iterable[Question],
                                    study_items: Iterable[StudyItem]) -> list[Question]:
    """Questions matching any study item's book, chapters and (optional) verses.

    A question without a verse counts as verse 1. Each question appears once.
    """
    selected: dict[str, Question] = {}
    questions = list(questions)
    for item in study_items:
        for q in questions:
            if q.book_of_bible != item.book:
                continue
            if item.chapters and q.chapter not in item.chapters:
                continue
            if item.verses and (q.verse or 1) not in item.verses:
                continue
            selected.setdefault(q.id, q)
    return list(selected.values())


def format_number_ranges(numbers: Iterable[int]) -> str:
    """[1, 2, 3, 5, 7, 8] -> "1-3, 5, 7-8"."""
    nums = sorted(set(int(n) for n in numbers))
    if not nums:
        return ""
    parts = []
    start = prev = nums[0]
    for n in nums[1:]:
        if n == prev + 1:
            prev = n
            continue
        parts.append(f"{start}-{prev}" if start != prev else str(start))
        start = prev = n
    parts.append(f"{start}-{prev}" if start != prev else str(start))
    return ", ".join(parts)


def format_study_items(study_items: Iterable[StudyItem]) -> str:
    """Human-readable summary, e.g. "Daniel 1-3; Esther 2:1-4"."""
    chunks = []
    for item in study_items:
        text = item.book
        if item.chapters:
            text += f" {format_number_ranges(item.chapters)}"
            if item.verses and len(item.chapters) == 1:
                text += f":{format_number_ranges(item.verses)}"
        chunks.append(text)
    return "; ".join(chunks)


def question_payload(q: Question) -> dict:
    """The per-question snapshot stored on a quiz session."""
    return {
        "id": q.id,
        "book_of_bible": q.book_of_bible,
        "chapter": q.chapter,
        "verse": q.verse,
        "question": q.question,
        "answer": q.answer,
        "points": q.points,
        "time_to_answer": q.time_to_answer,
        "tier": q.tier,
    }


def estimate_minutes(questions: list[Question]) -> int:
    seconds = sum(q.time_to_answer for q in questions)
    return max(1, round(seconds / 60)) if questions else 0


def build_quick_start_quiz(pool: list[Question], count: int = QUICK_START_QUESTION_COUNT,
                           rng: Optional[random.Random] = None) -> list[Question]:
    if not pool:
        raise ValidationError("No questions available for your plan")
    rng = rng or random.Random()
    return rng.sample(pool, min(count, len(pool)))


def build_custom_quiz(pool: list[Question], question_ids: list[str], max_questions: int) -> list[Question]:
    if not question_ids:
        raise ValidationError("Select at least one question")
    if len(question_ids) > max_questions:
        raise ValidationError(f"Your plan allows at most {max_questions} questions per custom quiz")
    by_id = {q.id: q for q in pool}
    missing = [qid for qid in question_ids if qid not in by_id]
    if missing:
        raise ValidationError(f"Question(s) not available: {', '.join(missing)}")
    return [by_id[qid] for qid in dict.fromkeys(question_ids)]


class QuestionCatalog:
    """Questions the current user may draw from, loaded once per state holder."""

    def __init__(self, tier_access: list[str]):
        self.tier_access = list(tier_access or ["free"])
        self.questions: list[Question] = []
        self.loaded = False

    def load(self) -> None:
        self.questions = QuestionBankDB.search(tiers=self.tier_access)
        self.loaded = True
        logger.debug("Loaded %d question(s) for tiers %s", len(self.questions), self.tier_access)

    def clear(self) -> None:
        self.questions = []
        self.loaded = False

    def for_study_items(self, study_items: list[StudyItem]) -> list[Question]:
        return filter_questions_by_study_items(self.questions, study_items)
