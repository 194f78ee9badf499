"""Gamification rules: levels, streaks, on-time bonus and achievement criteria.

Everything here is a pure function of its arguments so the same rules serve
the completion flow, the delete procedure and the leaderboard.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Optional

from models import utc_date, utc_now

logger = logging.getLogger(__name__)

XP_PER_LEVEL = 500
STUDY_SCHEDULE_BONUS_XP = 10

CRITERIA_TYPES = ("total_quizzes_completed", "total_points_earned", "longest_streak")


# ── Levels ──────────────────────────────────────────────────

def calculate_level(total_xp: int, xp_per_level: int = XP_PER_LEVEL) -> int:
    """Level 1 covers 0..499 XP, level 2 covers 500..999, and so on."""
    return max(0, int(total_xp)) // xp_per_level + 1


def xp_progress(total_xp: int, xp_per_level: int = XP_PER_LEVEL) -> dict:
    level = calculate_level(total_xp, xp_per_level)
    level_start = (level - 1) * xp_per_level
    into_level = max(0, int(total_xp)) - level_start
    return {
        "level": level,
        "xp_into_level": into_level,
        "xp_for_next_level": level * xp_per_level,
        "xp_to_next_level": xp_per_level - into_level,
        "progress_pct": int(into_level / xp_per_level * 100),
    }


# ── Streaks ─────────────────────────────────────────────────

def _distinct_dates_desc(timestamps: Iterable) -> list[date]:
    days = {utc_date(ts) for ts in timestamps if ts}
    days.discard(None)
    return sorted(days, reverse=True)


def calculate_streaks(timestamps: Iterable, today: Optional[date] = None) -> tuple[int, int]:
    """Return (current_streak, longest_streak) from completion timestamps.

    Dates are UTC calendar days. The current streak only counts if the most
    recent active day is today or yesterday.
    """
    days = _distinct_dates_desc(timestamps)
    if not days:
        return 0, 0
    today = today or utc_now().date()

    runs: list[int] = []
    run = 1
    for prev, cur in zip(days, days[1:]):
        if prev - cur == timedelta(days=1):
            run += 1
        else:
            runs.append(run)
            run = 1
    runs.append(run)

    longest = max(runs)
    current = runs[0] if (today - days[0]).days <= 1 else 0
    return current, longest


def calculate_current_streak(timestamps: Iterable, today: Optional[date] = None) -> int:
    return calculate_streaks(timestamps, today)[0]


def calculate_longest_streak(timestamps: Iterable) -> int:
    return calculate_streaks(timestamps)[1]


# ── On-time bonus ───────────────────────────────────────────

def calculate_bonus_xp(assignment_date: str | date | None,
                       completed_at: str | datetime | None,
                       bonus: int = STUDY_SCHEDULE_BONUS_XP) -> int:
    """Bonus XP for finishing an assignment's quiz on its scheduled UTC day."""
    scheduled = utc_date(assignment_date)
    finished = utc_date(completed_at)
    if scheduled is None or finished is None:
        return 0
    return bonus if scheduled == finished else 0


# ── Achievements ────────────────────────────────────────────

def criteria_met(criteria_type: str, criteria_value: int, *,
                 total_quizzes: int, total_xp: int, longest_streak: int) -> Optional[bool]:
    """Whether an achievement's criterion holds; None for an unknown type."""
    if criteria_type == "total_quizzes_completed":
        return total_quizzes >= criteria_value
    if criteria_type == "total_points_earned":
        return total_xp >= criteria_value
    if criteria_type == "longest_streak":
        return longest_streak >= criteria_value
    logger.warning("Unknown achievement criteria type: %s", criteria_type)
    return None
