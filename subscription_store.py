"""Subscription Plans & Feature Gating.

Plans are free < pro < enterprise. Each plan's settings row decides which
question tiers a user may draw from, the custom quiz size, team capacity and
which quiz modes and analytics are unlocked. Provides the @requires_feature
decorator for endpoint gating.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from functools import wraps

from flask import jsonify
from flask_login import current_user

from database import get_db

logger = logging.getLogger(__name__)

PLAN_ORDER = ["free", "pro", "enterprise"]

PLAN_DISPLAY = {
    "free": "Free",
    "pro": "Pro",
    "enterprise": "Enterprise",
}

FEATURES = (
    "allow_quick_start_quiz",
    "allow_create_own_quiz",
    "allow_study_schedule_quiz",
    "allow_analytics_access",
)

_INT_SETTINGS = ("max_questions_custom_quiz", "max_team_members")

DEFAULT_SETTINGS = {
    "plan_id": "free",
    "name": "Free",
    "price_monthly": 0,
    "max_questions_custom_quiz": 10,
    "max_team_members": 5,
    "question_tier_access": ["free"],
    "allow_quick_start_quiz": True,
    "allow_create_own_quiz": True,
    "allow_study_schedule_quiz": False,
    "allow_analytics_access": False,
}


def _settings_from_row(row) -> dict:
    data = dict(row)
    data["question_tier_access"] = json.loads(data.get("question_tier_access") or "[]")
    for flag in FEATURES:
        data[flag] = bool(data.get(flag))
    return data


class PlanSettingsDB:
    """Per-plan settings table, seeded by migration 1 and edited by admins."""

    @staticmethod
    def get(plan_id: str) -> dict:
        db = get_db()
        row = db.execute("SELECT * FROM plan_settings WHERE plan_id = ?", (plan_id,)).fetchone()
        if not row:
            logger.warning("No plan_settings row for plan %r, using free defaults", plan_id)
            return dict(DEFAULT_SETTINGS)
        return _settings_from_row(row)

    @staticmethod
    def all() -> list[dict]:
        db = get_db()
        rows = db.execute("SELECT * FROM plan_settings").fetchall()
        plans = [_settings_from_row(r) for r in rows]
        plans.sort(key=lambda p: PLAN_ORDER.index(p["plan_id"]) if p["plan_id"] in PLAN_ORDER else 99)
        return plans

    @staticmethod
    def update(plan_id: str, **fields) -> dict:
        if plan_id not in PLAN_ORDER:
            raise ValueError(f"Invalid plan: {plan_id}")
        updates: dict = {}
        for key in _INT_SETTINGS:
            if fields.get(key) is not None:
                value = int(fields[key])
                if value < 0:
                    raise ValueError(f"{key} must be non-negative")
                updates[key] = value
        for key in FEATURES:
            if fields.get(key) is not None:
                updates[key] = 1 if fields[key] else 0
        tiers = fields.get("question_tier_access")
        if tiers is not None:
            unknown = [t for t in tiers if t not in PLAN_ORDER]
            if unknown:
                raise ValueError(f"Unknown tier(s): {', '.join(unknown)}")
            updates["question_tier_access"] = json.dumps(list(tiers))
        if updates:
            updates["updated_at"] = datetime.now(timezone.utc).isoformat()
            assignments = ", ".join(f"{k} = ?" for k in updates)
            db = get_db()
            db.execute(f"UPDATE plan_settings SET {assignments} WHERE plan_id = ?",
                       (*updates.values(), plan_id))
            db.commit()
        return PlanSettingsDB.get(plan_id)


class SubscriptionStoreDB:
    """The plan a user is on, stored on the users row."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def plan_id(self) -> str:
        db = get_db()
        row = db.execute("SELECT plan_id FROM users WHERE id = ?", (self.user_id,)).fetchone()
        if not row or row["plan_id"] not in PLAN_ORDER:
            return "free"
        return row["plan_id"]

    def current_plan(self) -> dict:
        """Return the plan id, display name and its settings."""
        settings = PlanSettingsDB.get(self.plan_id())
        settings["name"] = settings.get("name") or PLAN_DISPLAY.get(settings["plan_id"], "Free")
        return settings

    def upgrade(self, plan_id: str, stripe_subscription_id: str = "") -> None:
        """Move the user onto a plan (also used for downgrades)."""
        if plan_id not in PLAN_ORDER:
            raise ValueError(f"Invalid plan: {plan_id}")
        db = get_db()
        if stripe_subscription_id:
            db.execute("UPDATE users SET plan_id = ?, stripe_subscription_id = ? WHERE id = ?",
                       (plan_id, stripe_subscription_id, self.user_id))
        else:
            db.execute("UPDATE users SET plan_id = ? WHERE id = ?", (plan_id, self.user_id))
        db.commit()
        logger.info("Plan changed: user=%s plan=%s", self.user_id, plan_id)

    def cancel(self) -> None:
        """Drop back to the free plan and forget the Stripe subscription."""
        db = get_db()
        db.execute("UPDATE users SET plan_id = 'free', stripe_subscription_id = '' WHERE id = ?",
                   (self.user_id,))
        db.commit()

    def tier_access(self) -> list[str]:
        return self.current_plan().get("question_tier_access", ["free"])

    def is_feature_allowed(self, feature: str) -> bool:
        return bool(self.current_plan().get(feature, False))


def requires_feature(feature: str):
    """Decorator that gates an endpoint on one of the plan's feature flags.

    Super admins bypass the check.
    """
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({"error": "Authentication required"}), 401
            if getattr(current_user, "is_admin", False):
                return f(*args, **kwargs)

            store = SubscriptionStoreDB(current_user.id)
            if not store.is_feature_allowed(feature):
                return jsonify({
                    "error": "Your plan does not include this feature",
                    "feature": feature,
                    "current_plan": store.plan_id(),
                }), 403
            return f(*args, **kwargs)
        return decorated
    return decorator
