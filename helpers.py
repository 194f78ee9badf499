"""
Shared helpers used across blueprints.

Role checks and decorators live here so blueprints don't import each other.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from functools import wraps
from typing import Any, Optional

from flask import jsonify, request
from flask_login import current_user

from auth import login_manager
from resilience import ValidationError, is_valid_uuid

MANAGER_ROLES = ("owner", "admin")


def current_user_id() -> int:
    """Return the current authenticated user's ID."""
    return current_user.id


def json_body() -> dict:
    """The request's JSON object body, or ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def date_range_args() -> tuple[Optional[str], Optional[str]]:
    """``start_date``/``end_date`` query args as YYYY-MM-DD strings (or None)."""
    values = []
    for name in ("start_date", "end_date"):
        raw = request.args.get(name, "").strip()
        if raw:
            try:
                date.fromisoformat(raw[:10])
            except ValueError:
                raise ValidationError(f"{name} must be YYYY-MM-DD") from None
        values.append(raw[:10] or None)
    return values[0], values[1]


def is_super_admin(user: Any = None) -> bool:
    user = user if user is not None else current_user
    return bool(getattr(user, "is_authenticated", False)) and getattr(user, "role", "") == "admin"


def can_manage_team_members(user: Any = None, team_id: Optional[str] = None) -> bool:
    """Owners and admins of the (given) team, or super admins."""
    user = user if user is not None else current_user
    if is_super_admin(user):
        return True
    if getattr(user, "team_status", "active") != "active":
        return False
    if team_id and getattr(user, "team_id", None) != team_id:
        return False
    return getattr(user, "team_role", None) in MANAGER_ROLES


def can_modify_team_member(actor: Any, target_role: str, target_user_id: int) -> bool:
    """Whether ``actor`` may change or remove a member holding ``target_role``.

    Nobody modifies themselves or the team owner through member management.
    Admins may only modify plain members.
    """
    if target_user_id == getattr(actor, "id", None) or target_role == "owner":
        return False
    if is_super_admin(actor) or getattr(actor, "team_role", None) == "owner":
        return True
    if getattr(actor, "team_role", None) == "admin":
        return target_role == "member"
    return False


def admin_required(f: Callable) -> Callable:
    """Decorator that requires a super admin."""
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not is_super_admin():
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated


def team_manager_required(f: Callable) -> Callable:
    """Decorator that requires a team owner/admin (or super admin).

    When the route takes ``team_id``, the caller must manage that team.
    """
    @wraps(f)
    def decorated(*args: Any, **kwargs: Any) -> Any:
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        team_id = kwargs.get("team_id")
        if team_id is not None and not is_valid_uuid(team_id):
            return jsonify({"error": "Invalid team id"}), 400
        if not can_manage_team_members(current_user, team_id):
            return jsonify({"error": "Team owner or admin access required"}), 403
        return f(*args, **kwargs)
    return decorated
