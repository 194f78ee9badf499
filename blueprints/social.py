"""Team, membership, invitation and leaderboard routes."""

from __future__ import annotations

import logging
import sqlite3

from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required

from audit import log_event
from db_stores import TeamStoreDB
from email_service import EmailService
from helpers import can_modify_team_member, current_user_id, date_range_args, json_body, team_manager_required
from models import MEMBER_STATUSES, parse_timestamp, utc_now
from procedures import get_team_leaderboard_data, get_team_members_for_user
from resilience import AuthorizationError, NotFoundError, ValidationError, must_succeed, require_uuid
from subscription_store import PlanSettingsDB, SubscriptionStoreDB

logger = logging.getLogger(__name__)

bp = Blueprint("social", __name__)

INVITABLE_ROLES = ("admin", "member")


def _team_capacity(team: dict) -> int:
    """Seat limit from the team owner's plan."""
    owner_plan = SubscriptionStoreDB(team["owner_id"]).plan_id()
    return PlanSettingsDB.get(owner_plan)["max_team_members"]


# ── Teams ─────────────────────────────────────────────────

@bp.route("/api/teams", methods=["POST"])
@login_required
def api_create_team():
    data = json_body()
    name = str(data.get("name", "")).strip()
    if not name:
        raise ValidationError("Team name is required")
    if current_user.team_id:
        raise ValidationError("You already belong to a team")
    team = must_succeed(TeamStoreDB.create, name, current_user.id)
    log_event("team_created", current_user.id, f"team={team['id']}")
    return jsonify({"team": team}), 201


@bp.route("/api/team")
@login_required
def api_my_team():
    if not current_user.team_id:
        return jsonify({"team": None, "members": []})
    team = must_succeed(TeamStoreDB.get, current_user.team_id)
    members = must_succeed(get_team_members_for_user, current_user_id())
    return jsonify({"team": team, "role": current_user.team_role, "members": members})


@bp.route("/api/teams/<team_id>/leaderboard")
@login_required
def api_leaderboard(team_id):
    require_uuid(team_id, "team id")
    start, end = date_range_args()
    board = must_succeed(get_team_leaderboard_data, team_id, current_user_id(), start, end)
    return jsonify({"leaderboard": board})


# ── Invitations ───────────────────────────────────────────

@bp.route("/api/teams/<team_id>/invitations")
@login_required
@team_manager_required
def api_invitations(team_id):
    return jsonify({"invitations": must_succeed(TeamStoreDB.pending_invitations, team_id)})


@bp.route("/api/teams/<team_id>/invitations", methods=["POST"])
@login_required
@team_manager_required
def api_invite(team_id):
    data = json_body()
    email = str(data.get("email", "")).strip().lower()
    role = data.get("role", "member")
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if role not in INVITABLE_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(INVITABLE_ROLES)}")
    if role == "admin" and current_user.team_role != "owner" and not current_user.is_admin:
        raise AuthorizationError("Only the team owner can invite admins")

    team = must_succeed(TeamStoreDB.get, team_id)
    if not team:
        raise NotFoundError("Team not found")
    seats = TeamStoreDB.active_member_count(team_id) + len(TeamStoreDB.pending_invitations(team_id))
    if seats >= _team_capacity(team):
        raise ValidationError("Team is at its member limit for the current plan")

    expiry_days = current_app.config.get("INVITATION_EXPIRY_DAYS", 7)
    invitation = must_succeed(TeamStoreDB.create_invitation, team_id, email, role,
                              current_user.id, expiry_days)
    base = current_app.config.get("BASE_URL", "http://localhost:5001")
    EmailService.send_team_invitation(email, team["name"], f"{base}/invitations/{invitation['token']}",
                                      expiry_days)
    log_event("team_invite", current_user.id, f"team={team_id} email={email} role={role}")

    invitation.pop("token")
    return jsonify({"invitation": invitation}), 201


@bp.route("/api/invitations/<token>/accept", methods=["POST"])
@login_required
def api_accept_invitation(token):
    invitation = must_succeed(TeamStoreDB.get_invitation, token)
    if not invitation or invitation["accepted_at"]:
        raise NotFoundError("Invitation not found")
    if parse_timestamp(invitation["expires_at"]) < utc_now():
        raise ValidationError("This invitation has expired")
    if invitation["email"].lower() != (current_user.email or "").lower():
        raise AuthorizationError("This invitation was sent to a different email address")
    if current_user.team_id:
        raise ValidationError("You already belong to a team")

    try:
        TeamStoreDB.add_member(invitation["team_id"], current_user.id, invitation["role"])
    except sqlite3.IntegrityError:
        raise ValidationError("You already belong to a team") from None
    must_succeed(TeamStoreDB.mark_invitation_accepted, invitation["id"])
    log_event("team_join", current_user.id, f"team={invitation['team_id']}")
    return jsonify({"success": True, "team_id": invitation["team_id"], "role": invitation["role"]})


# ── Members ───────────────────────────────────────────────

def _member_or_404(team_id: str, user_id: int) -> dict:
    membership = TeamStoreDB.membership(user_id)
    if not membership or membership["team_id"] != team_id:
        raise NotFoundError("Team member not found")
    return membership


@bp.route("/api/teams/<team_id>/members/<int:user_id>", methods=["PATCH"])
@login_required
@team_manager_required
def api_update_member(team_id, user_id):
    data = json_body()
    role = data.get("role")
    status = data.get("status")
    if role is not None and role not in INVITABLE_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(INVITABLE_ROLES)}")
    if status is not None and status not in MEMBER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(MEMBER_STATUSES)}")
    if role is None and status is None:
        raise ValidationError("Nothing to update")

    membership = _member_or_404(team_id, user_id)
    if not can_modify_team_member(current_user, membership["role"], user_id):
        raise AuthorizationError("You cannot modify this team member")
    if role == "admin" and current_user.team_role != "owner" and not current_user.is_admin:
        raise AuthorizationError("Only the team owner can promote admins")

    must_succeed(TeamStoreDB.update_member, team_id, user_id, role=role, status=status)
    log_event("team_member_updated", current_user.id,
              f"team={team_id} user={user_id} role={role} status={status}")
    return jsonify({"success": True, "member": _member_or_404(team_id, user_id)})


@bp.route("/api/teams/<team_id>/members/<int:user_id>", methods=["DELETE"])
@login_required
@team_manager_required
def api_remove_member(team_id, user_id):
    membership = _member_or_404(team_id, user_id)
    if not can_modify_team_member(current_user, membership["role"], user_id):
        raise AuthorizationError("You cannot remove this team member")
    must_succeed(TeamStoreDB.remove_member, team_id, user_id)
    log_event("team_member_removed", current_user.id, f"team={team_id} user={user_id}")
    return jsonify({"success": True})
