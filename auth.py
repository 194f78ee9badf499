"""
User Authentication — Flask-Login blueprint.

JSON routes for signup, login, logout, password reset and the current user.
Uses werkzeug.security for password hashing and the per-action limits in
rate_limiting for brute-force protection.
"""

from __future__ import annotations

import math
import secrets
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import LoginManager, UserMixin, current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from audit import log_event
from database import get_db
from email_service import EmailService
from models import parse_timestamp, utc_now
from rate_limiting import check_rate_limit

LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15
RESET_TOKEN_HOURS = 1

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row (plus team membership) for Flask-Login."""

    def __init__(self, id: int, name: str, email: str, role: str = "user",
                 plan_id: str = "free", team_id: str | None = None,
                 team_role: str | None = None, team_status: str | None = None):
        self.id = id
        self.name = name
        self.email = email
        self.role = role
        self.plan_id = plan_id
        self.team_id = team_id
        self.team_role = team_role
        self.team_status = team_status

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "plan_id": self.plan_id,
            "team_id": self.team_id,
            "team_role": self.team_role,
            "team_status": self.team_status,
        }

    @staticmethod
    def get(user_id: int):
        db = get_db()
        row = db.execute(
            "SELECT u.id, u.name, u.email, u.role, u.plan_id, tm.team_id, "
            "tm.role AS team_role, tm.status AS team_status "
            "FROM users u LEFT JOIN team_members tm ON tm.user_id = u.id WHERE u.id = ?",
            (user_id,),
        ).fetchone()
        if row:
            return User(row["id"], row["name"], row["email"], row["role"], row["plan_id"],
                        row["team_id"], row["team_role"], row["team_status"])
        return None

    @staticmethod
    def get_by_email(email: str):
        db = get_db()
        return db.execute(
            "SELECT id, name, email, password_hash, role, login_attempts, locked_until "
            "FROM users WHERE email = ?", (email,),
        ).fetchone()


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required"}), 401


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


def _rate_limited(action: str, identifier: str):
    result = check_rate_limit(action, identifier)
    if result.allowed:
        return None
    resp = jsonify({"error": "Too many attempts. Please try again later.",
                    "retry_after": result.retry_after})
    resp.headers["Retry-After"] = str(result.retry_after)
    return resp, 429


def create_user(name: str, email: str, password: str, role: str = "user") -> int:
    db = get_db()
    cur = db.execute(
        "INSERT INTO users (name, email, password_hash, role, created_at) VALUES (?, ?, ?, ?, ?)",
        (name, email, generate_password_hash(password), role, utc_now().isoformat()),
    )
    db.execute("INSERT OR IGNORE INTO user_stats (user_id) VALUES (?)", (cur.lastrowid,))
    db.commit()
    return cur.lastrowid


@auth_bp.route("/api/auth/signup", methods=["POST"])
def signup():
    data = request.get_json(silent=True) or {}
    name = str(data.get("name", "")).strip()
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))

    limited = _rate_limited("signup", email or request.remote_addr or "")
    if limited:
        return limited

    if not name or not email or not password:
        return jsonify({"error": "Name, email and password are required."}), 400

    pw_error = _validate_password(password)
    if pw_error:
        return jsonify({"error": pw_error}), 400

    if User.get_by_email(email):
        return jsonify({"error": "An account with this email already exists."}), 409

    user_id = create_user(name, email, password)
    log_event("signup", user_id, f"email={email}")
    user = User.get(user_id)
    login_user(user, remember=True)
    return jsonify({"user": user.to_dict()}), 201


@auth_bp.route("/api/auth/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    email = str(data.get("email", "")).strip().lower()
    password = str(data.get("password", ""))

    limited = _rate_limited("login", email or request.remote_addr or "")
    if limited:
        return limited

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    row = User.get_by_email(email)
    if not row:
        return jsonify({"error": "Invalid email or password."}), 401

    lock_time = parse_timestamp(row["locked_until"]) if row["locked_until"] else None
    if lock_time:
        remaining = (lock_time - utc_now()).total_seconds()
        if remaining > 0:
            mins = math.ceil(remaining / 60)
            log_event("login_locked", row["id"], f"email={email}")
            return jsonify({"error": f"Account temporarily locked. Try again in {mins} minute(s)."}), 423

    db = get_db()
    if not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        attempts = (row["login_attempts"] or 0) + 1
        if attempts >= LOCKOUT_THRESHOLD:
            db.execute(
                "UPDATE users SET login_attempts=?, locked_until=? WHERE id=?",
                (attempts, (utc_now() + timedelta(minutes=LOCKOUT_MINUTES)).isoformat(), row["id"]),
            )
        else:
            db.execute("UPDATE users SET login_attempts=? WHERE id=?", (attempts, row["id"]))
        db.commit()
        log_event("login_failed", row["id"], f"email={email} attempts={attempts}")
        return jsonify({"error": "Invalid email or password."}), 401

    db.execute("UPDATE users SET login_attempts=0, locked_until='' WHERE id=?", (row["id"],))
    db.commit()

    user = User.get(row["id"])
    login_user(user, remember=bool(data.get("remember", True)))
    log_event("login_success", row["id"])
    return jsonify({"user": user.to_dict()})


@auth_bp.route("/api/auth/logout", methods=["POST"])
def logout():
    from quiz_sessions import teardown_app_state

    uid = current_user.id if current_user.is_authenticated else None
    log_event("logout", uid)
    teardown_app_state()
    logout_user()
    return jsonify({"success": True})


@auth_bp.route("/api/auth/me")
@login_required
def me():
    from subscription_store import SubscriptionStoreDB

    data = current_user.to_dict()
    data["plan"] = SubscriptionStoreDB(current_user.id).current_plan()
    return jsonify({"user": data})


@auth_bp.route("/api/auth/forgot-password", methods=["POST"])
def forgot_password():
    data = request.get_json(silent=True) or {}
    email = str(data.get("email", "")).strip().lower()

    limited = _rate_limited("password_reset", email or request.remote_addr or "")
    if limited:
        return limited

    row = User.get_by_email(email) if email else None
    if row:
        token = secrets.token_urlsafe(32)
        expires = (utc_now() + timedelta(hours=RESET_TOKEN_HOURS)).isoformat()
        db = get_db()
        db.execute(
            "UPDATE users SET reset_token=?, reset_token_expires=? WHERE id=?",
            (generate_password_hash(token), expires, row["id"]),
        )
        db.commit()

        base = current_app.config.get("BASE_URL", "http://localhost:5001")
        EmailService.send_password_reset(email, f"{base}/reset-password/{row['id']}/{token}")
        log_event("password_reset_request", row["id"])

    # Same answer whether or not the account exists
    return jsonify({"message": "If an account exists with that email, a reset link has been sent."})


@auth_bp.route("/api/auth/reset-password", methods=["POST"])
def reset_password():
    data = request.get_json(silent=True) or {}
    token = str(data.get("token", ""))
    password = str(data.get("password", ""))
    try:
        user_id = int(data.get("user_id"))
    except (TypeError, ValueError):
        return jsonify({"error": "Invalid or expired reset link."}), 400

    limited = _rate_limited("password_reset", str(user_id))
    if limited:
        return limited

    db = get_db()
    row = db.execute(
        "SELECT id, reset_token, reset_token_expires FROM users WHERE id=?", (user_id,),
    ).fetchone()
    if not row or not row["reset_token"] or not check_password_hash(row["reset_token"], token):
        return jsonify({"error": "Invalid or expired reset link."}), 400

    expires = parse_timestamp(row["reset_token_expires"]) if row["reset_token_expires"] else None
    if not expires or utc_now() > expires:
        return jsonify({"error": "This reset link has expired."}), 400

    pw_error = _validate_password(password)
    if pw_error:
        return jsonify({"error": pw_error}), 400

    db.execute(
        "UPDATE users SET password_hash=?, reset_token='', reset_token_expires='', "
        "login_attempts=0, locked_until='' WHERE id=?",
        (generate_password_hash(password), user_id),
    )
    db.commit()
    log_event("password_reset_complete", user_id)
    return jsonify({"success": True})
