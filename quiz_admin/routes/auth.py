from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from flask import (
    Blueprint,
    current_app,
    g,
    jsonify,
    make_response,
    request,
)

from ..database import get_connection, transaction
from ..session_manager import close_session, open_session
from ..utils import (
    current_timestamp,
    generate_salt,
    hash_password,
    to_isoformat,
    validate_credentials,
    verify_password,
)


LOGGER = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)

USER_ROLES = ("admin", "editor", "author")


def _json_error(message: str, status: int = 400, **payload):
    response = {"error": message}
    response.update(payload)
    return jsonify(response), status


def _json_success(payload: Dict[str, Any], status: int = 200):
    return jsonify(payload), status


def _set_session_cookie(response, token: str, expires_at):
    lifetime: timedelta = current_app.config["SESSION_LIFETIME"]
    response.set_cookie(
        current_app.config["SESSION_COOKIE_NAME"],
        token,
        max_age=int(lifetime.total_seconds()),
        expires=expires_at,
        httponly=True,
        secure=current_app.config["SESSION_COOKIE_SECURE"],
        samesite="Lax",
        path="/",
    )


def _clear_session_cookie(response):
    response.delete_cookie(
        current_app.config["SESSION_COOKIE_NAME"],
        path="/",
    )


def serialize_user(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "username": row["username"],
        "role": row["role"],
        "lastActive": row.get("last_active"),
    }


def _fetch_user_by_username(username: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    row = conn.execute(
        "SELECT * FROM users WHERE username = ?",
        (username,),
    ).fetchone()
    return dict(row) if row else None


def _session_response(user_row: Dict[str, Any], status: int = 200):
    token, expires_at = open_session(
        user_row["id"],
        current_app.config["SESSION_LIFETIME"],
    )
    response = make_response(
        jsonify(
            {
                "user": serialize_user(user_row),
                "sessionExpiresAt": to_isoformat(expires_at),
            }
        ),
        status,
    )
    _set_session_cookie(response, token, expires_at)
    return response


@auth_bp.route("/register", methods=["POST"])
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    ok, message = validate_credentials(username, password)
    if not ok:
        return _json_error(message, status=400)

    if _fetch_user_by_username(username):
        return _json_error("Username already exists.", status=409)

    salt = generate_salt()
    password_hash = hash_password(password, salt)
    now = to_isoformat(current_timestamp())

    with transaction() as conn:
        user_total = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        # The first account administers the instance.
        role = "admin" if user_total == 0 else "author"
        conn.execute(
            """
            INSERT INTO users (username, salt, password_hash, role, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (username, salt, password_hash, role, now, now),
        )

    user = _fetch_user_by_username(username)
    LOGGER.info("Registered user %s with role %s.", username, user["role"])
    return _session_response(user, status=201)


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        return _json_error("Username and password are required.", status=400)

    user = _fetch_user_by_username(username)
    if not user or not verify_password(password, user["salt"], user["password_hash"]):
        LOGGER.warning("Failed login attempt for %s.", username)
        return _json_error("Invalid credentials.", status=401)

    return _session_response(user)


@auth_bp.route("/user", methods=["GET"])
def get_user():
    if not g.get("current_user") or not g.get("current_session"):
        return _json_error("Not authenticated.", status=401)

    payload = {
        "user": serialize_user(g.current_user),
        "sessionExpiresAt": to_isoformat(g.current_session["expires_at"]),
    }
    return _json_success(payload)


@auth_bp.route("/users/<int:user_id>/role", methods=["PUT"])
def update_role(user_id: int):
    current = g.get("current_user")
    if not current:
        return _json_error("Not authenticated.", status=401)
    if current["role"] != "admin":
        return _json_error("Only administrators can change roles.", status=403)

    data = request.get_json(silent=True) or {}
    role = data.get("role")
    if role not in USER_ROLES:
        return _json_error(f"role must be one of: {', '.join(USER_ROLES)}.", status=400)

    with transaction() as conn:
        cursor = conn.execute(
            "UPDATE users SET role = ?, updated_at = ? WHERE id = ?",
            (role, to_isoformat(current_timestamp()), user_id),
        )
        if cursor.rowcount == 0:
            return _json_error("User not found.", status=404)

    row = get_connection().execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return _json_success({"user": serialize_user(dict(row))})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    token = request.cookies.get(current_app.config["SESSION_COOKIE_NAME"])
    if token:
        close_session(token)

    response = make_response(jsonify({"message": "Logged out."}))
    _clear_session_cookie(response)
    return response
