from __future__ import annotations

import logging
from datetime import date
from functools import wraps
from typing import Any, Dict, Optional

from flask import Blueprint, g, jsonify, request

from ..database import get_connection, transaction
from ..package_tree import copy_template_rounds, fetch_package, serialize_package
from ..utils import current_timestamp, parse_int, to_isoformat


LOGGER = logging.getLogger(__name__)

packages_bp = Blueprint("packages", __name__)

# JSON key -> column
UPDATABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "playDate": "play_date",
    "authorId": "author_id",
}


def _json_error(message: str, status: int = 400, **payload):
    response = {"error": message}
    response.update(payload)
    return jsonify(response), status


def _json_success(payload: Any, status: int = 200):
    return jsonify(payload), status


def _require_auth(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not g.get("current_user"):
            return _json_error("Not authenticated.", status=401)
        return func(*args, **kwargs)

    return wrapper


def _can_access(row) -> bool:
    user = g.current_user
    return user["role"] == "admin" or row["author_id"] == user["id"]


def _get_owned_package(package_id: int):
    row = get_connection().execute(
        "SELECT * FROM packages WHERE id = ?", (package_id,)
    ).fetchone()
    # Callers without access see the same answer as for a missing package.
    if row is None or not _can_access(row):
        return None, _json_error("Package not found.", status=404)
    return row, None


def _normalize_play_date(value: Any) -> tuple[Optional[str], Optional[str]]:
    if value in (None, ""):
        return None, None
    if not isinstance(value, str):
        return None, "playDate must be an ISO date string."
    try:
        return date.fromisoformat(value[:10]).isoformat(), None
    except ValueError:
        return None, "playDate must be an ISO date string."


@packages_bp.route("/packages", methods=["GET"])
@_require_auth
def list_packages():
    conn = get_connection()
    user = g.current_user
    if user["role"] == "admin":
        rows = conn.execute(
            "SELECT * FROM packages ORDER BY created_at DESC, id DESC"
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM packages WHERE author_id = ? ORDER BY created_at DESC, id DESC",
            (user["id"],),
        ).fetchall()
    packages = [serialize_package(conn, row, with_rounds=False) for row in rows]
    return _json_success(packages)


@packages_bp.route("/packages", methods=["POST"])
@_require_auth
def create_package():
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    if not title:
        return _json_error("title is required.", status=400)

    play_date, message = _normalize_play_date(data.get("playDate"))
    if message:
        return _json_error(message, status=400)

    template_id = None
    if data.get("templateId") is not None:
        template_id = parse_int(data.get("templateId"))
        if template_id is None:
            return _json_error("templateId must be an integer.", status=400)
        template = get_connection().execute(
            "SELECT id FROM templates WHERE id = ?", (template_id,)
        ).fetchone()
        if template is None:
            return _json_error("Template not found.", status=404)

    now = to_isoformat(current_timestamp())
    with transaction() as conn:
        cursor = conn.execute(
            """
            INSERT INTO packages (title, description, play_date, template_id, author_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                title,
                data.get("description") or "",
                play_date,
                template_id,
                g.current_user["id"],
                now,
                now,
            ),
        )
        package_id = cursor.lastrowid
        if template_id is not None:
            copied = copy_template_rounds(conn, template_id, package_id)
            LOGGER.info("Package %s created from template %s with %s rounds.", package_id, template_id, copied)

    return _json_success(fetch_package(get_connection(), package_id), status=201)


@packages_bp.route("/packages/<int:package_id>", methods=["GET"])
@_require_auth
def get_package(package_id: int):
    row, error = _get_owned_package(package_id)
    if error:
        return error
    return _json_success(serialize_package(get_connection(), row))


@packages_bp.route("/packages/<int:package_id>", methods=["PUT"])
@_require_auth
def update_package(package_id: int):
    row, error = _get_owned_package(package_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    updates: Dict[str, Any] = {}
    for key, column in UPDATABLE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if key == "title":
            value = (value or "").strip()
            if not value:
                return _json_error("title cannot be empty.", status=400)
        elif key == "playDate":
            value, message = _normalize_play_date(value)
            if message:
                return _json_error(message, status=400)
        elif key == "authorId":
            value = parse_int(value)
            if value is None:
                return _json_error("authorId must be an integer.", status=400)
            author = get_connection().execute(
                "SELECT id FROM users WHERE id = ?", (value,)
            ).fetchone()
            if author is None:
                return _json_error("Author not found.", status=404)
        updates[column] = value

    if not updates:
        return _json_error("No fields to update.", status=400)

    updates["updated_at"] = to_isoformat(current_timestamp())
    assignments = ", ".join(f"{column} = ?" for column in updates.keys())
    with transaction() as conn:
        conn.execute(
            f"UPDATE packages SET {assignments} WHERE id = ?",
            list(updates.values()) + [package_id],
        )

    return _json_success(fetch_package(get_connection(), package_id))


@packages_bp.route("/packages/<int:package_id>", methods=["DELETE"])
@_require_auth
def delete_package(package_id: int):
    row, error = _get_owned_package(package_id)
    if error:
        return error

    with transaction() as conn:
        conn.execute("DELETE FROM packages WHERE id = ?", (package_id,))

    return _json_success({"success": True})
