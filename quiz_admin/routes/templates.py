from __future__ import annotations

from functools import wraps
from typing import Any, Dict

from flask import Blueprint, g, jsonify, request

from ..database import get_connection, transaction
from ..package_tree import serialize_template
from ..utils import current_timestamp, parse_int, to_isoformat


templates_bp = Blueprint("templates", __name__)


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


def _get_template(template_id: int):
    row = get_connection().execute(
        "SELECT * FROM templates WHERE id = ?", (template_id,)
    ).fetchone()
    if row is None:
        return None, _json_error("Template not found.", status=404)
    return row, None


def _ensure_can_modify(row):
    user = g.current_user
    if user["role"] == "admin" or row["author_id"] == user["id"]:
        return None
    return _json_error("You cannot modify this template.", status=403)


@templates_bp.route("/templates", methods=["GET"])
@_require_auth
def list_templates():
    conn = get_connection()
    rows = conn.execute("SELECT * FROM templates ORDER BY created_at DESC, id DESC").fetchall()
    return _json_success([serialize_template(conn, row) for row in rows])


@templates_bp.route("/templates", methods=["POST"])
@_require_auth
def create_template():
    """Create a template, optionally with its round blueprints in one request."""
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return _json_error("name is required.", status=400)

    rounds = data.get("rounds") or []
    if not isinstance(rounds, list):
        return _json_error("rounds must be a list.", status=400)
    prepared = []
    for entry in rounds:
        if not isinstance(entry, dict) or not (entry.get("name") or "").strip():
            return _json_error("Each round needs a name.", status=400)
        question_count = parse_int(entry.get("questionCount", 0))
        if question_count is None or question_count < 0:
            return _json_error("questionCount must be a non-negative integer.", status=400)
        prepared.append((entry["name"].strip(), entry.get("description") or "", question_count))

    now = to_isoformat(current_timestamp())
    with transaction() as conn:
        cursor = conn.execute(
            """
            INSERT INTO templates (name, description, author_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (name, data.get("description") or "", g.current_user["id"], now, now),
        )
        template_id = cursor.lastrowid
        for position, (round_name, description, question_count) in enumerate(prepared):
            conn.execute(
                """
                INSERT INTO rounds (name, description, question_count, order_index, template_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (round_name, description, question_count, position, template_id, now, now),
            )

    row, _ = _get_template(template_id)
    return _json_success(serialize_template(get_connection(), row), status=201)


@templates_bp.route("/templates/<int:template_id>", methods=["GET"])
@_require_auth
def get_template(template_id: int):
    row, error = _get_template(template_id)
    if error:
        return error
    return _json_success(serialize_template(get_connection(), row))


@templates_bp.route("/templates/<int:template_id>", methods=["PUT"])
@_require_auth
def update_template(template_id: int):
    row, error = _get_template(template_id)
    if error:
        return error
    if (err := _ensure_can_modify(row)) is not None:
        return err

    data = request.get_json(silent=True) or {}
    updates: Dict[str, Any] = {}
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return _json_error("name cannot be empty.", status=400)
        updates["name"] = name
    if "description" in data:
        updates["description"] = data.get("description") or ""
    if not updates:
        return _json_error("No fields to update.", status=400)

    updates["updated_at"] = to_isoformat(current_timestamp())
    assignments = ", ".join(f"{column} = ?" for column in updates.keys())
    with transaction() as conn:
        conn.execute(
            f"UPDATE templates SET {assignments} WHERE id = ?",
            list(updates.values()) + [template_id],
        )

    row, _ = _get_template(template_id)
    return _json_success(serialize_template(get_connection(), row))


@templates_bp.route("/templates/<int:template_id>", methods=["DELETE"])
@_require_auth
def delete_template(template_id: int):
    row, error = _get_template(template_id)
    if error:
        return error
    if (err := _ensure_can_modify(row)) is not None:
        return err

    with transaction() as conn:
        conn.execute("DELETE FROM templates WHERE id = ?", (template_id,))

    return _json_success({"success": True})
