from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Dict, List, Optional

from flask import Blueprint, g, jsonify, request

from ..database import get_connection, transaction
from ..package_tree import (
    OWNER_COLUMNS,
    fetch_package,
    repack_round_questions,
    repack_rounds,
    round_owner,
    serialize_round,
)
from ..utils import current_timestamp, parse_int, to_isoformat


LOGGER = logging.getLogger(__name__)

rounds_bp = Blueprint("rounds", __name__)

DEFAULT_QUESTION_COUNT = 5


def _json_error(message: str, status: int = 400, **payload):
    response = {"error": message}
    response.update(payload)
    return jsonify(response), status


def _json_success(payload: Dict[str, Any], status: int = 200):
    return jsonify(payload), status


def _require_auth(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not g.get("current_user"):
            return _json_error("Not authenticated.", status=401)
        return func(*args, **kwargs)

    return wrapper


def _can_access(owner_row) -> bool:
    user = g.current_user
    return user["role"] == "admin" or owner_row["author_id"] == user["id"]


def _get_accessible_round(round_id: int):
    conn = get_connection()
    row = conn.execute("SELECT * FROM rounds WHERE id = ?", (round_id,)).fetchone()
    if row is None:
        return None, None, _json_error("Round not found.", status=404)
    owner = round_owner(conn, row)
    if owner is None or not _can_access(owner["row"]):
        return None, None, _json_error("Round not found.", status=404)
    return row, owner, None


def _get_accessible_owner(kind: str, owner_id: int):
    table = "packages" if kind == "package" else "templates"
    row = get_connection().execute(
        f"SELECT * FROM {table} WHERE id = ?", (owner_id,)
    ).fetchone()
    if row is None or not _can_access(row):
        return None, _json_error(f"{kind.capitalize()} not found.", status=404)
    return row, None


def _touch_owner(conn, owner: Dict[str, Any]) -> None:
    table = "packages" if owner["kind"] == "package" else "templates"
    conn.execute(
        f"UPDATE {table} SET updated_at = ? WHERE id = ?",
        (to_isoformat(current_timestamp()), owner["row"]["id"]),
    )


@rounds_bp.route("/rounds", methods=["POST"])
@_require_auth
def create_round():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return _json_error("name is required.", status=400)

    if data.get("packageId") is not None:
        kind, owner_id = "package", parse_int(data.get("packageId"))
    elif data.get("templateId") is not None:
        kind, owner_id = "template", parse_int(data.get("templateId"))
    else:
        return _json_error("packageId or templateId is required.", status=400)
    if owner_id is None:
        return _json_error(f"{kind}Id must be an integer.", status=400)

    owner_row, error = _get_accessible_owner(kind, owner_id)
    if error:
        return error

    question_count = data.get("questionCount", DEFAULT_QUESTION_COUNT)
    question_count = parse_int(question_count)
    if question_count is None or question_count < 0:
        return _json_error("questionCount must be a non-negative integer.", status=400)

    column = OWNER_COLUMNS[kind]
    conn = get_connection()
    existing = conn.execute(
        f"SELECT COUNT(*) FROM rounds WHERE {column} = ?", (owner_id,)
    ).fetchone()[0]
    order_index = parse_int(data.get("orderIndex"))
    if order_index is None or order_index > existing:
        order_index = existing
    order_index = max(order_index, 0)

    now = to_isoformat(current_timestamp())
    with transaction() as tx:
        tx.execute(
            f"UPDATE rounds SET order_index = order_index + 1 WHERE {column} = ? AND order_index >= ?",
            (owner_id, order_index),
        )
        cursor = tx.execute(
            f"""
            INSERT INTO rounds (name, description, question_count, order_index, {column}, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name,
                data.get("description") or "",
                question_count,
                order_index,
                owner_id,
                now,
                now,
            ),
        )
        round_id = cursor.lastrowid
        repack_rounds(tx, kind, owner_id)
        _touch_owner(tx, {"kind": kind, "row": owner_row})

    row = get_connection().execute("SELECT * FROM rounds WHERE id = ?", (round_id,)).fetchone()
    return _json_success(serialize_round(row), status=201)


@rounds_bp.route("/rounds/<int:round_id>", methods=["PUT"])
@_require_auth
def update_round(round_id: int):
    row, owner, error = _get_accessible_round(round_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    updates: Dict[str, Any] = {}
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return _json_error("name cannot be empty.", status=400)
        updates["name"] = name
    if "description" in data:
        updates["description"] = data.get("description") or ""
    if "questionCount" in data:
        question_count = parse_int(data.get("questionCount"))
        if question_count is None or question_count < 0:
            return _json_error("questionCount must be a non-negative integer.", status=400)
        updates["question_count"] = question_count

    if not updates:
        return _json_error("No fields to update.", status=400)

    updates["updated_at"] = to_isoformat(current_timestamp())
    assignments = ", ".join(f"{column} = ?" for column in updates.keys())
    with transaction() as conn:
        conn.execute(
            f"UPDATE rounds SET {assignments} WHERE id = ?",
            list(updates.values()) + [round_id],
        )
        _touch_owner(conn, owner)

    updated = get_connection().execute("SELECT * FROM rounds WHERE id = ?", (round_id,)).fetchone()
    return _json_success(serialize_round(updated))


@rounds_bp.route("/rounds/<int:round_id>", methods=["DELETE"])
@_require_auth
def delete_round(round_id: int):
    row, owner, error = _get_accessible_round(round_id)
    if error:
        return error

    with transaction() as conn:
        conn.execute("DELETE FROM rounds WHERE id = ?", (round_id,))
        repack_rounds(conn, owner["kind"], owner["row"]["id"])
        _touch_owner(conn, owner)

    return _json_success({"success": True})


@rounds_bp.route("/rounds/<int:round_id>/questions", methods=["POST"])
@_require_auth
def add_question_to_round(round_id: int):
    row, owner, error = _get_accessible_round(round_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    question_id = parse_int(data.get("questionId"))
    if question_id is None:
        return _json_error("questionId is required.", status=400)

    conn = get_connection()
    question = conn.execute("SELECT id FROM questions WHERE id = ?", (question_id,)).fetchone()
    if question is None:
        return _json_error("Question not found.", status=404)

    existing = conn.execute(
        "SELECT COUNT(*) FROM round_questions WHERE round_id = ?", (round_id,)
    ).fetchone()[0]
    order_index = parse_int(data.get("orderIndex"))
    if order_index is None or order_index > existing:
        order_index = existing
    order_index = max(order_index, 0)

    with transaction() as tx:
        tx.execute(
            "UPDATE round_questions SET order_index = order_index + 1 WHERE round_id = ? AND order_index >= ?",
            (round_id, order_index),
        )
        cursor = tx.execute(
            "INSERT INTO round_questions (round_id, question_id, order_index) VALUES (?, ?, ?)",
            (round_id, question_id, order_index),
        )
        link_id = cursor.lastrowid
        repack_round_questions(tx, round_id)
        _touch_owner(tx, owner)

    link = get_connection().execute(
        "SELECT * FROM round_questions WHERE id = ?", (link_id,)
    ).fetchone()
    return _json_success(
        {
            "id": link["id"],
            "roundId": link["round_id"],
            "questionId": link["question_id"],
            "orderIndex": link["order_index"],
        },
        status=201,
    )


@rounds_bp.route("/rounds/<int:round_id>/questions/<int:question_id>", methods=["DELETE"])
@_require_auth
def remove_question_from_round(round_id: int, question_id: int):
    row, owner, error = _get_accessible_round(round_id)
    if error:
        return error

    with transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM round_questions WHERE round_id = ? AND question_id = ?",
            (round_id, question_id),
        )
        if cursor.rowcount == 0:
            return _json_error("Question is not in this round.", status=404)
        repack_round_questions(conn, round_id)
        _touch_owner(conn, owner)

    return _json_success({"success": True})


def _ordered(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Sort entries by their orderIndex, falling back to list position."""
    indexed = []
    for position, entry in enumerate(entries):
        order_index = parse_int(entry.get("orderIndex"))
        indexed.append((position if order_index is None else order_index, position, entry))
    indexed.sort(key=lambda item: (item[0], item[1]))
    return [entry for _, _, entry in indexed]


@rounds_bp.route("/round-questions/save-order", methods=["POST"])
@_require_auth
def save_order():
    data = request.get_json(silent=True) or {}
    rounds_payload = data.get("rounds")
    if not isinstance(rounds_payload, list) or not rounds_payload:
        return _json_error("rounds must be a non-empty list.", status=400)

    conn = get_connection()
    round_ids: List[int] = []
    link_plan: List[tuple[int, int, int]] = []
    provided_links: set[int] = set()

    for round_position, entry in enumerate(rounds_payload):
        if not isinstance(entry, dict):
            return _json_error("Each round must be an object.", status=400)
        round_id = parse_int(entry.get("id"))
        if round_id is None:
            return _json_error("Each round needs an integer id.", status=400)
        if round_id in round_ids:
            return _json_error("Round ids must be unique in ordering payload.", status=400)
        round_ids.append(round_id)

        links = entry.get("roundQuestions") or []
        if not isinstance(links, list) or not all(isinstance(link, dict) for link in links):
            return _json_error("roundQuestions must be a list of objects.", status=400)
        for link_position, link in enumerate(_ordered(links)):
            link_id = parse_int(link.get("id"))
            if link_id is None:
                return _json_error("Each round question needs an integer id.", status=400)
            if link_id in provided_links:
                return _json_error("Round question ids must be unique in ordering payload.", status=400)
            provided_links.add(link_id)
            link_plan.append((link_id, round_id, link_position))

    first = conn.execute("SELECT * FROM rounds WHERE id = ?", (round_ids[0],)).fetchone()
    if first is None or first["package_id"] is None:
        return _json_error("Unknown round id in ordering payload.", status=400)
    package_id: int = first["package_id"]
    package_row = conn.execute("SELECT * FROM packages WHERE id = ?", (package_id,)).fetchone()
    if package_row is None or not _can_access(package_row):
        return _json_error("Package not found.", status=404)

    package_round_ids = {
        row["id"]
        for row in conn.execute("SELECT id FROM rounds WHERE package_id = ?", (package_id,))
    }
    if set(round_ids) != package_round_ids:
        return _json_error("Ordering payload must reference every round of the package exactly once.", status=400)

    placeholders = ", ".join(["?"] * len(round_ids))
    existing_links = {
        row["id"]
        for row in conn.execute(
            f"SELECT id FROM round_questions WHERE round_id IN ({placeholders})",
            round_ids,
        )
    }
    if provided_links != existing_links:
        return _json_error("Ordering payload must reference every round question exactly once.", status=400)

    ordered_rounds = _ordered(
        [{"id": round_id, "orderIndex": entry.get("orderIndex")} for round_id, entry in zip(round_ids, rounds_payload)]
    )

    timestamp = to_isoformat(current_timestamp())
    with transaction() as tx:
        for position, entry in enumerate(ordered_rounds):
            tx.execute(
                "UPDATE rounds SET order_index = ?, updated_at = ? WHERE id = ?",
                (position, timestamp, entry["id"]),
            )
        for link_id, round_id, position in link_plan:
            tx.execute(
                "UPDATE round_questions SET round_id = ?, order_index = ? WHERE id = ?",
                (round_id, position, link_id),
            )
        tx.execute(
            "UPDATE packages SET updated_at = ? WHERE id = ?",
            (timestamp, package_id),
        )

    LOGGER.info(
        "Saved order for package %s: %s rounds, %s round questions.",
        package_id,
        len(round_ids),
        len(link_plan),
    )
    return _json_success(fetch_package(get_connection(), package_id))
