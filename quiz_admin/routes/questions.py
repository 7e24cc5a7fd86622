from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Dict, List, Optional

from flask import Blueprint, g, jsonify, request

from ..content import content_to_text, text_to_content
from ..database import get_connection, transaction
from ..package_tree import load_question, repack_round_questions, serialize_question
from ..services import ai_service
from ..utils import current_timestamp, dump_json, parse_int, to_isoformat


LOGGER = logging.getLogger(__name__)

questions_bp = Blueprint("questions", __name__)

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100
MAX_GENERATED = 20
DEFAULT_QUESTION_TITLE = "Question"
SEARCH_COLUMNS = ("title", "content_text", "answer", "topic")

# JSON key -> column
UPDATABLE_FIELDS = {
    "title": "title",
    "content": "content",
    "answer": "answer",
    "topic": "topic",
    "difficulty": "difficulty",
    "factChecked": "fact_checked",
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


def _validate_difficulty(value: Any) -> Optional[int]:
    difficulty = parse_int(value)
    if difficulty is None or not 1 <= difficulty <= 5:
        return None
    return difficulty


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _get_question_row(question_id: int):
    row = get_connection().execute(
        "SELECT * FROM questions WHERE id = ?", (question_id,)
    ).fetchone()
    if row is None:
        return None, _json_error("Question not found.", status=404)
    return row, None


def _ensure_can_modify(row):
    user = g.current_user
    if user["role"] == "admin" or row["author_id"] == user["id"]:
        return None
    return _json_error("You cannot modify this question.", status=403)


def _insert_question(conn, fields: Dict[str, Any]) -> int:
    now = to_isoformat(current_timestamp())
    cursor = conn.execute(
        """
        INSERT INTO questions (
            title,
            content,
            content_text,
            answer,
            topic,
            difficulty,
            author_id,
            is_generated,
            fact_checked,
            created_at,
            updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
        """,
        (
            fields["title"],
            dump_json(fields["content"]),
            content_to_text(fields["content"]),
            fields.get("answer") or "",
            fields.get("topic"),
            fields["difficulty"],
            g.current_user["id"],
            1 if fields.get("is_generated") else 0,
            now,
            now,
        ),
    )
    return cursor.lastrowid


@questions_bp.route("/questions", methods=["GET"])
@_require_auth
def list_questions():
    query = (request.args.get("q") or "").strip()
    page = parse_int(request.args.get("page")) or 1
    limit = parse_int(request.args.get("limit")) or DEFAULT_PAGE_LIMIT
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_LIMIT)

    where = ""
    params: List[Any] = []
    if query:
        like = f"%{_escape_like(query)}%"
        where = "WHERE " + " OR ".join(
            f"{column} LIKE ? ESCAPE '\\'" for column in SEARCH_COLUMNS
        )
        params = [like] * len(SEARCH_COLUMNS)

    conn = get_connection()
    total = conn.execute(f"SELECT COUNT(*) FROM questions {where}", params).fetchone()[0]
    rows = conn.execute(
        f"SELECT * FROM questions {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    ).fetchall()

    author_ids = sorted({row["author_id"] for row in rows})
    authors: Dict[int, Dict[str, Any]] = {}
    if author_ids:
        placeholders = ", ".join(["?"] * len(author_ids))
        for author in conn.execute(
            f"SELECT id, username, role FROM users WHERE id IN ({placeholders})",
            author_ids,
        ):
            authors[author["id"]] = dict(author)

    questions = [serialize_question(row, authors.get(row["author_id"])) for row in rows]
    return _json_success(
        {"questions": questions, "total": total, "page": page, "limit": limit}
    )


@questions_bp.route("/questions", methods=["POST"])
@_require_auth
def create_question():
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip() or DEFAULT_QUESTION_TITLE
    content = data.get("content")
    if not isinstance(content, dict):
        return _json_error("content must be a rich-text document.", status=400)
    difficulty = _validate_difficulty(data.get("difficulty", 1))
    if difficulty is None:
        return _json_error("difficulty must be an integer between 1 and 5.", status=400)

    with transaction() as conn:
        question_id = _insert_question(
            conn,
            {
                "title": title,
                "content": content,
                "answer": (data.get("answer") or "").strip(),
                "topic": data.get("topic"),
                "difficulty": difficulty,
            },
        )

    return _json_success(load_question(get_connection(), question_id), status=201)


@questions_bp.route("/questions/<int:question_id>", methods=["GET"])
@_require_auth
def get_question(question_id: int):
    question = load_question(get_connection(), question_id)
    if question is None:
        return _json_error("Question not found.", status=404)
    return _json_success(question)


@questions_bp.route("/questions/<int:question_id>", methods=["PUT"])
@_require_auth
def update_question(question_id: int):
    row, error = _get_question_row(question_id)
    if error:
        return error
    if (err := _ensure_can_modify(row)) is not None:
        return err

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
        elif key == "content":
            if not isinstance(value, dict):
                return _json_error("content must be a rich-text document.", status=400)
            updates["content_text"] = content_to_text(value)
            value = dump_json(value)
        elif key == "answer":
            value = value or ""
        elif key == "difficulty":
            value = _validate_difficulty(value)
            if value is None:
                return _json_error("difficulty must be an integer between 1 and 5.", status=400)
        elif key == "factChecked":
            value = 1 if value else 0
        updates[column] = value

    if not updates:
        return _json_error("No fields to update.", status=400)

    updates["updated_at"] = to_isoformat(current_timestamp())
    assignments = ", ".join(f"{column} = ?" for column in updates.keys())
    with transaction() as conn:
        conn.execute(
            f"UPDATE questions SET {assignments} WHERE id = ?",
            list(updates.values()) + [question_id],
        )

    return _json_success(load_question(get_connection(), question_id))


@questions_bp.route("/questions/<int:question_id>", methods=["DELETE"])
@_require_auth
def delete_question(question_id: int):
    row, error = _get_question_row(question_id)
    if error:
        return error
    if (err := _ensure_can_modify(row)) is not None:
        return err

    with transaction() as conn:
        affected_rounds = [
            link["round_id"]
            for link in conn.execute(
                "SELECT DISTINCT round_id FROM round_questions WHERE question_id = ?",
                (question_id,),
            )
        ]
        conn.execute("DELETE FROM questions WHERE id = ?", (question_id,))
        for round_id in affected_rounds:
            repack_round_questions(conn, round_id)

    return _json_success({"success": True})


@questions_bp.route("/questions/generate", methods=["POST"])
@_require_auth
def generate_questions_route():
    data = request.get_json(silent=True) or {}
    prompt = (data.get("prompt") or "").strip()
    if not prompt:
        return _json_error("prompt is required.", status=400)
    count = parse_int(data.get("count", 1))
    if count is None or not 1 <= count <= MAX_GENERATED:
        return _json_error(f"count must be between 1 and {MAX_GENERATED}.", status=400)
    default_difficulty = _validate_difficulty(data.get("difficulty", 3)) or 3
    topic = data.get("topic")

    try:
        items = ai_service.generate_questions(
            prompt=prompt,
            count=count,
            topic=topic,
            difficulty=default_difficulty,
        )
    except Exception as exc:
        LOGGER.exception("Question generation failed.")
        return _json_error(f"AI generation failed: {exc}", status=502)

    inserted: List[int] = []
    with transaction() as conn:
        for item in items[:count]:
            text = (item.get("question") or "").strip()
            if not text:
                continue
            inserted.append(
                _insert_question(
                    conn,
                    {
                        "title": (item.get("title") or "").strip() or DEFAULT_QUESTION_TITLE,
                        "content": text_to_content(text),
                        "answer": (item.get("answer") or "").strip(),
                        "topic": item.get("topic") or topic,
                        "difficulty": _validate_difficulty(item.get("difficulty")) or default_difficulty,
                        "is_generated": True,
                    },
                )
            )

    if not inserted:
        return _json_error("AI generation did not produce usable questions.", status=502)

    conn = get_connection()
    return _json_success([load_question(conn, question_id) for question_id in inserted], status=201)


@questions_bp.route("/questions/validate", methods=["POST"])
@_require_auth
def validate_question_route():
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    content = data.get("content")
    if not title or not isinstance(content, dict):
        return _json_error("title and content are required.", status=400)

    try:
        result = ai_service.validate_question(
            title=title,
            content=content,
            topic=data.get("topic") or "",
        )
    except Exception as exc:  # pragma: no cover - network dependency
        LOGGER.exception("Question validation failed.")
        return _json_error(f"AI validation failed: {exc}", status=502)
    return _json_success(result)


@questions_bp.route("/questions/<int:question_id>/fact-check", methods=["POST"])
@_require_auth
def fact_check_route(question_id: int):
    row, error = _get_question_row(question_id)
    if error:
        return error
    if (err := _ensure_can_modify(row)) is not None:
        return err

    question = serialize_question(row)
    try:
        result = ai_service.fact_check_question(
            title=question["title"],
            content=question["content"],
            answer=question["answer"],
        )
    except Exception as exc:  # pragma: no cover - network dependency
        LOGGER.exception("Fact check failed for question %s.", question_id)
        return _json_error(f"AI fact check failed: {exc}", status=502)

    now = to_isoformat(current_timestamp())
    with transaction() as conn:
        conn.execute(
            "UPDATE questions SET fact_checked = ?, fact_check_date = ?, updated_at = ? WHERE id = ?",
            (1 if result["isCorrect"] else 0, now, now, question_id),
        )

    return _json_success({"question": load_question(get_connection(), question_id), "result": result})
