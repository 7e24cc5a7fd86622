from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from .utils import current_timestamp, load_json, to_isoformat


OWNER_COLUMNS = {"package": "package_id", "template": "template_id"}


def _author_map(conn: sqlite3.Connection, author_ids) -> Dict[int, Dict[str, Any]]:
    ids = sorted({author_id for author_id in author_ids if author_id is not None})
    if not ids:
        return {}
    placeholders = ", ".join(["?"] * len(ids))
    rows = conn.execute(
        f"SELECT id, username, role FROM users WHERE id IN ({placeholders})",
        ids,
    ).fetchall()
    return {
        row["id"]: {"id": row["id"], "username": row["username"], "role": row["role"]}
        for row in rows
    }


def serialize_question(row: sqlite3.Row, author: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload = {
        "id": row["id"],
        "title": row["title"],
        "content": load_json(row["content"], default={}),
        "answer": row["answer"] or "",
        "topic": row["topic"],
        "difficulty": row["difficulty"],
        "authorId": row["author_id"],
        "isGenerated": bool(row["is_generated"]),
        "factChecked": bool(row["fact_checked"]),
        "factCheckDate": row["fact_check_date"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
    if author is not None:
        payload["author"] = author
    return payload


def load_question(conn: sqlite3.Connection, question_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM questions WHERE id = ?", (question_id,)).fetchone()
    if row is None:
        return None
    authors = _author_map(conn, [row["author_id"]])
    return serialize_question(row, authors.get(row["author_id"]))


def serialize_round(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"] or "",
        "questionCount": row["question_count"],
        "orderIndex": row["order_index"],
        "packageId": row["package_id"],
        "templateId": row["template_id"],
    }


def fetch_rounds(conn: sqlite3.Connection, owner: str, owner_id: int) -> List[Dict[str, Any]]:
    """Rounds of a package or template, each with its ordered question links."""
    column = OWNER_COLUMNS[owner]
    round_rows = conn.execute(
        f"SELECT * FROM rounds WHERE {column} = ? ORDER BY order_index ASC, id ASC",
        (owner_id,),
    ).fetchall()
    if not round_rows:
        return []

    round_ids = [row["id"] for row in round_rows]
    placeholders = ", ".join(["?"] * len(round_ids))
    link_rows = conn.execute(
        f"""
        SELECT rq.id AS link_id, rq.round_id, rq.question_id, rq.order_index AS link_order, q.*
        FROM round_questions rq
        JOIN questions q ON q.id = rq.question_id
        WHERE rq.round_id IN ({placeholders})
        ORDER BY rq.round_id ASC, rq.order_index ASC, rq.id ASC
        """,
        round_ids,
    ).fetchall()
    authors = _author_map(conn, [row["author_id"] for row in link_rows])

    links: Dict[int, List[Dict[str, Any]]] = {round_id: [] for round_id in round_ids}
    for row in link_rows:
        author = authors.get(row["author_id"])
        links[row["round_id"]].append(
            {
                "id": row["link_id"],
                "roundId": row["round_id"],
                "questionId": row["question_id"],
                "orderIndex": row["link_order"],
                "question": serialize_question(row, author),
            }
        )

    rounds = []
    for row in round_rows:
        payload = serialize_round(row)
        payload["roundQuestions"] = links[row["id"]]
        payload["questions"] = [link["question"] for link in links[row["id"]]]
        rounds.append(payload)
    return rounds


def serialize_package(conn: sqlite3.Connection, row: sqlite3.Row, with_rounds: bool = True) -> Dict[str, Any]:
    authors = _author_map(conn, [row["author_id"]])
    payload = {
        "id": row["id"],
        "title": row["title"],
        "description": row["description"] or "",
        "playDate": row["play_date"],
        "templateId": row["template_id"],
        "authorId": row["author_id"],
        "author": authors.get(row["author_id"]),
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
    if with_rounds:
        payload["rounds"] = fetch_rounds(conn, "package", row["id"])
    return payload


def fetch_package(conn: sqlite3.Connection, package_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM packages WHERE id = ?", (package_id,)).fetchone()
    if row is None:
        return None
    return serialize_package(conn, row)


def serialize_template(conn: sqlite3.Connection, row: sqlite3.Row) -> Dict[str, Any]:
    authors = _author_map(conn, [row["author_id"]])
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"] or "",
        "authorId": row["author_id"],
        "author": authors.get(row["author_id"]),
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
        "rounds": fetch_rounds(conn, "template", row["id"]),
    }


def repack_rounds(conn: sqlite3.Connection, owner: str, owner_id: int) -> None:
    column = OWNER_COLUMNS[owner]
    rows = conn.execute(
        f"SELECT id FROM rounds WHERE {column} = ? ORDER BY order_index ASC, id ASC",
        (owner_id,),
    ).fetchall()
    timestamp = to_isoformat(current_timestamp())
    for position, row in enumerate(rows):
        conn.execute(
            "UPDATE rounds SET order_index = ?, updated_at = ? WHERE id = ?",
            (position, timestamp, row["id"]),
        )


def repack_round_questions(conn: sqlite3.Connection, round_id: int) -> None:
    rows = conn.execute(
        "SELECT id FROM round_questions WHERE round_id = ? ORDER BY order_index ASC, id ASC",
        (round_id,),
    ).fetchall()
    for position, row in enumerate(rows):
        conn.execute(
            "UPDATE round_questions SET order_index = ? WHERE id = ?",
            (position, row["id"]),
        )


def round_owner(conn: sqlite3.Connection, round_row: sqlite3.Row) -> Optional[Dict[str, Any]]:
    """Return the package or template row that owns a round, tagged with its kind."""
    if round_row["package_id"] is not None:
        row = conn.execute(
            "SELECT * FROM packages WHERE id = ?", (round_row["package_id"],)
        ).fetchone()
        return {"kind": "package", "row": row} if row else None
    if round_row["template_id"] is not None:
        row = conn.execute(
            "SELECT * FROM templates WHERE id = ?", (round_row["template_id"],)
        ).fetchone()
        return {"kind": "template", "row": row} if row else None
    return None


def copy_template_rounds(conn: sqlite3.Connection, template_id: int, package_id: int) -> int:
    rows = conn.execute(
        "SELECT * FROM rounds WHERE template_id = ? ORDER BY order_index ASC, id ASC",
        (template_id,),
    ).fetchall()
    timestamp = to_isoformat(current_timestamp())
    for position, row in enumerate(rows):
        conn.execute(
            """
            INSERT INTO rounds (name, description, question_count, order_index, package_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                row["name"],
                row["description"],
                row["question_count"],
                position,
                package_id,
                timestamp,
                timestamp,
            ),
        )
    return len(rows)


__all__ = [
    "serialize_question",
    "load_question",
    "serialize_round",
    "fetch_rounds",
    "serialize_package",
    "fetch_package",
    "serialize_template",
    "repack_rounds",
    "repack_round_questions",
    "round_owner",
    "copy_template_rounds",
]
