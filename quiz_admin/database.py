from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from flask import current_app, g


_DB_LOCK = threading.Lock()


def init_app(app) -> None:
    app.teardown_appcontext(_close_connection)

    with app.app_context():
        initialize_schema()


def _connect(database_url: str) -> sqlite3.Connection:
    if database_url.startswith("sqlite:///"):
        db_path = Path(database_url.replace("sqlite:///", "", 1))
        db_path.parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(
            db_path,
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection
    raise ValueError("Unsupported database URL. Only sqlite:/// is supported.")


def _database_url() -> str:
    database_url: Optional[str] = current_app.config.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("Database URL is not configured.")
    return database_url


def get_connection() -> sqlite3.Connection:
    if "db_conn" not in g:
        g.db_conn = _connect(_database_url())
    return g.db_conn


def _close_connection(exception=None) -> None:
    connection = g.pop("db_conn", None)
    if connection is not None:
        connection.close()


@contextmanager
def transaction() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection()
    with _DB_LOCK:
        try:
            yield connection
            connection.commit()
        except Exception:
            connection.rollback()
            raise


def initialize_schema() -> None:
    connection = _connect(_database_url())
    try:
        cursor = connection.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                salt TEXT NOT NULL,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'author',
                last_active TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_token_hash TEXT NOT NULL UNIQUE,
                user_id INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                last_active TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS questions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                content_text TEXT NOT NULL DEFAULT '',
                answer TEXT,
                topic TEXT,
                difficulty INTEGER NOT NULL DEFAULT 1,
                author_id INTEGER NOT NULL,
                is_generated INTEGER NOT NULL DEFAULT 0,
                fact_checked INTEGER NOT NULL DEFAULT 0,
                fact_check_date TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (author_id) REFERENCES users (id)
            );

            CREATE TABLE IF NOT EXISTS templates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                author_id INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (author_id) REFERENCES users (id)
            );

            CREATE TABLE IF NOT EXISTS packages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT,
                play_date TEXT,
                template_id INTEGER,
                author_id INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (template_id) REFERENCES templates (id) ON DELETE SET NULL,
                FOREIGN KEY (author_id) REFERENCES users (id)
            );

            CREATE TABLE IF NOT EXISTS rounds (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                question_count INTEGER NOT NULL DEFAULT 0,
                order_index INTEGER NOT NULL,
                package_id INTEGER,
                template_id INTEGER,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (package_id) REFERENCES packages (id) ON DELETE CASCADE,
                FOREIGN KEY (template_id) REFERENCES templates (id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS round_questions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                round_id INTEGER NOT NULL,
                question_id INTEGER NOT NULL,
                order_index INTEGER NOT NULL,
                FOREIGN KEY (round_id) REFERENCES rounds (id) ON DELETE CASCADE,
                FOREIGN KEY (question_id) REFERENCES questions (id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_rounds_package ON rounds (package_id, order_index);
            CREATE INDEX IF NOT EXISTS idx_round_questions_round ON round_questions (round_id, order_index);
            """
        )
        cursor.close()
        connection.commit()
    finally:
        connection.close()


__all__ = ["init_app", "get_connection", "transaction", "initialize_schema"]
