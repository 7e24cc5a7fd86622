"""Cookie sessions for the editor API.

Only a hash of each token is stored. Sessions slide: every authenticated
request pushes the expiry out by the configured lifetime, so an editor
left open on a package keeps working while it is being used.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Optional, Tuple

from .database import get_connection, transaction
from .utils import (
    current_timestamp,
    from_isoformat,
    generate_session_token,
    hash_session_token,
    to_isoformat,
)


LOGGER = logging.getLogger(__name__)


def open_session(user_id: int, lifetime: timedelta) -> Tuple[str, datetime]:
    """Start a session and return the raw token with its expiry."""
    token = generate_session_token()
    now = current_timestamp()
    expires_at = now + lifetime

    with transaction() as conn:
        conn.execute(
            "DELETE FROM sessions WHERE user_id = ? AND (is_active = 0 OR expires_at <= ?)",
            (user_id, to_isoformat(now)),
        )
        conn.execute(
            """
            INSERT INTO sessions (session_token_hash, user_id, created_at, last_active, expires_at, is_active)
            VALUES (?, ?, ?, ?, ?, 1)
            """,
            (
                hash_session_token(token),
                user_id,
                to_isoformat(now),
                to_isoformat(now),
                to_isoformat(expires_at),
            ),
        )
    return token, expires_at


def resolve_session(token: Optional[str]) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
    """Return ``(session, user)`` for a live token, or None."""
    if not token:
        return None
    row = get_connection().execute(
        """
        SELECT s.id AS session_id, s.expires_at, s.is_active, u.*
        FROM sessions s
        JOIN users u ON u.id = s.user_id
        WHERE s.session_token_hash = ?
        """,
        (hash_session_token(token),),
    ).fetchone()
    if row is None or not row["is_active"]:
        return None

    expires_at = from_isoformat(row["expires_at"])
    if expires_at <= current_timestamp():
        LOGGER.info("Session %s for user %s expired.", row["session_id"], row["username"])
        close_session(token)
        return None

    user = {
        key: row[key]
        for key in row.keys()
        if key not in {"session_id", "expires_at", "is_active"}
    }
    session = {"id": row["session_id"], "user_id": row["id"], "expires_at": expires_at}
    return session, user


def touch_session(session: Dict[str, Any], lifetime: timedelta) -> datetime:
    """Record activity on a session and its user; extends the expiry."""
    now = current_timestamp()
    expires_at = now + lifetime
    with transaction() as conn:
        conn.execute(
            "UPDATE sessions SET last_active = ?, expires_at = ? WHERE id = ?",
            (to_isoformat(now), to_isoformat(expires_at), session["id"]),
        )
        conn.execute(
            "UPDATE users SET last_active = ? WHERE id = ?",
            (to_isoformat(now), session["user_id"]),
        )
    session["expires_at"] = expires_at
    return expires_at


def close_session(token: str) -> None:
    with transaction() as conn:
        conn.execute(
            "UPDATE sessions SET is_active = 0 WHERE session_token_hash = ?",
            (hash_session_token(token),),
        )


__all__ = [
    "open_session",
    "resolve_session",
    "touch_session",
    "close_session",
]
