from __future__ import annotations

import base64
import hashlib
import json
import os
import secrets
from datetime import datetime, timezone
from typing import Any, Optional, Tuple


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def to_isoformat(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


def from_isoformat(value: str) -> datetime:
    return datetime.fromisoformat(value)


def generate_salt(length: int = 16) -> str:
    data = os.urandom(length)
    return base64.b64encode(data).decode("ascii")


def hash_password(password: str, salt: str) -> str:
    salt_bytes = base64.b64decode(salt.encode("ascii"))
    hashed = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt_bytes, 390000)
    return base64.b64encode(hashed).decode("ascii")


def verify_password(password: str, salt: str, hashed: str) -> bool:
    computed = hash_password(password, salt)
    return secrets.compare_digest(computed, hashed)


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def validate_credentials(username: str, password: str) -> Tuple[bool, str]:
    if not username:
        return False, "Username is required."
    if len(username) > 64:
        return False, "Username must be at most 64 characters."
    if len(password or "") < 6:
        return False, "Password must be at least 6 characters."
    return True, ""


def dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def load_json(value: Optional[str], default: Any = None) -> Any:
    if value in (None, ""):
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "current_timestamp",
    "to_isoformat",
    "from_isoformat",
    "generate_salt",
    "hash_password",
    "verify_password",
    "generate_session_token",
    "hash_session_token",
    "validate_credentials",
    "dump_json",
    "load_json",
    "parse_int",
]
