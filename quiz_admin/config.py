from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import os
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    secret_key: str
    database_url: str
    session_lifetime: timedelta
    session_cookie_name: str
    session_cookie_secure: bool
    environment: str
    openai_model: str


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def load_config() -> AppConfig:
    project_root = Path(__file__).resolve().parent.parent

    default_database = project_root / "storage" / "quiz_admin.sqlite3"
    database_url = os.getenv("DATABASE_URL", f"sqlite:///{default_database}")

    # Sessions last 30 days unless told otherwise.
    session_minutes = int(os.getenv("SESSION_LIFETIME_MINUTES", str(30 * 24 * 60)))

    session_cookie_name = os.getenv("SESSION_COOKIE_NAME", "quiz_admin_session")
    session_cookie_secure = _parse_bool(
        os.getenv("SESSION_COOKIE_SECURE"), default=False
    )

    environment = os.getenv("FLASK_ENV", "development")

    secret_key = os.getenv("SECRET_KEY", "quiz-admin-secret")

    openai_model = os.getenv("OPENAI_MODEL", "gpt-4o")

    return AppConfig(
        secret_key=secret_key,
        database_url=database_url,
        session_lifetime=timedelta(minutes=session_minutes),
        session_cookie_name=session_cookie_name,
        session_cookie_secure=session_cookie_secure,
        environment=environment,
        openai_model=openai_model,
    )


__all__ = ["AppConfig", "load_config"]
