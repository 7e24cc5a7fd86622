from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class EditorConfig:
    api_base_url: str = "http://0.0.0.0:5000"
    autosave_delay: float = 1.0
    request_timeout: float = 30.0


def load_editor_config() -> EditorConfig:
    api_base_url = os.getenv("QUIZ_ADMIN_API_BASE_URL", "http://0.0.0.0:5000")

    # Quiet period before a debounced write fires.
    delay_ms = int(os.getenv("QUIZ_ADMIN_AUTOSAVE_DELAY_MS", "1000"))

    request_timeout = float(os.getenv("QUIZ_ADMIN_REQUEST_TIMEOUT", "30"))

    return EditorConfig(
        api_base_url=api_base_url.rstrip("/"),
        autosave_delay=delay_ms / 1000.0,
        request_timeout=request_timeout,
    )


__all__ = ["EditorConfig", "load_editor_config"]
