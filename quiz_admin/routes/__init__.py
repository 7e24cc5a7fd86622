from __future__ import annotations

from .auth import auth_bp
from .packages import packages_bp
from .rounds import rounds_bp
from .questions import questions_bp
from .templates import templates_bp

__all__ = [
    "auth_bp",
    "packages_bp",
    "rounds_bp",
    "questions_bp",
    "templates_bp",
]
