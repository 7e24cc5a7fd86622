from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from flask import Flask, g, request

from .config import load_config
from .database import init_app as init_database
from .session_manager import resolve_session, touch_session


LOGGER = logging.getLogger(__name__)


def create_app(overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)

    config = load_config()
    app.config["SECRET_KEY"] = config.secret_key
    app.config["DATABASE_URL"] = config.database_url
    app.config["SESSION_LIFETIME"] = config.session_lifetime
    app.config["SESSION_COOKIE_NAME"] = config.session_cookie_name
    app.config["SESSION_COOKIE_SECURE"] = config.session_cookie_secure
    app.config["ENVIRONMENT"] = config.environment
    app.config["OPENAI_MODEL"] = config.openai_model
    if overrides:
        app.config.update(overrides)

    init_database(app)
    LOGGER.info("Quiz admin API using %s (%s).", app.config["DATABASE_URL"], app.config["ENVIRONMENT"])

    @app.before_request
    def load_authenticated_user():
        g.current_user = None
        g.current_session = None
        resolved = resolve_session(request.cookies.get(app.config["SESSION_COOKIE_NAME"]))
        if resolved is None:
            return

        session, user = resolved
        touch_session(session, app.config["SESSION_LIFETIME"])
        g.current_user = user
        g.current_session = session

    from .routes import (
        auth_bp,
        packages_bp,
        questions_bp,
        rounds_bp,
        templates_bp,
    )

    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(packages_bp, url_prefix="/api")
    app.register_blueprint(rounds_bp, url_prefix="/api")
    app.register_blueprint(questions_bp, url_prefix="/api")
    app.register_blueprint(templates_bp, url_prefix="/api")

    return app


__all__ = ["create_app"]
