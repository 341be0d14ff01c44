from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

from config import get_settings_module

from .core.exceptions import DomainError
from .database.bootstrap import apply_schema, apply_seed_sql, ensure_demo_users, list_tables
from .logging_config import configure_logging

from .container import Container, build_container
from .users.controller import register as register_users
from .organizations.controller import register as register_organizations
from .invitations.controller import register as register_invitations
from .leave.controller import register as register_leave
from .schedules.controller import register as register_schedules
from .billing.controller import register as register_billing
from .billing.webhook_controller import register as register_webhooks
from .billing.cron_controller import register as register_cron

logger = logging.getLogger(__name__)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(DomainError)
    def handle_domain_error(e: DomainError):
        return jsonify({"error": str(e), **e.details}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.exception("Unhandled error")
        if app.config.get("DEBUG"):
            return jsonify({"error": "Internal server error", "details": str(e)}), 500
        return jsonify({"error": "Internal server error"}), 500


def create_app(container: Optional[Container] = None) -> Flask:
    load_dotenv(override=False)
    app = Flask(__name__)

    settings_module = get_settings_module()
    settings = importlib.import_module(settings_module)
    configure_logging(getattr(settings, "LOG_LEVEL", "INFO"))

    app.secret_key = getattr(settings, "SECRET_KEY")
    db_config = getattr(settings, "DB_CONFIG")
    app.config["DEBUG"] = bool(getattr(settings, "DEBUG", False))
    app.config["TESTING"] = bool(getattr(settings, "TESTING", False))
    app.config["RATELIMIT_ENABLED"] = bool(getattr(settings, "RATELIMIT_ENABLED", True))

    logger.info(
        "settings=%s db=%s@%s:%s/%s",
        settings_module,
        db_config.get("user"),
        db_config.get("host"),
        db_config.get("port", 3306),
        db_config.get("database"),
    )

    if container is None:
        auto_init_db = bool(getattr(settings, "AUTO_INIT_DB", False))
        auto_seed_db = bool(getattr(settings, "AUTO_SEED_DB", False))
        if auto_init_db:
            schema_path = Path(__file__).resolve().parents[3] / "database" / "schema.sql"
            apply_schema(db_config, schema_path=schema_path)
            logger.info("Schema ready (tables=%d)", len(list_tables(db_config)))
        if auto_seed_db:
            seed_path = Path(__file__).resolve().parents[3] / "database" / "seed.sql"
            apply_seed_sql(db_config, seed_path=seed_path)
            ensure_demo_users(db_config)
            logger.info("Demo seed ready")

        container = build_container(db_config=db_config, settings=settings)

    limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
    limiter.init_app(app)
    # Flask-Limiter only keeps a weak reference; the app must own the instance.
    app.extensions["leavedesk_limiter"] = limiter

    _register_error_handlers(app)

    @app.route("/health", methods=["GET"], endpoint="health")
    def health():
        return jsonify({"status": "ok"})

    register_users(app, container)
    register_organizations(app, container)
    register_invitations(app, container, limiter)
    register_leave(app, container)
    register_schedules(app, container)
    register_billing(app, container)
    register_webhooks(app, container, limiter)
    register_cron(app, container)

    return app
