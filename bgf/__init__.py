"""
BGF Dashboard
Flask Application Factory.

Usage:
    from bgf import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from bgf.config import config
from bgf.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from bgf.middleware.jwt_auth import init_jwt_middleware
from bgf.middleware.logging_config import configure_logging
from bgf.middleware.rate_limiter import init_rate_limits
from bgf.middleware.timing import init_request_timing
from bgf.models import db
from bgf.utils.errors import E, api_error, workflow_error_response

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # limits are per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        overrides: Optional mapping applied on top of the config class
                   before extensions are initialised.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    if overrides:
        app.config.update(overrides)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + JWT identity ────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from bgf.models import audit as _audit_models                # noqa: F401
    from bgf.models import notification as _notification_models  # noqa: F401
    from bgf.models import request as _request_models            # noqa: F401
    from bgf.models import user as _user_models                  # noqa: F401
    from bgf.models import workflow as _workflow_models          # noqa: F401

    # ── Auto-create tables for local SQLite development ──────────────────
    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_uri.startswith("sqlite"):
        db_file = db_uri.removeprefix("sqlite:///")
        if db_file and db_file != ":memory:" and os.path.dirname(db_file):
            os.makedirs(os.path.dirname(db_file), exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from bgf.blueprints.auth_bp import auth_bp
    from bgf.blueprints.health_bp import health_bp
    from bgf.blueprints.notification_bp import notification_bp
    from bgf.blueprints.request_bp import request_bp
    from bgf.blueprints.user_bp import user_bp
    from bgf.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(request_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(workflow_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("full_name")
    @click.argument("role")
    @click.option("--access-code", default=None, help="Staff access code for staff login.")
    def create_user_cmd(email, full_name, role, access_code):
        """Create a user (e.g. the first admin or head of programs)."""
        from bgf.services.identity import create_user
        user = create_user(email, full_name, role, staff_access_code=access_code)
        logger.info("Created user %s (%s) with role %s.", user.id, user.email, user.role)

    # ── Domain error handlers ────────────────────────────────────────────
    @app.errorhandler(NotFoundError)
    def handle_not_found(exc):
        return api_error(E.NOT_FOUND, str(exc))

    @app.errorhandler(ValidationError)
    def handle_validation(exc):
        return api_error(E.VALIDATION_BUSINESS, str(exc), details=exc.details)

    @app.errorhandler(ConflictError)
    def handle_conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"field": exc.field})

    @app.errorhandler(WorkflowError)
    def handle_workflow_error(exc):
        logger.info("Workflow operation refused: %s", exc, extra={"grant_request_id": exc.request_id})
        return workflow_error_response(exc)

    # ── HTTP error handlers ──────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
