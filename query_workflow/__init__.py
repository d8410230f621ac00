"""
Loan Query Workflow
Flask Application Factory.

Usage:
    from query_workflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from query_workflow.config import config
from query_workflow.middleware.diagnostics import run_startup_diagnostics
from query_workflow.middleware.logging_config import configure_logging
from query_workflow.middleware.rate_limiter import init_rate_limits
from query_workflow.middleware.timing import init_request_timing
from query_workflow.models import db
from query_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        if request.method == "POST" and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from query_workflow.models import application as _application_models  # noqa: F401
    from query_workflow.models import query as _query_models              # noqa: F401
    from query_workflow.models import thread as _thread_models            # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if not app.config.get("TESTING"):
        with app.app_context():
            try:
                os.makedirs(app.instance_path, exist_ok=True)
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except SQLAlchemyError as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from query_workflow.blueprints.applications_bp import applications_bp
    from query_workflow.blueprints.health_bp import health_bp
    from query_workflow.blueprints.queries_bp import queries_bp
    from query_workflow.blueprints.query_actions_bp import query_actions_bp
    from query_workflow.blueprints.sync_bp import sync_bp

    app.register_blueprint(queries_bp)
    app.register_blueprint(query_actions_bp)
    app.register_blueprint(applications_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("register-application")
    @click.argument("app_number")
    @click.argument("customer_name")
    @click.option("--branch", default=None, help="Branch name; its first three letters become the branch code.")
    @click.option("--status", default="pending", show_default=True)
    def register_application_cmd(app_number, customer_name, branch, status):
        """Add an application to the registry (local development seeding)."""
        from query_workflow.models.application import (
            Application,
            find_application,
            normalise_app_number,
        )
        from query_workflow.utils.helpers import commit_or_raise

        if find_application(app_number):
            raise click.ClickException(f"Application {app_number} already registered")
        db.session.add(Application(
            app_number=normalise_app_number(app_number),
            customer_name=customer_name.strip(),
            branch=branch,
            status=status,
        ))
        commit_or_raise("register_application")
        click.echo(f"Registered application {app_number}.")

    @app.cli.command("post-notice")
    @click.argument("item_id")
    @click.argument("message")
    @click.option("--actor", default="system", show_default=True)
    def post_notice_cmd(item_id, message, actor):
        """Append a system notice to a query thread without changing its status."""
        from query_workflow.core.exceptions import WorkflowError
        from query_workflow.services.thread_ledger import post_notice

        try:
            entry = post_notice(item_id, message, actor=actor)
        except WorkflowError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Notice #{entry.seq} posted on query {item_id}.")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, f"Not found: {request.path}")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed")

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return api_error(E.VALIDATION_INVALID, e.description, status=415)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retryAfter": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", getattr(e, "original_exception", e), exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
