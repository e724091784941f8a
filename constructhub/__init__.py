"""
ConstructHub
Flask Application Factory.

Usage:
    from constructhub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.errors import RateLimitExceeded
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from werkzeug.exceptions import HTTPException

from constructhub.config import config
from constructhub.core.events import set_event_sink
from constructhub.core.exceptions import ConstructHubError
from constructhub.middleware.jwt_auth import init_jwt_middleware
from constructhub.middleware.logging_config import configure_logging
from constructhub.middleware.rate_limiter import init_rate_limits
from constructhub.middleware.timing import init_request_timing
from constructhub.models import db
from constructhub.services.cache_service import init_cache
from constructhub.utils.responses import api_error, error_from_exception

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
    default_limits=[],  # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV, or "development" if unset.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

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
    init_cache(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Models (registered on the metadata for Alembic) ──────────────────
    from constructhub.models import notification as _notification_models  # noqa: F401
    from constructhub.models import project as _project_models  # noqa: F401
    from constructhub.models import task as _task_models  # noqa: F401
    from constructhub.models import user as _user_models  # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from constructhub.blueprints.auth_bp import auth_bp
    from constructhub.blueprints.health_bp import health_bp
    from constructhub.blueprints.project_bp import projects_bp
    from constructhub.blueprints.task_bp import tasks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(tasks_bp)

    init_rate_limits(app, limiter)

    # ── Domain event sink ────────────────────────────────────────────────
    from constructhub.services.notification import NotificationService
    set_event_sink(app, NotificationService())

    _register_error_handlers(app)
    _register_cli(app)

    return app


def _register_error_handlers(app):
    @app.errorhandler(ConstructHubError)
    def handle_service_error(exc):
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.error, request.method, request.path, exc.message)
        return error_from_exception(exc)

    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limit(exc):
        return api_error("Too Many Requests", "Too many requests, please try again later", status=429)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return api_error(exc.name, exc.description or exc.name, status=exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return api_error("Internal Server Error", "An unexpected error occurred", status=500)


def _register_cli(app):
    @app.cli.command("create-user")
    @click.option("--email", required=True)
    @click.option("--password", required=True)
    @click.option("--role", required=True)
    @click.option("--name", "full_name", default="")
    def create_user_cmd(email, password, role, full_name):
        """Create an Active user account."""
        from constructhub.services.auth_service import create_user

        try:
            user = create_user(email, password, full_name, role)
        except ConstructHubError as exc:
            raise click.ClickException(exc.message) from None
        click.echo(f"Created user id={user.id} email={user.email} role={user.role}")
