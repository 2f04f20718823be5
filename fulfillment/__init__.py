"""
Print Shop Fulfillment Core
Flask Application Factory.

Usage:
    from fulfillment import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")

CLI (``flask --app wsgi ...``):
    init-db            create tables and register background jobs
    reminders sweep    run one reminder sweep and print its counters
    reminders run      run the adaptive reminder loop until interrupted
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

from fulfillment.config import config
from fulfillment.models import db
from fulfillment.middleware.logging_config import configure_logging
from fulfillment.middleware.actor_context import init_actor_context
from fulfillment.middleware.rate_limiter import init_rate_limits
from fulfillment.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    # Reminder.project_id relies on ON DELETE SET NULL, which SQLite ignores without this
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def _register_cli(app):
    from fulfillment.services.scheduler_service import SchedulerService

    @app.cli.command("init-db")
    def init_db_cmd():
        """Create all tables and register scheduled jobs."""
        db.create_all()
        created = SchedulerService.ensure_jobs_registered()
        click.echo(f"Database initialised ({len(created)} job(s) registered).")

    @app.cli.group("reminders")
    def reminders_cli():
        """Reminder scheduler commands."""

    @reminders_cli.command("sweep")
    def reminders_sweep_cmd():
        """Run a single reminder sweep and print its counters."""
        outcome = SchedulerService.run_job("reminder_sweep")
        if outcome["status"] != "success":
            raise click.ClickException(outcome["error"] or outcome["status"])
        for key, value in sorted((outcome["result"] or {}).items()):
            click.echo(f"{key:>10}: {value}")

    @reminders_cli.command("run")
    def reminders_run_cmd():
        """Run the adaptive reminder loop in the foreground until interrupted."""
        scheduler = app.extensions["reminder_scheduler"]
        SchedulerService.ensure_jobs_registered()
        if not scheduler.start():
            raise click.ClickException(
                "Reminder scheduler is disabled (REMINDER_SCHEDULER_ENABLED=false)."
            )
        click.echo("Reminder scheduler running; Ctrl+C to stop.")
        try:
            while scheduler.running:
                scheduler.join(1.0)
        except KeyboardInterrupt:
            scheduler.stop()


def _register_app_errors(app):
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, f"No route for {request.path}")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, f"{request.method} not allowed on {request.path}",
                         status=405)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    config_name = config_name or os.getenv("APP_ENV", "development")
    config_class = config[config_name]
    config_class.validate()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    # Logging first so extension setup is captured
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = [o.strip() for o in (app.config.get("CORS_ORIGINS") or "").split(",") if o.strip()]
    if origins and origins != ["*"]:
        CORS(app, origins=origins)
    else:
        CORS(app)

    init_actor_context(app)

    # Every model module must be imported before create_all / migrations
    from fulfillment.models import activity, notification, project, reminder, scheduling, user  # noqa: F401

    if config_name == "development":
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    from fulfillment.blueprints.project_bp import project_bp
    from fulfillment.blueprints.reminder_bp import reminder_bp
    from fulfillment.blueprints.notification_bp import notification_bp
    from fulfillment.blueprints.health_bp import health_bp

    for bp in (project_bp, reminder_bp, notification_bp, health_bp):
        app.register_blueprint(bp)

    init_rate_limits(app, limiter)

    from fulfillment.services.scheduler_service import SchedulerService
    from fulfillment.services.reminder_scheduler import ReminderScheduler
    from fulfillment.services import scheduled_jobs  # noqa: F401

    SchedulerService.init_app(app)
    ReminderScheduler(app)

    _register_cli(app)
    _register_app_errors(app)

    logger.info("Fulfillment core ready (%s)", config_name)
    return app
