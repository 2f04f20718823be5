"""
Print Shop Fulfillment Core
Configuration classes for the app factory.

    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Production settings are validated by ``ProductionConfig.validate()``,
which ``create_app`` calls before anything touches the database.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'fulfillment_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _env_number(name, default, cast=int):
    """Numeric env var; unset, empty or malformed values fall back to ``default``."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def _env_flag(name, default):
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _database_url(fallback=None):
    # Hosted Postgres URLs still use the postgres:// scheme SQLAlchemy 2 rejects
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else fallback


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Comma-separated origins of the admin and client portals
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Status restored when a hold release has nothing valid to go back to
    DEFAULT_RELEASE_STATUS = os.getenv("DEFAULT_RELEASE_STATUS", "In Progress")

    # ── Reminder scheduler ───────────────────────────────────────────────
    REMINDER_SCHEDULER_ENABLED = _env_flag("REMINDER_SCHEDULER_ENABLED", True)
    # Adaptive sleep is clamped to [MIN, MAX]; MAX is also the idle wait
    REMINDER_SCHEDULER_MIN_INTERVAL_SECONDS = _env_number(
        "REMINDER_SCHEDULER_MIN_INTERVAL_SECONDS", 0.2, float)
    REMINDER_SCHEDULER_MAX_INTERVAL_SECONDS = _env_number(
        "REMINDER_SCHEDULER_MAX_INTERVAL_SECONDS", 300.0, float)
    REMINDER_SCHEDULER_BATCH_SIZE = _env_number("REMINDER_SCHEDULER_BATCH_SIZE", 50)
    # Conditional reminders whose project is not at the condition status wait this long
    REMINDER_CONDITION_RECHECK_MINUTES = _env_number("REMINDER_CONDITION_RECHECK_MINUTES", 60)
    # A claim older than this is treated as abandoned by a crashed sweep
    REMINDER_PROCESSING_LEASE_SECONDS = _env_number("REMINDER_PROCESSING_LEASE_SECONDS", 600)
    REMINDER_SYSTEM_SENDER_ID = os.getenv("REMINDER_SYSTEM_SENDER_ID", "system")

    @classmethod
    def validate(cls):
        if cls.REMINDER_SCHEDULER_MIN_INTERVAL_SECONDS > cls.REMINDER_SCHEDULER_MAX_INTERVAL_SECONDS:
            raise RuntimeError("REMINDER_SCHEDULER_MIN_INTERVAL_SECONDS exceeds the maximum interval")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    # Tests drive sweeps explicitly; the background loop never starts
    REMINDER_SCHEDULER_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # Lineage row locks must not be held past this
        "connect_args": {"options": "-c statement_timeout=30000"},
    }
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    @classmethod
    def validate(cls):
        super().validate()
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
