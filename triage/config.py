"""
Support Triage Orchestrator
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Embedded SQLite database next to the application by default
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'triage.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _env_bool(name, default):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", _SQLITE_DEV)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # Investigation documents: one directory per ticket id
    INVESTIGATIONS_DIR = os.getenv("INVESTIGATIONS_DIR", os.path.join(basedir, "investigations"))

    # External agent CLI (prompt is written to stdin, text read from stdout)
    AGENT_COMMAND = os.getenv("AGENT_COMMAND", "claude -p --output-format text")
    AGENT_TIMEOUT_SECONDS = int(os.getenv("AGENT_TIMEOUT_SECONDS", "300"))

    # Customer reply debounce
    DEBOUNCE_MINUTES = int(os.getenv("DEBOUNCE_MINUTES", "20"))
    DEBOUNCE_TIMERS_ENABLED = _env_bool("DEBOUNCE_TIMERS_ENABLED", "true")

    # "thread" runs phases on daemon threads; "inline" runs them in the caller
    PHASE_EXECUTION_MODE = os.getenv("PHASE_EXECUTION_MODE", "thread")

    # Background sweep loop (debounce_sweep, untriaged_response_rescan)
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", "true")
    SCHEDULER_INTERVAL_SECONDS = int(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60"))

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Rate limiting
    RATELIMIT_ENABLED = _env_bool("RATELIMIT_ENABLED", "true")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    PHASE_EXECUTION_MODE = "inline"
    DEBOUNCE_TIMERS_ENABLED = False
    SCHEDULER_ENABLED = False
    RATELIMIT_ENABLED = False
    AGENT_TIMEOUT_SECONDS = 5


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
