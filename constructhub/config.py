"""
ConstructHub configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# SQLite fallback for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'constructhub_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random key for development; production must use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _db_url(default=None):
    raw = os.getenv("DATABASE_URL", "")
    # SQLAlchemy 2.0 requires postgresql://
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False
    LOG_LEVEL = os.getenv("LOG_LEVEL")

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # JWT
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")  # falls back to SECRET_KEY
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))
    JWT_REFRESH_EXPIRES = int(os.getenv("JWT_REFRESH_EXPIRES", str(7 * 24 * 3600)))

    # Redis (token store + Flask-Limiter storage)
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Auth endpoint limits, "<count>/<window seconds>"
    LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "3/900")
    AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "5/900")
    AUTH_RATE_LIMIT_ENABLED = True

    # Email / SMTP (optional, log-only without MAIL_SERVER)
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@constructhub.local")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _db_url(_SQLITE_DEV)
    REDIS_URL = os.getenv("REDIS_URL", "memory://")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret"
    REDIS_URL = "memory://"
    RATELIMIT_ENABLED = False
    MAIL_SERVER = None


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _db_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # must be set explicitly in production

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
