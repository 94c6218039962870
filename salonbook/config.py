"""Configuration objects for the scheduling service."""
from __future__ import annotations

import os


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///salonbook.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

    # Scheduling
    SLOT_GRANULARITY_MINUTES = 15
    BOOKING_GUARD_ATTEMPTS = 3
    MAX_SERIES_OCCURRENCES = 12

    # Store interactions fail after this many seconds with a retryable error.
    STORE_TIMEOUT_SECONDS = 5

    LOYALTY_POINTS_PER_DOLLAR = 1
    AUTH_TOKEN_MAX_AGE = 86400


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"


def engine_options(database_uri: str, timeout_seconds: float) -> dict[str, object]:
    """Build SQLAlchemy engine options that bound every store interaction."""
    if database_uri.startswith("sqlite"):
        # sqlite3 busy timeout; pool options do not apply to the SQLite pools.
        return {"connect_args": {"timeout": timeout_seconds}}

    options: dict[str, object] = {
        "pool_pre_ping": True,
        "pool_timeout": timeout_seconds,
    }
    if database_uri.startswith("postgresql"):
        millis = int(timeout_seconds * 1000)
        options["connect_args"] = {
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={millis} -c lock_timeout={millis}",
        }
    return options
