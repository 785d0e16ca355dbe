"""
Environment-aware configuration.
Values come from the environment (and .env via python-dotenv); token
lifetimes use the compact "<number><unit>" form, e.g. 15m or 7d.
"""
import os
import re
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()  # Read .env if present

_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def parse_duration(value: str) -> timedelta:
    """Parse "15m", "7d", "3600s"... into a timedelta. Raises ValueError when malformed."""
    match = re.fullmatch(r"\s*(\d+)\s*([a-z]+)\s*", value or "")
    if not match or match.group(2) not in _DURATION_UNITS:
        raise ValueError(f"Invalid duration: {value!r} (expected e.g. 15m, 7d)")
    return int(match.group(1)) * _DURATION_UNITS[match.group(2)]


DEFAULT_ROLES = "PI_LAB_MANAGER,POSTDOC_STAFF,GRAD_STUDENT,UNDERGRAD_TECH"


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")  # Set a strong key in production
    DEBUG = False
    TESTING = False
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", os.getenv("CLIENT_URL", "*"))
    APP_ENV = os.getenv("APP_ENV", "dev")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///labbook.db")
    SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")

    JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
    JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change-me")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRES = parse_duration(os.getenv("JWT_EXPIRES_IN", "15m"))
    REFRESH_TOKEN_EXPIRES = parse_duration(os.getenv("JWT_REFRESH_EXPIRES_IN", "7d"))
    ALLOWED_ROLES = os.getenv("ALLOWED_ROLES", DEFAULT_ROLES).split(",")

    DEFAULT_BOOKING_WINDOW_DAYS = int(os.getenv("DEFAULT_BOOKING_WINDOW_DAYS", "7"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
    # In dev, propagate exceptions so our error handler has full context
    PROPAGATE_EXCEPTIONS = True


class TestingConfig(BaseConfig):
    TESTING = True
    DATABASE_URL = "sqlite://"
    JWT_SECRET = "test-access-secret"
    JWT_REFRESH_SECRET = "test-refresh-secret"


class ProductionConfig(BaseConfig):
    DEBUG = False


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/test/prod).
    """
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig
