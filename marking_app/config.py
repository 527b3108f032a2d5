"""
Configuration management for the marking app.

Values come from the environment (a local ``.env`` is loaded first).
``create_app`` refuses to start when a required value is missing.
"""
import os
from dotenv import load_dotenv

load_dotenv()

REQUIRED_KEYS = [
    "SQLALCHEMY_DATABASE_URI",
    "SECRET_KEY",
    "MAIL_SERVER",
    "MAIL_DEFAULT_SENDER",
]


def _as_bool(value, default=False):
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def config_from_env(environ=None):
    """Build the Flask config mapping from environment variables."""
    env = os.environ if environ is None else environ
    return {
        "SQLALCHEMY_DATABASE_URI": env.get("DATABASE_URL"),
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "SECRET_KEY": env.get("MARKING_APP_SECRET_KEY"),
        "MAIL_SERVER": env.get("MAIL_SERVER"),
        "MAIL_PORT": _as_int(env.get("MAIL_PORT"), 587),
        "MAIL_USERNAME": env.get("MAIL_USERNAME"),
        "MAIL_PASSWORD": env.get("MAIL_PASSWORD"),
        "MAIL_USE_TLS": _as_bool(env.get("MAIL_USE_TLS"), default=True),
        "MAIL_DEFAULT_SENDER": env.get("MAIL_DEFAULT_SENDER"),
        "APP_URL": env.get("APP_URL", "http://localhost:5173"),
        "TOKEN_TTL_MINUTES": _as_int(env.get("TOKEN_TTL_MINUTES"), 60),
        "INVITE_TTL_DAYS": _as_int(env.get("INVITE_TTL_DAYS"), 7),
        "CODE_TTL_MINUTES": _as_int(env.get("CODE_TTL_MINUTES"), 10),
    }


def missing_keys(config):
    return [key for key in REQUIRED_KEYS if not config.get(key)]


def validate_config(config):
    """Raise RuntimeError naming every required key that is not set."""
    missing = missing_keys(config)
    if missing:
        raise RuntimeError(
            "Marking app is not configured, missing: " + ", ".join(missing)
        )
    return config
