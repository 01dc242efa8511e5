# backend/app/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/grocery_tap.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///grocery_tap.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Salt for one-way IP hashing. Rotating it breaks fingerprint dedup for
    # taps recorded before the rotation.
    IP_HASH_SALT = os.environ.get("IP_HASH_SALT", "default-salt-change-me")

    # Attribution windows
    TAP_DEDUP_WINDOW_MINUTES = _int_env("TAP_DEDUP_WINDOW_MINUTES", 2)
    IDENTIFY_RELINK_WINDOW_MINUTES = _int_env("IDENTIFY_RELINK_WINDOW_MINUTES", 5)
    ATTACH_RECENT_WINDOW_MINUTES = _int_env("ATTACH_RECENT_WINDOW_MINUTES", 10)
    ATTACH_RECENT_MAX_EVENTS = _int_env("ATTACH_RECENT_MAX_EVENTS", 10)

    # Shared throttle for the public attach endpoint
    ATTACH_RATE_LIMIT = _int_env("ATTACH_RATE_LIMIT", 20)
    ATTACH_RATE_WINDOW_SECONDS = _int_env("ATTACH_RATE_WINDOW_SECONDS", 600)

    # Cookie used when the session token is not sent as a bearer header
    SESSION_COOKIE_NAME_TOKEN = os.environ.get("SESSION_COOKIE_NAME_TOKEN", "session_token")

    # When set, tap redirects use absolute URLs (e.g. "https://groceries.example")
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "")

    # bcrypt cost factor; tests lower it to keep hashing fast
    BCRYPT_LOG_ROUNDS = _int_env("BCRYPT_LOG_ROUNDS", 12)
