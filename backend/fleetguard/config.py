# backend/fleetguard/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fleetguard.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fleetguard.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Verification tokens are valid for 24 hours after issue or resend
    VERIFICATION_TTL_HOURS = int(os.environ.get("FLEETGUARD_VERIFICATION_TTL_HOURS", "24"))

    # Dev/test only: echo verification tokens in API responses instead of
    # relying on the out-of-band email step
    EXPOSE_VERIFICATION_TOKENS = _env_flag("FLEETGUARD_EXPOSE_VERIFICATION_TOKENS")

    # Account auto-provisioning retry policy (unique-constraint races)
    PROVISIONING_MAX_ATTEMPTS = int(os.environ.get("FLEETGUARD_PROVISIONING_MAX_ATTEMPTS", "3"))
    PROVISIONING_BACKOFF_BASE = float(os.environ.get("FLEETGUARD_PROVISIONING_BACKOFF_BASE", "0.1"))

    # Reserved principal that audit records fall back to outside a request
    SYSTEM_ACTOR_EMAIL = os.environ.get("FLEETGUARD_SYSTEM_ACTOR_EMAIL", "system@fleetguard.invalid")
