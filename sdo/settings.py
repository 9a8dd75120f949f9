from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_opt(name: str) -> str | None:
    raw = os.getenv(name)
    return raw if raw else None


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Process configuration, read from SDO_* environment variables.

    Nothing in the core reads this implicitly: the CLI builds one instance and
    hands it to the orchestrator, driver, event log and notifier.
    """

    # Declarations
    manifest_path: str = field(default_factory=lambda: _env_str("SDO_MANIFEST", "deploy.yaml"))
    default_unit: str | None = field(default_factory=lambda: _env_opt("SDO_DEFAULT_UNIT"))

    # Event database ("" disables it)
    db_path: str = field(default_factory=lambda: _env_str("SDO_DB_PATH", "sdo.db"))

    # Bounds for external calls and whole runs
    call_timeout_s: float = field(default_factory=lambda: _env_float("SDO_CALL_TIMEOUT_S", 30.0))
    run_timeout_margin_s: float = field(default_factory=lambda: _env_float("SDO_RUN_TIMEOUT_MARGIN_S", 60.0))

    # Docker backend
    docker_network_prefix: str = field(default_factory=lambda: _env_str("SDO_DOCKER_NETWORK_PREFIX", "sdo"))

    # Secret backends
    env_secret_prefix: str = field(default_factory=lambda: _env_str("SDO_ENV_SECRET_PREFIX", ""))
    secrets_dir: str | None = field(default_factory=lambda: _env_opt("SDO_SECRETS_DIR"))

    # Email alerting (optional)
    enable_email: bool = field(default_factory=lambda: _env_bool("SDO_ENABLE_EMAIL", False))
    smtp_host: str = field(default_factory=lambda: _env_str("SDO_SMTP_HOST", "smtp.gmail.com"))
    smtp_port: int = field(default_factory=lambda: _env_int("SDO_SMTP_PORT", 587))
    smtp_user: str | None = field(default_factory=lambda: _env_opt("SDO_SMTP_USER"))
    smtp_password: str | None = field(default_factory=lambda: _env_opt("SDO_SMTP_PASSWORD"), repr=False)
    email_from: str | None = field(default_factory=lambda: _env_opt("SDO_EMAIL_FROM"))
    email_to: str | None = field(default_factory=lambda: _env_opt("SDO_EMAIL_TO"))
