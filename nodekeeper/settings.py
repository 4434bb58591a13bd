from __future__ import annotations

import os
from dataclasses import dataclass, field


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


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(x.strip() for x in raw.split(",") if x.strip())


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("NK_DB_PATH", "nodekeeper.db")
    apps_folder: str = os.getenv("NK_APPS_FOLDER", "/var/lib/nodekeeper/apps")

    # Monitoring
    sample_interval_s: float = _env_float("NK_SAMPLE_INTERVAL_S", 60.0)

    # Recovery
    restart_delay_s: float = _env_float("NK_RESTART_DELAY_S", 2.0)
    os_restart_window_s: int = _env_int("NK_OS_RESTART_WINDOW_S", 15 * 60)
    uptime_tolerance_s: int = _env_int("NK_UPTIME_TOLERANCE_S", 5 * 60)
    # Containers whose first name starts with one of these are node-managed.
    container_prefixes: tuple[str, ...] = field(default_factory=lambda: _env_list("NK_CONTAINER_PREFIXES", "flux,zel"))
    # Bind mount sources carry this suffix; storage is measured at the parent.
    appdata_marker: str = os.getenv("NK_APPDATA_MARKER", "/appdata")

    # API credentials (HTTP Basic)
    admin_user: str | None = os.getenv("NK_ADMIN_USER")
    admin_password: str | None = os.getenv("NK_ADMIN_PASSWORD")
    # "user:password[:role]" entries, comma separated; role is team or user (default user).
    api_users: tuple[str, ...] = field(default_factory=lambda: _env_list("NK_API_USERS", ""))

    # Email alerting (optional)
    enable_email: bool = _env_bool("NK_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("NK_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("NK_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("NK_SMTP_USER")
    smtp_password: str | None = os.getenv("NK_SMTP_PASSWORD")
    email_from: str | None = os.getenv("NK_EMAIL_FROM")
    email_to: str | None = os.getenv("NK_EMAIL_TO")


settings = Settings()
