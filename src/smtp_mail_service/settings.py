# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Configuration loading for the SMTP mail service.

Settings are read from an INI file (default: ``config.ini``) with
environment variables as fallbacks. All variables use the ``SMTP_MAIL_``
prefix:

  SMTP_MAIL_CONFIG - Path to the INI file (default: config.ini)
  SMTP_MAIL_LOG_LEVEL - Logging level (default: INFO)
  SMTP_MAIL_DB_PATH - SQLite database path (default: ./data/smtp-mail.db)
  SMTP_MAIL_HOST - HTTP listen host (default: 0.0.0.0)
  SMTP_MAIL_PORT - HTTP listen port (default: 7700)
  SMTP_MAIL_CORS_ORIGINS - Comma separated list of allowed CORS origins
  SMTP_MAIL_MASTER_SECRET - Master secret used to encrypt stored passwords
  SMTP_MAIL_SMTP_TIMEOUT - Per-step SMTP deadline in seconds (default: 30)
  SMTP_MAIL_SHUTDOWN_TIMEOUT - Seconds to wait for in-flight sends (default: 10)

Config file sections/keys:
  [storage] db_path
  [server] host, port, cors_origins, shutdown_timeout_seconds
  [security] master_secret
  [smtp] timeout_seconds
"""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DB_PATH = "./data/smtp-mail.db"
DEFAULT_HTTP_PORT = 7700
DEFAULT_SMTP_TIMEOUT = 30.0
DEFAULT_SHUTDOWN_TIMEOUT = 10.0


@dataclass(frozen=True)
class Settings:
    """Resolved service configuration."""

    db_path: str = DEFAULT_DB_PATH
    http_host: str = "0.0.0.0"
    http_port: int = DEFAULT_HTTP_PORT
    cors_origins: tuple[str, ...] = field(default_factory=tuple)
    master_secret: str | None = None
    smtp_timeout: float = DEFAULT_SMTP_TIMEOUT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    log_level: str = "INFO"


def load_settings(config_path: str | os.PathLike | None = None) -> Settings:
    """Load settings from the INI file, falling back to environment variables.

    Values found in the file take precedence; the environment is consulted
    only for options the file does not define.
    """
    path = Path(config_path or os.getenv("SMTP_MAIL_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    parser.read(path)

    def get(section: str, option: str, fallback: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return fallback

    def get_int(section: str, option: str, fallback: str | None = None, default: int = 0) -> int:
        value = get(section, option, fallback)
        if value is None or not str(value).strip():
            return default
        return int(value)

    def get_float(section: str, option: str, fallback: str | None = None, default: float = 0.0) -> float:
        value = get(section, option, fallback)
        if value is None or not str(value).strip():
            return default
        return float(value)

    origins_raw = get("server", "cors_origins", os.getenv("SMTP_MAIL_CORS_ORIGINS")) or ""
    origins = tuple(item.strip() for item in origins_raw.split(",") if item.strip())

    master_secret = get("security", "master_secret", os.getenv("SMTP_MAIL_MASTER_SECRET"))
    if isinstance(master_secret, str):
        master_secret = master_secret.strip() or None

    db_path = get("storage", "db_path", os.getenv("SMTP_MAIL_DB_PATH", DEFAULT_DB_PATH)) or DEFAULT_DB_PATH
    db_path = os.path.expanduser(db_path)

    return Settings(
        db_path=db_path,
        http_host=get("server", "host", os.getenv("SMTP_MAIL_HOST", "0.0.0.0")) or "0.0.0.0",
        http_port=get_int("server", "port", os.getenv("SMTP_MAIL_PORT"), default=DEFAULT_HTTP_PORT),
        cors_origins=origins,
        master_secret=master_secret,
        smtp_timeout=get_float(
            "smtp", "timeout_seconds", os.getenv("SMTP_MAIL_SMTP_TIMEOUT"), default=DEFAULT_SMTP_TIMEOUT
        ),
        shutdown_timeout=get_float(
            "server",
            "shutdown_timeout_seconds",
            os.getenv("SMTP_MAIL_SHUTDOWN_TIMEOUT"),
            default=DEFAULT_SHUTDOWN_TIMEOUT,
        ),
        log_level=os.getenv("SMTP_MAIL_LOG_LEVEL", "INFO").upper(),
    )


__all__ = ["Settings", "load_settings"]
