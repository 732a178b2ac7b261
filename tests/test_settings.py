"""Tests for settings loading from config.ini and the environment."""

import pytest

from smtp_mail_service.settings import (
    DEFAULT_DB_PATH,
    DEFAULT_HTTP_PORT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_SMTP_TIMEOUT,
    load_settings,
)

ENV_VARS = (
    "SMTP_MAIL_CONFIG",
    "SMTP_MAIL_LOG_LEVEL",
    "SMTP_MAIL_DB_PATH",
    "SMTP_MAIL_HOST",
    "SMTP_MAIL_PORT",
    "SMTP_MAIL_CORS_ORIGINS",
    "SMTP_MAIL_MASTER_SECRET",
    "SMTP_MAIL_SMTP_TIMEOUT",
    "SMTP_MAIL_SHUTDOWN_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file_or_env(tmp_path):
    settings = load_settings(tmp_path / "missing.ini")

    assert settings.db_path == DEFAULT_DB_PATH
    assert settings.http_host == "0.0.0.0"
    assert settings.http_port == DEFAULT_HTTP_PORT
    assert settings.cors_origins == ()
    assert settings.master_secret is None
    assert settings.smtp_timeout == DEFAULT_SMTP_TIMEOUT
    assert settings.shutdown_timeout == DEFAULT_SHUTDOWN_TIMEOUT
    assert settings.log_level == "INFO"


def test_file_values(tmp_path):
    config = tmp_path / "config.ini"
    config.write_text(
        """
[storage]
db_path = /var/lib/mail/mail.db

[server]
host = 127.0.0.1
port = 8080
cors_origins = https://admin.example.com, http://dev.example.com:*
shutdown_timeout_seconds = 2.5

[security]
master_secret = from-file

[smtp]
timeout_seconds = 12
"""
    )

    settings = load_settings(config)

    assert settings.db_path == "/var/lib/mail/mail.db"
    assert settings.http_host == "127.0.0.1"
    assert settings.http_port == 8080
    assert settings.cors_origins == ("https://admin.example.com", "http://dev.example.com:*")
    assert settings.shutdown_timeout == 2.5
    assert settings.master_secret == "from-file"
    assert settings.smtp_timeout == 12.0


def test_environment_fallbacks(tmp_path, monkeypatch):
    monkeypatch.setenv("SMTP_MAIL_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("SMTP_MAIL_PORT", "9000")
    monkeypatch.setenv("SMTP_MAIL_MASTER_SECRET", "from-env")
    monkeypatch.setenv("SMTP_MAIL_SMTP_TIMEOUT", "5")
    monkeypatch.setenv("SMTP_MAIL_LOG_LEVEL", "debug")

    settings = load_settings(tmp_path / "missing.ini")

    assert settings.db_path == str(tmp_path / "env.db")
    assert settings.http_port == 9000
    assert settings.master_secret == "from-env"
    assert settings.smtp_timeout == 5.0
    assert settings.log_level == "DEBUG"


def test_file_takes_precedence_over_environment(tmp_path, monkeypatch):
    config = tmp_path / "config.ini"
    config.write_text("[server]\nport = 8081\n\n[security]\nmaster_secret = from-file\n")
    monkeypatch.setenv("SMTP_MAIL_PORT", "9000")
    monkeypatch.setenv("SMTP_MAIL_MASTER_SECRET", "from-env")
    monkeypatch.setenv("SMTP_MAIL_HOST", "10.0.0.1")

    settings = load_settings(config)

    assert settings.http_port == 8081
    assert settings.master_secret == "from-file"
    assert settings.http_host == "10.0.0.1"


def test_config_path_from_environment(tmp_path, monkeypatch):
    config = tmp_path / "custom.ini"
    config.write_text("[storage]\ndb_path = ~/mail/custom.db\n")
    monkeypatch.setenv("SMTP_MAIL_CONFIG", str(config))
    monkeypatch.setenv("HOME", str(tmp_path))

    assert load_settings().db_path == str(tmp_path / "mail" / "custom.db")


def test_blank_master_secret_is_unset(tmp_path):
    config = tmp_path / "config.ini"
    config.write_text("[security]\nmaster_secret =   \n")

    assert load_settings(config).master_secret is None
