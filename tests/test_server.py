"""Tests for the ASGI entry point."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from smtp_mail_service import server
from smtp_mail_service.server import build_app, serve
from smtp_mail_service.settings import Settings


def test_lifespan_starts_and_stops_service(tmp_path):
    settings = Settings(db_path=str(tmp_path / "server.db"), master_secret="server-test", shutdown_timeout=1.0)
    app = build_app(settings)

    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok", "default_master_secret": False}
        assert client.get("/api/smtp/configs").json()["data"] == []

    assert (tmp_path / "server.db").exists()


def test_default_master_secret_is_reported(tmp_path):
    app = build_app(Settings(db_path=str(tmp_path / "server.db")))

    with TestClient(app) as client:
        assert client.get("/health").json()["default_master_secret"] is True


@pytest.fixture
def drop_module_app():
    yield
    vars(server).pop("app", None)


def test_module_app_is_built_once_on_first_access(tmp_path, monkeypatch, drop_module_app):
    loads = []

    def fake_load_settings():
        loads.append(1)
        return Settings(db_path=str(tmp_path / "lazy.db"), master_secret="lazy")

    monkeypatch.delitem(vars(server), "app", raising=False)
    monkeypatch.setattr(server, "load_settings", fake_load_settings)
    monkeypatch.setattr(server, "configure_logging", lambda level: None)

    assert "app" not in vars(server)
    first = server.app
    second = server.app

    assert isinstance(first, FastAPI)
    assert first is second
    assert loads == [1]


def test_serve_uses_only_the_given_settings(tmp_path, monkeypatch):
    ran = {}

    def fake_run(app, **kwargs):
        ran["app"] = app
        ran.update(kwargs)

    def fail_load_settings():
        raise AssertionError("serve must not read the default configuration")

    monkeypatch.delitem(vars(server), "app", raising=False)
    monkeypatch.setattr(server.uvicorn, "run", fake_run)
    monkeypatch.setattr(server, "load_settings", fail_load_settings)

    serve(Settings(db_path=str(tmp_path / "serve.db"), http_port=8125, shutdown_timeout=3.0))

    assert isinstance(ran["app"], FastAPI)
    assert ran["port"] == 8125
    assert ran["timeout_graceful_shutdown"] == 3
    assert "app" not in vars(server)
