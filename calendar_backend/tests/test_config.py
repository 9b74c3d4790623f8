"""Tests for settings loading."""

import pytest

from calendar_backend.config import load_settings
from calendar_backend.exceptions import ConfigurationError

REQUIRED = {
    "DB_URL": "postgresql://u:p@localhost/app",
    "GOOGLE_CLIENT_ID": "client-id",
    "GOOGLE_CLIENT_SECRET": "client-secret",
    "GOOGLE_REDIRECT_URL": "http://localhost:8080/auth/google/callback",
    "JWT_SECRET": "jwt-secret",
    "CSRF_SECRET": "csrf-secret",
}


@pytest.fixture
def env(monkeypatch, tmp_path):
    # Keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    for name in list(REQUIRED) + ["PORT", "ENV"]:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_loads_required_and_defaults(env):
    settings = load_settings()

    assert settings.db_url == "postgresql://u:p@localhost/app"
    assert settings.jwt_secret == "jwt-secret"
    assert settings.port == 8080
    assert settings.is_production is False


def test_production_flag_and_port(env):
    env.setenv("ENV", "production")
    env.setenv("PORT", "9000")

    settings = load_settings()

    assert settings.is_production is True
    assert settings.port == 9000


def test_missing_variable_is_configuration_error(env):
    env.delenv("JWT_SECRET")

    with pytest.raises(ConfigurationError, match="JWT_SECRET"):
        load_settings()


def test_empty_variable_is_configuration_error(env):
    env.setenv("CSRF_SECRET", "")

    with pytest.raises(ConfigurationError, match="CSRF_SECRET"):
        load_settings()


def test_settings_are_read_only(env):
    settings = load_settings()

    with pytest.raises(Exception):
        settings.port = 1
