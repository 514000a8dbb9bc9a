"""
tests/test_config.py -- Settings validation in core/config.py.

Settings is constructed directly (not via get_settings()) so each test sees
exactly the values it passes, independent of the cached singleton.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

_KEY = "k" * 40


def test_debug_generates_secret_key() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=True, secret_key="too-short")


def test_non_positive_token_lifetime_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=_KEY, token_expire_seconds=0)


def test_defaults() -> None:
    settings = Settings(secret_key=_KEY, _env_file=None)
    assert settings.token_expire_seconds == 24 * 3600
    assert settings.default_admin_username == "admin@local.domain"
    assert settings.self_registration_enabled is True


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("SECRET_KEY", _KEY)
    monkeypatch.setenv("TOKEN_EXPIRE_SECONDS", "900")
    monkeypatch.setenv("SELF_REGISTRATION_ENABLED", "false")
    settings = Settings()
    assert settings.secret_key == _KEY
    assert settings.token_expire_seconds == 900
    assert settings.self_registration_enabled is False
