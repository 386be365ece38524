"""Settings loading tests."""

import json

import pytest

from rottenbikes_auth.config import Settings, load_settings
from rottenbikes_auth.models import ClientType


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in Settings.model_fields:
        monkeypatch.delenv(f"ROTTENBIKES_{name.upper()}", raising=False)


def test_defaults(tmp_path):
    settings = load_settings(tmp_path / "missing.json")
    assert settings.api_url == "http://localhost:8080"
    assert settings.client_type == ClientType.WEB
    assert settings.poll_interval == 3.0
    assert settings.poll_timeout == 1800.0
    assert not settings.is_mobile


def test_file_then_env_then_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"api_url": "http://file", "poll_interval": 5, "client_type": "mobile"}))
    monkeypatch.setenv("ROTTENBIKES_API_URL", "http://env")
    monkeypatch.setenv("ROTTENBIKES_POLL_TIMEOUT", "none")

    settings = load_settings(path, client_type=None)
    assert settings.api_url == "http://env"
    assert settings.poll_interval == 5
    assert settings.poll_timeout is None
    assert settings.is_mobile

    settings = load_settings(path, api_url="http://flag", client_type="web")
    assert settings.api_url == "http://flag"
    assert settings.client_type == ClientType.WEB


def test_malformed_file_is_rejected(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[")
    with pytest.raises(ValueError):
        load_settings(path)


def test_unknown_file_keys_are_ignored(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"api_url": "http://file", "theme": "dark"}))
    assert load_settings(path).api_url == "http://file"


def test_constructor_reads_environment(monkeypatch):
    monkeypatch.setenv("ROTTENBIKES_CLIENT_TYPE", "mobile")
    monkeypatch.setenv("ROTTENBIKES_POLL_INTERVAL", "0.5")
    settings = Settings()
    assert settings.is_mobile
    assert settings.poll_interval == 0.5
    assert Settings(poll_interval=2).poll_interval == 2


def test_invalid_values_are_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("ROTTENBIKES_POLL_INTERVAL", "0")
    with pytest.raises(ValueError):
        load_settings(tmp_path / "missing.json")
