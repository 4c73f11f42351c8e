from __future__ import annotations

import os

import pytest

from plansync.config.config import Settings, loadSettings, parse_bool


def _clear_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("PLANSYNC_"):
            monkeypatch.delenv(name, raising=False)


def test_defaults_without_any_source(monkeypatch):
    _clear_env(monkeypatch)
    loaded = loadSettings(None, {})
    assert loaded.settings == Settings()
    assert loaded.sources_used == []


def test_priority_cli_over_env_over_config(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "\n".join([
            'base_url: "https://cfg.local"',
            "retries: 1",
            "timeout_seconds: 5",
            "max_concurrency: 2",
        ]),
        encoding="utf-8",
    )

    # ENV overrides config
    monkeypatch.setenv("PLANSYNC_BASE_URL", "https://env.local")
    monkeypatch.setenv("PLANSYNC_RETRIES", "4")
    monkeypatch.setenv("PLANSYNC_TLS_SKIP_VERIFY", "yes")

    # CLI overrides env
    loaded = loadSettings(str(cfg), {"base_url": "https://cli.local", "retries": None})

    s = loaded.settings
    assert s.base_url == "https://cli.local"
    assert s.retries == 4
    assert s.timeout_seconds == 5.0
    assert s.max_concurrency == 2
    assert s.tls_skip_verify is True
    assert loaded.sources_used == ["config", "env", "cli"]


def test_invalid_env_bool_is_rejected(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("PLANSYNC_TLS_SKIP_VERIFY", "maybe")
    with pytest.raises(ValueError):
        loadSettings(None, {})


def test_invalid_env_number_is_rejected(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("PLANSYNC_RETRIES", "three")
    with pytest.raises(ValueError, match="PLANSYNC_RETRIES"):
        loadSettings(None, {})


@pytest.mark.parametrize("content", ["base_url: [unclosed", "- just\n- a list\n", ""])
def test_unusable_config_file_is_ignored(tmp_path, monkeypatch, content):
    _clear_env(monkeypatch)
    cfg = tmp_path / "config.yml"
    cfg.write_text(content, encoding="utf-8")

    loaded = loadSettings(str(cfg), {})

    assert loaded.settings.base_url is None
    assert "config" not in loaded.sources_used


def test_parse_bool():
    assert parse_bool("TRUE") is True
    assert parse_bool("n") is False
    assert parse_bool(None) is None
