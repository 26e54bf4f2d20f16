"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from startpage.config import AssetCacheConfig, SyncConfig, load_config
from startpage.config.sync import DEFAULT_SYNC_BASE_URL

ENV_NAMES = [
    "DB_PATH",
    "LOG_LEVEL",
    "LOG_FILE",
    "LOG_JSON",
    "SYNC_ENABLED",
    "SYNC_BASE_URL",
    "SYNC_REQUEST_TIMEOUT_SEC",
    "SYNC_PUSH_DEBOUNCE_MS",
    "SYNC_PULL_INTERVAL_SEC",
    "SYNC_PULL_SETTLE_MS",
    "SYNC_STORAGE_POLL_SEC",
    "ASSET_FETCH_TIMEOUT_SEC",
    "ASSET_MAX_BYTES",
    "ASSET_REQUEST_ORIGIN",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestLoadConfig:
    def test_defaults(self):
        cfg = load_config()

        assert cfg.sync.base_url == DEFAULT_SYNC_BASE_URL
        assert cfg.sync.push_debounce_ms == 2000
        assert cfg.sync.pull_interval_sec == 180
        assert cfg.sync.pull_settle_sec == pytest.approx(0.1)
        assert cfg.sync.enabled is True
        assert cfg.cache.max_bytes == 16 * 1024 * 1024
        assert cfg.runtime.log_level == "INFO"
        assert cfg.runtime.db_path.endswith("startpage.db")

    def test_environment_values(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SYNC_BASE_URL", "http://localhost:8787/")
        monkeypatch.setenv("SYNC_PUSH_DEBOUNCE_MS", "500")
        monkeypatch.setenv("SYNC_ENABLED", "off")
        monkeypatch.setenv("SYNC_STORAGE_POLL_SEC", "0.5")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("DB_PATH", str(tmp_path / "x.db"))
        monkeypatch.setenv("ASSET_REQUEST_ORIGIN", "chrome-extension://abc")

        cfg = load_config()

        assert cfg.sync.base_url == "http://localhost:8787"
        assert cfg.sync.push_debounce_sec == pytest.approx(0.5)
        assert cfg.sync.enabled is False
        assert cfg.sync.storage_poll_sec == pytest.approx(0.5)
        assert cfg.runtime.log_level == "DEBUG"
        assert cfg.runtime.db_path == str(tmp_path / "x.db")
        assert cfg.cache.request_origin == "chrome-extension://abc"

    def test_overrides_win_over_environment(self, monkeypatch):
        monkeypatch.setenv("SYNC_PULL_INTERVAL_SEC", "60")

        cfg = load_config(sync={"pull_interval_sec": 30})

        assert cfg.sync.pull_interval_sec == 30

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("SYNC_PUSH_DEBOUNCE_MS", "10"),
            ("SYNC_PULL_INTERVAL_SEC", "abc"),
            ("SYNC_BASE_URL", "ftp://sync.test"),
            ("SYNC_ENABLED", "maybe"),
            ("LOG_LEVEL", "LOUD"),
            ("ASSET_MAX_BYTES", "12"),
            ("ASSET_REQUEST_ORIGIN", "https://newtab.test/index.html"),
        ],
    )
    def test_invalid_values_raise(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(RuntimeError, match="Configuration validation failed"):
            load_config()


def test_sync_config_direct_construction():
    cfg = SyncConfig(push_debounce_ms=50, pull_settle_ms=0)

    assert cfg.push_debounce_sec == pytest.approx(0.05)
    assert cfg.pull_settle_sec == 0


@pytest.mark.parametrize(
    "origin",
    ["chrome-extension://abcdefghijklmnop", "moz-extension://1234-abcd", "http://localhost:5173/"],
)
def test_request_origin_accepts_extension_schemes(origin):
    cfg = AssetCacheConfig(request_origin=origin)

    assert cfg.request_origin == origin.rstrip("/")
