"""Tests for TOML configuration of a data directory."""

import pytest

from ultranote.config import (
    CONFIG_FILENAME,
    ConfigError,
    StoreConfig,
    get_data_dir,
    load_config,
    load_or_create_config,
    save_config,
)
from ultranote.merge import DeletePolicy


class TestDataDir:

    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ULTRANOTE_DATA_DIR", str(tmp_path / "custom"))

        assert get_data_dir() == (tmp_path / "custom").resolve()

    def test_default_under_home(self, monkeypatch):
        monkeypatch.delenv("ULTRANOTE_DATA_DIR", raising=False)

        assert get_data_dir().name == ".ultranote"


class TestLoadSave:

    def test_create_writes_defaults(self, data_dir):
        config = load_or_create_config(data_dir)

        assert (data_dir / CONFIG_FILENAME).exists()
        assert config.server.port == 3366
        assert config.server.delete_policy is DeletePolicy.RECENCY
        assert config.sync.poll_interval == 10.0
        assert config.sync.debounce == 0.4
        assert config.sync.immediate_keys == ["scratchpad"]
        assert config.activity_limit == 200
        assert config.data_path == data_dir / "data.json"

    def test_round_trip(self, data_dir):
        config = StoreConfig(path=data_dir)
        config.server.port = 8080
        config.server.delete_policy = DeletePolicy.STICKY
        config.sync.poll_interval = 30.0
        config.sync.auto_sync = False
        config.activity_limit = 50
        save_config(config)

        loaded = load_config(data_dir)

        assert loaded.server.port == 8080
        assert loaded.server.delete_policy is DeletePolicy.STICKY
        assert loaded.sync.poll_interval == 30.0
        assert loaded.sync.auto_sync is False
        assert loaded.activity_limit == 50
        assert loaded.created == config.created

    def test_partial_file_uses_defaults(self, data_dir):
        (data_dir / CONFIG_FILENAME).write_text('[sync]\npoll_interval = 5\n')

        config = load_config(data_dir)

        assert config.sync.poll_interval == 5.0
        assert config.sync.debounce == 0.4
        assert config.server.host == "127.0.0.1"

    def test_missing_file(self, data_dir):
        with pytest.raises(FileNotFoundError):
            load_config(data_dir)

    def test_invalid_toml(self, data_dir):
        (data_dir / CONFIG_FILENAME).write_text("[server\nport = ")

        with pytest.raises(ConfigError):
            load_config(data_dir)

    def test_invalid_value(self, data_dir):
        (data_dir / CONFIG_FILENAME).write_text('[server]\ndelete_policy = "sometimes"\n')

        with pytest.raises(ConfigError):
            load_config(data_dir)

    def test_newer_version_rejected(self, data_dir):
        (data_dir / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")

        with pytest.raises(ConfigError, match="newer"):
            load_config(data_dir)


class TestEnvOverrides:

    def test_port_and_server_url(self, data_dir, monkeypatch):
        save_config(StoreConfig(path=data_dir))
        monkeypatch.setenv("PORT", "4000")
        monkeypatch.setenv("ULTRANOTE_SERVER_URL", "http://notes.local:4000")

        config = load_config(data_dir)

        assert config.server.port == 4000
        assert config.sync.server_url == "http://notes.local:4000"

    def test_bad_port(self, data_dir, monkeypatch):
        monkeypatch.setenv("PORT", "eighty")

        with pytest.raises(ConfigError):
            load_or_create_config(data_dir)
