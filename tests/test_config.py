"""Tests for configuration loading and validation."""
from pathlib import Path

import pytest
import yaml

from engage.config import (
    BASE_PATH_ENV_VAR,
    CONFIG_FILENAME,
    DEFAULT_BASE_PATH,
    DEFAULT_CONFIG,
    ConfigError,
    TOKEN_ENV_VAR,
    build_config,
    deep_merge,
    default_config_yaml,
    get_base_path,
    get_dotted,
    load_config,
    parse_value,
    set_dotted,
)


class TestBasePath:

    def test_argument_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv(BASE_PATH_ENV_VAR, "/elsewhere")
        assert get_base_path(tmp_path) == tmp_path

    def test_env_then_default(self, monkeypatch):
        monkeypatch.setenv(BASE_PATH_ENV_VAR, "/srv/engage")
        assert get_base_path() == Path("/srv/engage")
        monkeypatch.delenv(BASE_PATH_ENV_VAR)
        assert get_base_path() == DEFAULT_BASE_PATH


class TestDottedKeys:

    def test_get_and_set(self):
        data = {"sync": {"interval_seconds": 60}}
        assert get_dotted(data, "sync.interval_seconds") == 60
        with pytest.raises(KeyError):
            get_dotted(data, "sync.missing")

        set_dotted(data, "remote.base_url", "http://x")
        assert data["remote"] == {"base_url": "http://x"}

    def test_deep_merge_does_not_mutate(self):
        merged = deep_merge(DEFAULT_CONFIG, {"sync": {"pull_limit": 5}})
        assert merged["sync"]["pull_limit"] == 5
        assert merged["sync"]["interval_seconds"] == 60
        assert DEFAULT_CONFIG["sync"]["pull_limit"] == 100

    def test_parse_value(self):
        assert parse_value("60") == 60
        assert parse_value("false") is False
        assert parse_value("http://localhost:2137") == "http://localhost:2137"


class TestBuildConfig:

    def test_defaults(self, tmp_path):
        config = build_config({}, tmp_path, env={})
        assert config.remote.base_url == "http://localhost:2137"
        assert config.remote.token is None
        assert config.sync.pull_limit == 100
        assert config.db_path == tmp_path / "engage360.db"

    def test_token_from_env_overrides_file(self, tmp_path):
        config = build_config({"remote": {"token": "file"}}, tmp_path, env={TOKEN_ENV_VAR: "env"})
        assert config.remote.token == "env"
        assert config.to_dict()["remote"]["token"] == "***"

    def test_memory_and_absolute_db_paths(self, tmp_path):
        assert str(build_config({"storage": {"db_path": ":memory:"}}, tmp_path, env={}).db_path) == ":memory:"
        absolute = tmp_path / "other" / "crm.db"
        assert build_config({"storage": {"db_path": str(absolute)}}, tmp_path, env={}).db_path == absolute

    def test_trailing_slash_stripped(self, tmp_path):
        config = build_config({"remote": {"base_url": "https://engage.example.com/"}}, tmp_path, env={})
        assert config.remote.base_url == "https://engage.example.com"

    @pytest.mark.parametrize("data", [
        {"remote": {"base_url": "ftp://x"}},
        {"remote": "nope"},
        {"sync": {"interval_seconds": 0}},
        {"sync": {"pull_limit": "many"}},
        {"sync": {"failure_threshold": True}},
        {"logging": {"level": "LOUD"}},
        {"storage": {"db_path": ""}},
    ])
    def test_invalid_values(self, tmp_path, data):
        with pytest.raises(ConfigError):
            build_config(data, tmp_path, env={})


class TestLoadConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path, env={})
        assert config.base_path == tmp_path
        assert config.logging.level == "WARNING"

    def test_reads_yaml(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("sync:\n  interval_seconds: 5\nlogging:\n  level: debug\n")
        config = load_config(tmp_path, env={})
        assert config.sync.interval_seconds == 5
        assert config.logging.level == "DEBUG"

    def test_default_file_round_trips(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(default_config_yaml())
        assert yaml.safe_load(default_config_yaml()) == DEFAULT_CONFIG
        assert load_config(tmp_path, env={}).to_dict()["sync"] == DEFAULT_CONFIG["sync"]

    @pytest.mark.parametrize("content", ["remote: [unclosed", "- just\n- a list\n"])
    def test_bad_files(self, tmp_path, content):
        (tmp_path / CONFIG_FILENAME).write_text(content)
        with pytest.raises(ConfigError):
            load_config(tmp_path, env={})
