"""
Tests for configuration loading and resolution.
"""

import pytest

from healthsync.config.loader import CONFIG_FILENAME, Config, _merge_dict, load_config
from healthsync.config.resolver import has_unresolved, resolve_config
from healthsync.exceptions import ConfigurationError

BASE_ENV = {"DATABASE_URL": "duckdb://:memory:", "AUTH_SECRET": "secret"}


class TestConfig:
    """Tests for Config class."""

    def test_dot_notation(self):
        cfg = Config({"sync": {"retry": {"max_attempts": 3}}})
        assert cfg.get("sync.retry.max_attempts") == 3

    def test_dot_notation_missing_returns_default(self):
        cfg = Config({"a": 1})
        assert cfg.get("a.b.c", "fallback") == "fallback"

    def test_contains(self):
        cfg = Config({"a": {"b": 1}})
        assert "a" in cfg
        assert "a.b" in cfg
        assert "a.c" not in cfg

    def test_getitem(self):
        cfg = Config({"name": "test", "nested": {"key": "val"}})
        assert cfg["name"] == "test"
        assert isinstance(cfg["nested"], Config)
        assert cfg["nested.key"] == "val"

    def test_getitem_missing_raises(self):
        with pytest.raises(KeyError):
            Config({})["missing"]

    def test_iter(self):
        assert list(Config({"a": 1, "b": 2})) == ["a", "b"]

    def test_partners_default_empty(self):
        assert Config({"partners": None}).partners == {}


class TestLoadConfig:
    def test_defaults_with_env(self, tmp_path):
        config = load_config(tmp_path, environ=BASE_ENV)
        assert config.get("state.url") == "duckdb://:memory:"
        assert config.get("service.auth_secret") == "secret"
        assert config.get("service.port") == 3000
        assert config.get("sync.max_concurrent_jobs") == 5
        assert config.get("sync.batch_size") == 100

    def test_env_overrides(self, tmp_path):
        env = {**BASE_ENV, "APP_PORT": "8080", "MAX_CONCURRENT_JOBS": "3", "LOG_LEVEL": "DEBUG"}
        config = load_config(tmp_path, environ=env)
        assert config.get("service.port") == 8080
        assert config.get("sync.max_concurrent_jobs") == 3
        assert config.get("logging.level") == "DEBUG"

    def test_empty_env_value_ignored(self, tmp_path):
        config = load_config(tmp_path, environ={**BASE_ENV, "APP_PORT": ""})
        assert config.get("service.port") == 3000

    def test_bad_integer_env(self, tmp_path):
        with pytest.raises(ConfigurationError, match="APP_PORT"):
            load_config(tmp_path, environ={**BASE_ENV, "APP_PORT": "eighty"})

    def test_missing_required(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(tmp_path, environ={})
        errors = exc_info.value.details["errors"]
        assert any("DATABASE_URL" in e for e in errors)
        assert any("AUTH_SECRET" in e for e in errors)

    def test_skip_validation(self, tmp_path):
        config = load_config(tmp_path, environ={}, validate=False)
        assert config.get("state.url") is None

    def test_range_validation(self, tmp_path):
        with pytest.raises(ConfigurationError, match="max_concurrent_jobs"):
            load_config(tmp_path, environ={**BASE_ENV, "MAX_CONCURRENT_JOBS": "0"})

    def test_yaml_file(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(
            "sync:\n"
            "  batch_size: 25\n"
            "partners:\n"
            "  hospital-a:\n"
            "    source: {type: memory}\n"
            "    destination: {type: memory}\n"
        )
        config = load_config(tmp_path, environ=BASE_ENV)
        assert config.get("sync.batch_size") == 25
        # Untouched defaults survive the merge
        assert config.get("sync.max_concurrent_jobs") == 5
        assert config.partners["hospital-a"]["source"]["type"] == "memory"

    def test_yaml_placeholders(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(
            "state:\n  url: ${STATE_URL}\nservice:\n  auth_secret: ${SECRET:-fallback}\n  port: ${PORT}\n"
        )
        config = load_config(tmp_path, environ={"STATE_URL": "duckdb://state.db", "PORT": "9000"})
        assert config.get("state.url") == "duckdb://state.db"
        assert config.get("service.auth_secret") == "fallback"
        assert config.get("service.port") == 9000

    def test_unresolved_placeholder_fails_validation(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("state:\n  url: ${STATE_URL}\n")
        with pytest.raises(ConfigurationError, match="state.url"):
            load_config(tmp_path, environ={"AUTH_SECRET": "x"})

    def test_env_wins_over_yaml(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("service:\n  port: 4000\n")
        config = load_config(tmp_path, environ={**BASE_ENV, "APP_PORT": "5000"})
        assert config.get("service.port") == 5000

    def test_invalid_yaml_raises(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("sync: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Error parsing"):
            load_config(tmp_path, environ=BASE_ENV)

    def test_non_mapping_yaml_raises(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(tmp_path, environ=BASE_ENV)


@pytest.mark.unit
class TestResolver:
    def test_substitution(self):
        assert resolve_config({"a": "${X}"}, {"X": "1"}) == {"a": "1"}

    def test_default(self):
        assert resolve_config({"a": "${X:-two}"}, {}) == {"a": "two"}

    def test_nested_and_lists(self):
        data = {"a": {"b": ["${X}", 3]}, "c": "pre-${X}-post"}
        assert resolve_config(data, {"X": "v"}) == {"a": {"b": ["v", 3]}, "c": "pre-v-post"}

    def test_unset_left_as_is(self):
        resolved = resolve_config({"a": "${MISSING}"}, {})
        assert resolved == {"a": "${MISSING}"}
        assert has_unresolved(resolved["a"])
        assert not has_unresolved("plain")
        assert not has_unresolved(5)


class TestMergeDict:
    def test_simple_override(self):
        base = {"a": 1, "b": 2}
        _merge_dict(base, {"b": 3})
        assert base == {"a": 1, "b": 3}

    def test_nested_merge(self):
        base = {"a": {"x": 1, "y": 2}}
        _merge_dict(base, {"a": {"y": 3, "z": 4}})
        assert base == {"a": {"x": 1, "y": 3, "z": 4}}
