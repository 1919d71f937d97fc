import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from config.config import (
    DEFAULT_CONFIG_FILE,
    CollectorConfig,
    _deep_merge,
    _expand_env_vars,
    build_config,
    load_config,
    load_yaml,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "COLLECTOR_URL",
        "COLLECTOR_AUTHORIZATION",
        "UPSTREAM_URL",
        "COLLECTOR_STORE_PATH",
        "DAY_CACHE_TTL_SECONDS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path: Path, section: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"collector": section}))
    return path


MINIMAL = {"collector": {"url": "https://collector.example.com/in"}}


# =========================================================================
# load_yaml
# =========================================================================


class TestLoadYaml:
    def test_returns_empty_dict_for_nonexistent_file(self):
        assert load_yaml(Path("/nonexistent/path/config.yaml")) == {}

    def test_loads_yaml_file(self, tmp_path):
        config_file = tmp_path / "test.yaml"
        config_file.write_text("key: value\nnested:\n  a: 1\n")
        assert load_yaml(config_file) == {"key": "value", "nested": {"a": 1}}

    def test_returns_empty_dict_for_empty_file(self, tmp_path):
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert load_yaml(config_file) == {}


# =========================================================================
# _expand_env_vars / _deep_merge
# =========================================================================


class TestExpandEnvVars:
    def test_expands_set_variable(self):
        with patch.dict(os.environ, {"MY_URL": "https://x"}):
            assert _expand_env_vars({"url": "${MY_URL}"}) == {"url": "https://x"}

    def test_uses_default_when_unset(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING:-fallback}") == "fallback"

    def test_empty_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING:-}") == ""

    def test_leaves_unset_without_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING}") == "${MISSING}"

    def test_recurses_into_lists(self):
        with patch.dict(os.environ, {"HOST": "a.example"}):
            assert _expand_env_vars(["${HOST}", 3]) == ["a.example", 3]


class TestDeepMerge:
    def test_nested_merge(self):
        base = {"scheduler": {"interval_seconds": 60}, "store": {"backend": "file"}}
        merged = _deep_merge(base, {"scheduler": {"interval_seconds": 5}})
        assert merged == {"scheduler": {"interval_seconds": 5}, "store": {"backend": "file"}}
        assert base["scheduler"]["interval_seconds"] == 60


# =========================================================================
# build_config / validate
# =========================================================================


class TestBuildConfig:
    def test_defaults(self):
        config = build_config(MINIMAL)
        assert config.upstream.url == "https://api.inplayip.tv/api/schedule/table"
        assert config.upstream.days_ahead == 1
        assert config.credentials.strategies == ["header_capture", "token_extraction"]
        assert config.credentials.handshake_marker == "stream_settings_aliases"
        assert config.credentials.token_param == "access_token"
        assert config.collector.max_attempts == 3
        assert config.change_detection.policy == "content_diff"
        assert config.change_detection.cache_ttl_seconds == 86400
        assert config.change_detection.day_cache_ttl_seconds is None
        assert config.scheduler.interval_seconds == 60
        assert config.store.backend == "file"
        assert config.hook_server.enabled is True

    def test_string_values_are_coerced(self):
        config = build_config(
            {
                **MINIMAL,
                "scheduler": {"interval_seconds": "15"},
                "hook_server": {"enabled": "false", "port": "9000"},
                "logging": {"json": "true"},
            }
        )
        assert config.scheduler.interval_seconds == 15.0
        assert config.hook_server.enabled is False
        assert config.hook_server.port == 9000
        assert config.logging.json is True

    def test_empty_static_headers_dropped(self):
        config = build_config(
            {**MINIMAL, "credentials": {"static_headers": {"Authorization": "", "X-Key": "abc"}}}
        )
        assert config.credentials.static_headers == {"X-Key": "abc"}

    def test_empty_optional_ttl_is_none(self):
        config = build_config({**MINIMAL, "credentials": {"default_ttl_seconds": ""}})
        assert config.credentials.default_ttl_seconds is None

    def test_collector_env_overrides(self, monkeypatch):
        monkeypatch.setenv("COLLECTOR_URL", "https://env.example.com/c")
        monkeypatch.setenv("COLLECTOR_AUTHORIZATION", "Basic abc")
        config = build_config(MINIMAL)
        assert config.collector.url == "https://env.example.com/c"
        assert config.collector.authorization == "Basic abc"


class TestValidate:
    def test_valid_minimal(self):
        build_config(MINIMAL).validate()

    def test_missing_collector_url(self):
        with pytest.raises(ValueError, match="collector.url is required"):
            CollectorConfig().validate()

    def test_non_http_url(self):
        config = build_config({**MINIMAL, "upstream": {"url": "ftp://x"}})
        with pytest.raises(ValueError, match="upstream.url must start with"):
            config.validate()

    def test_non_positive_interval(self):
        config = build_config({**MINIMAL, "scheduler": {"interval_seconds": 0}})
        with pytest.raises(ValueError, match="scheduler.interval_seconds"):
            config.validate()

    def test_unknown_policy(self):
        config = build_config({**MINIMAL, "change_detection": {"policy": "always"}})
        with pytest.raises(ValueError, match="change_detection.policy"):
            config.validate()

    def test_unknown_backend(self):
        config = build_config({**MINIMAL, "store": {"backend": "redis"}})
        with pytest.raises(ValueError, match="store.backend"):
            config.validate()

    def test_unknown_strategy(self):
        config = build_config({**MINIMAL, "credentials": {"strategies": ["cookie_jar"]}})
        with pytest.raises(ValueError, match="credentials.strategies"):
            config.validate()

    def test_no_strategies_needs_static_headers(self):
        config = build_config({**MINIMAL, "credentials": {"strategies": []}})
        with pytest.raises(ValueError, match="static_headers"):
            config.validate()

        config = build_config(
            {**MINIMAL, "credentials": {"strategies": [], "static_headers": {"Authorization": "Bearer t"}}}
        )
        config.validate()

    def test_file_backend_needs_path(self):
        config = build_config({**MINIMAL, "store": {"backend": "file", "path": ""}})
        with pytest.raises(ValueError, match="store.path"):
            config.validate()

    def test_day_cache_ttl_must_be_positive(self):
        config = build_config({**MINIMAL, "change_detection": {"day_cache_ttl_seconds": 0}})
        with pytest.raises(ValueError, match="change_detection.day_cache_ttl_seconds"):
            config.validate()

        build_config({**MINIMAL, "change_detection": {"day_cache_ttl_seconds": "86400"}}).validate()

    def test_port_range(self):
        config = build_config({**MINIMAL, "hook_server": {"port": 70000}})
        with pytest.raises(ValueError, match="hook_server.port"):
            config.validate()


# =========================================================================
# load_config
# =========================================================================


class TestLoadConfig:
    def test_loads_file(self, tmp_path):
        path = _write_config(tmp_path, {**MINIMAL, "scheduler": {"interval_seconds": 30}})
        config = load_config(config_path=path)
        assert config.scheduler.interval_seconds == 30
        assert config.collector.url == "https://collector.example.com/in"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(config_path=tmp_path / "nope.yaml")

    def test_missing_collector_section(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("other: {}\n")
        with pytest.raises(ValueError, match="missing 'collector:' section"):
            load_config(config_path=path)

    def test_overrides_applied(self, tmp_path):
        path = _write_config(tmp_path, MINIMAL)
        config = load_config(config_path=path, overrides={"change_detection": {"policy": "ttl"}})
        assert config.change_detection.policy == "ttl"

    def test_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MY_COLLECTOR", "https://expanded.example.com")
        path = _write_config(tmp_path, {"collector": {"url": "${MY_COLLECTOR}"}})
        assert load_config(config_path=path).collector.url == "https://expanded.example.com"

    def test_invalid_config_rejected(self, tmp_path):
        path = _write_config(tmp_path, {"collector": {"url": "https://c"}, "store": {"backend": "sqlite"}})
        with pytest.raises(ValueError, match="store.backend"):
            load_config(config_path=path)

    def test_warns_without_authorization(self, tmp_path, caplog):
        path = _write_config(tmp_path, MINIMAL)
        load_config(config_path=path)
        assert "authorization not configured" in caplog.text

    def test_shipped_config_is_valid(self):
        config = load_config(config_path=DEFAULT_CONFIG_FILE)
        assert config.collector.url == "https://sportarena.win/collector/index.php"
        assert config.credentials.allowed_hosts

