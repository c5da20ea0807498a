"""
Unit tests for infrastructure.config.

Covers layering (defaults < specgraph.toml < environment < overrides) and
the fallbacks for unreadable or invalid configuration.
"""
import pytest

from infrastructure.config import (
    CONFIG_FILE_NAME,
    SpecGraphConfig,
    load_config,
    load_env_config,
    load_toml_config,
)


class TestDefaults:

    def test_defaults(self):
        config = load_config(env={})
        assert config == SpecGraphConfig()
        assert config.default_directory == "specgraph"
        assert config.cache_ttl_seconds == 1.5
        assert config.strict_pins is False

    def test_config_is_frozen(self):
        config = SpecGraphConfig()
        with pytest.raises(AttributeError):
            config.strict_pins = True


class TestTomlLayer:

    def test_reads_specgraph_table(self, tmp_path):
        (tmp_path / CONFIG_FILE_NAME).write_text(
            '[specgraph]\ndefault_directory = "spec"\ncache_ttl_ms = 0\nstrict_pins = true\n'
        )
        config = load_config(tmp_path, env={})
        assert config.default_directory == "spec"
        assert config.cache_ttl_seconds == 0.0
        assert config.strict_pins is True

    def test_missing_file_is_empty(self, tmp_path):
        assert load_toml_config(tmp_path / CONFIG_FILE_NAME) == {}

    def test_broken_toml_warns(self, tmp_path):
        path = tmp_path / CONFIG_FILE_NAME
        path.write_text("[specgraph\n")
        with pytest.warns(UserWarning, match="Failed to load config"):
            assert load_toml_config(path) == {}

    def test_unknown_key_falls_back_to_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILE_NAME).write_text('[specgraph]\nno_such_key = 1\n')
        with pytest.warns(UserWarning, match="Invalid specgraph configuration"):
            assert load_config(tmp_path, env={}) == SpecGraphConfig()


class TestEnvLayer:

    def test_env_overrides_file(self, tmp_path):
        (tmp_path / CONFIG_FILE_NAME).write_text('[specgraph]\ndefault_directory = "spec"\n')
        config = load_config(tmp_path, env={
            "SPECGRAPH_DIRECTORY": "graph",
            "SPECGRAPH_STRICT_PINS": "yes",
            "SPECGRAPH_SCHEMA_FETCH_TIMEOUT": "2.5",
        })
        assert config.default_directory == "graph"
        assert config.strict_pins is True
        assert config.schema_fetch_timeout == 2.5

    def test_unparseable_env_value_skipped(self):
        with pytest.warns(UserWarning, match="SPECGRAPH_CACHE_TTL_MS"):
            values = load_env_config({"SPECGRAPH_CACHE_TTL_MS": "soon"})
        assert values == {}

    def test_overrides_win(self):
        config = load_config(env={"SPECGRAPH_LOG_LEVEL": "DEBUG"}, overrides={"log_level": "ERROR"})
        assert config.log_level == "ERROR"

    def test_negative_ttl_reset(self):
        with pytest.warns(UserWarning, match="Negative cache_ttl_ms"):
            config = load_config(env={"SPECGRAPH_CACHE_TTL_MS": "-5"})
        assert config.cache_ttl_ms == 1500
