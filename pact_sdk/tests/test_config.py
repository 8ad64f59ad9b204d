"""Tests for pact_sdk.config module."""

import os

import pytest

from pact_sdk.config import (
    DEFAULTS,
    PactConfig,
    find_config_file,
    load_config,
    merge_options,
    options_from_env,
    parse_bool,
    parse_list,
    preprocessor_options_from_env,
)
from pact_sdk.errors import PactConfigError
from pact_sdk.modes import PactMode, RecordingMode


class TestMergeOptions:
    """Tests for merge_options()."""

    def test_later_wins(self):
        assert merge_options({"a": 1}, {"a": 2}) == {"a": 2}

    def test_none_falls_through(self):
        assert merge_options({"a": 1, "b": 2}, {"b": None, "c": 3}) == {"a": 1, "b": 2, "c": 3}

    def test_skips_empty_sources(self):
        assert merge_options(None, {}, {"a": 1}) == {"a": 1}


class TestParsers:
    """Tests for parse_bool() and parse_list()."""

    @pytest.mark.parametrize("value", ["true", "TRUE", "1", "yes", True, 1])
    def test_true(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["false", "0", "No", False, 0])
    def test_false(self, value):
        assert parse_bool(value) is False

    def test_invalid_bool(self):
        with pytest.raises(PactConfigError):
            parse_bool("maybe")

    def test_list_formats(self):
        assert parse_list("a, b,,c") == ["a", "b", "c"]
        assert parse_list('["x.y", "z"]') == ["x.y", "z"]
        assert parse_list(None) == []
        assert parse_list(("a",)) == ["a"]


class TestEnvironment:
    """Tests for options_from_env()."""

    def test_reads_variables(self):
        env = {
            "PACT_MODE": "mock",
            "PACT_STRICT_MATCHING": "false",
            "PACT_PORT": "4000",
            "PACT_PREPROCESSOR_OBFUSCATE": "request.headers.x-api-key,response.body.token",
        }
        options = options_from_env(env)
        assert options["mode"] == "mock"
        assert options["strict_matching"] is False
        assert options["port"] == 4000
        assert options["obfuscate"] == ["request.headers.x-api-key", "response.body.token"]

    def test_empty_values_skipped(self):
        assert options_from_env({"PACT_MODE": ""}) == {}

    def test_invalid_value(self):
        with pytest.raises(PactConfigError):
            options_from_env({"PACT_PORT": "abc"})

    def test_preprocessor_subset(self):
        env = {"PACT_MODE": "record", "PACT_PREPROCESSOR_PATTERN": "xxx"}
        assert preprocessor_options_from_env(env) == {"obfuscation_pattern": "xxx"}


class TestPactConfig:
    """Tests for PactConfig and load_config()."""

    def test_defaults(self):
        config = PactConfig()
        assert config.mode == PactMode.DISABLED
        assert config.recording_mode == RecordingMode.APPEND
        assert config.strict_matching is True
        assert config.port == DEFAULTS["port"]
        assert config.base_url is None

    def test_invalid_mode(self):
        with pytest.raises(PactConfigError):
            PactConfig({"mode": "replay"}).mode

    def test_file_and_overrides(self, temp_dir):
        config_file = temp_dir / "pact.yaml"
        config_file.write_text(
            "mode: record\n"
            "recording-mode: replace\n"
            "base_url: https://tenant.example.com\n"
            "obfuscate:\n"
            "  - response.body.token\n"
        )
        config = load_config(str(config_file), environ={}, tenant="t100")
        assert config.mode == PactMode.RECORD
        assert config.recording_mode == RecordingMode.REPLACE
        assert config.base_url == "https://tenant.example.com"
        assert config.tenant == "t100"
        assert config.preprocessor_options() == {"obfuscate": ["response.body.token"]}

    def test_file_overrides_environment(self, temp_dir):
        config_file = temp_dir / "pact.yaml"
        config_file.write_text("mode: apply\n")
        config = load_config(str(config_file), environ={"PACT_MODE": "mock", "PACT_TENANT": "t1"})
        assert config.mode == PactMode.APPLY
        assert config.tenant == "t1"

    def test_environ_skips_file_search(self):
        config = load_config(environ={"PACT_MODE": "mock"})
        assert config.mode == PactMode.MOCK

    def test_find_config_file_walks_up(self, temp_dir):
        (temp_dir / "pact.json").write_text("{}")
        nested = temp_dir / "a" / "b"
        nested.mkdir(parents=True)
        os.environ.pop("PACT_CONFIG", None)
        assert find_config_file(nested) == (temp_dir / "pact.json").resolve()

    def test_find_config_file_from_env(self, temp_dir):
        os.environ["PACT_CONFIG"] = str(temp_dir / "custom.yaml")
        assert find_config_file() == temp_dir / "custom.yaml"

    def test_non_mapping_file(self, temp_dir):
        config_file = temp_dir / "pact.yaml"
        config_file.write_text("- a\n- b\n")
        with pytest.raises(PactConfigError):
            load_config(str(config_file), environ={})
