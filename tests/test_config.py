"""
Tests for provisioner configuration.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from winfeature.config import (
    ProvisionerConfig,
    format_duration,
    get_config,
    load_config,
    parse_duration,
    prepare,
    reset_config,
)
from winfeature.errors import ConfigError


class TestParseDuration:
    @pytest.mark.parametrize(
        "text,seconds",
        [
            ("4h", 14400),
            ("1h30m", 5400),
            ("90s", 90),
            ("250ms", 0.25),
            ("1.5h", 5400),
            ("300", 300),
            (" 10M ", 600),
        ],
    )
    def test_valid(self, text, seconds):
        assert parse_duration(text) == timedelta(seconds=seconds)

    def test_numbers_are_seconds(self):
        assert parse_duration(120) == timedelta(seconds=120)
        assert parse_duration(1.5) == timedelta(seconds=1.5)

    @pytest.mark.parametrize("text", ["", "soon", "5x", "1h30", "h", "inf", "-5m"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_format_duration(self):
        assert format_duration(timedelta(hours=4)) == "4h"
        assert format_duration(timedelta(seconds=5400)) == "1h30m"
        assert format_duration(timedelta(seconds=61)) == "1m1s"
        assert format_duration(timedelta(0)) == "0s"


class TestDefaults:
    def test_prepare_without_input(self):
        config = prepare()
        assert config.username == "SYSTEM"
        assert config.password == ""
        assert config.restart_timeout == timedelta(hours=4)
        assert config.restart_timeout_s == 14400.0
        assert config.features == []
        assert config.capabilities == []
        assert config.log_level == "info"
        assert config.log_format == "text"

    def test_empty_username_means_system(self):
        assert prepare({"username": ""}).username == "SYSTEM"
        assert prepare({"username": "   "}).username == "SYSTEM"

    def test_non_empty_username_kept_verbatim(self):
        assert prepare({"username": " admin "}).username == " admin "

    def test_zero_restart_timeout_means_default(self):
        assert prepare({"restart_timeout": 0}).restart_timeout == timedelta(hours=4)
        assert prepare({"restart_timeout": "0s"}).restart_timeout == timedelta(hours=4)

    def test_restart_timeout_string(self):
        assert prepare({"restart_timeout": "1h30m"}).restart_timeout_s == 5400.0

    def test_restart_timeout_iso8601(self):
        assert prepare({"restart_timeout": "PT2H"}).restart_timeout_s == 7200.0


class TestPrepare:
    def test_later_mappings_win(self):
        config = prepare(
            {"username": "first", "features": ["A"]},
            {"username": "second"},
        )
        assert config.username == "second"
        assert config.features == ["A"]

    def test_none_values_ignored(self):
        config = prepare({"username": "Administrator"}, {"username": None})
        assert config.username == "Administrator"

    def test_feature_order_preserved(self):
        config = prepare({"features": ["C", "A", "B"]})
        assert config.features == ["C", "A", "B"]

    def test_comma_separated_lists(self):
        config = prepare({"capabilities": "Cap.A, Cap.B,,"})
        assert config.capabilities == ["Cap.A", "Cap.B"]

    def test_invalid_duration(self):
        with pytest.raises(ConfigError) as exc_info:
            prepare({"restart_timeout": "soon"})
        assert any(p.startswith("restart_timeout:") for p in exc_info.value.problems)

    def test_negative_duration(self):
        with pytest.raises(ConfigError, match="must not be negative"):
            prepare({"restart_timeout": -5})

    def test_blank_feature_names(self):
        with pytest.raises(ConfigError, match="features"):
            prepare({"features": ["IIS", " "]})

    def test_all_problems_reported(self):
        with pytest.raises(ConfigError) as exc_info:
            prepare({"restart_timeout": "soon", "log_level": "loud"})
        assert len(exc_info.value.problems) == 2

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigError, match="expected a mapping"):
            prepare(["features"])

    def test_config_is_frozen(self):
        config = prepare()
        with pytest.raises(ValidationError):
            config.username = "other"

    def test_describe_redacts_password(self):
        summary = prepare({"password": "hunter2", "restart_timeout": "90m"}).describe()
        assert summary["password"] == "***"
        assert summary["restart_timeout"] == "1h30m"


class TestEnvironment:
    def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("WINFEATURE_USERNAME", "Administrator")
        monkeypatch.setenv("WINFEATURE_FEATURES", "IIS-WebServer, Microsoft-Hyper-V")
        monkeypatch.setenv("WINFEATURE_RESTART_TIMEOUT", "30m")

        config = ProvisionerConfig()
        assert config.username == "Administrator"
        assert config.features == ["IIS-WebServer", "Microsoft-Hyper-V"]
        assert config.restart_timeout == timedelta(minutes=30)

    def test_explicit_values_beat_env(self, monkeypatch):
        monkeypatch.setenv("WINFEATURE_USERNAME", "from-env")
        assert prepare({"username": "explicit"}).username == "explicit"


class TestLoadConfig:
    def test_yaml_file(self, tmp_path):
        path = tmp_path / "provision.yaml"
        path.write_text(
            "username: Administrator\n"
            "restart_timeout: 2h\n"
            "features:\n"
            "  - IIS-WebServer\n"
            "capabilities:\n"
            "  - OpenSSH.Server~~~~0.0.1.0\n"
        )
        config = load_config(path)
        assert config.username == "Administrator"
        assert config.restart_timeout_s == 7200.0
        assert config.features == ["IIS-WebServer"]
        assert config.capabilities == ["OpenSSH.Server~~~~0.0.1.0"]

    def test_overrides_beat_file(self, tmp_path):
        path = tmp_path / "provision.yaml"
        path.write_text("username: Administrator\n")
        assert load_config(path, username="builder").username == "builder"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path).username == "SYSTEM"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="config file not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("features: [unclosed\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(path)

    def test_yaml_list_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- IIS-WebServer\n")
        with pytest.raises(ConfigError, match="expected a mapping"):
            load_config(path)


class TestGlobalConfig:
    def test_singleton(self):
        assert get_config() is get_config()

    def test_overrides_rebuild(self):
        first = get_config()
        second = get_config(username="builder")
        assert second is not first
        assert get_config().username == "builder"

    def test_reset(self):
        first = get_config()
        reset_config()
        assert get_config() is not first
