"""
Tests for engine configuration resolution.
"""

import json

import pytest

from elmdiag.config import EngineConfig, config_dir, load_config
from elmdiag.core.errors import ConfigError


def _write(path, obj):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj), encoding="utf-8")


class TestDefaults:
    def test_defaults(self):
        config = load_config()
        assert config == EngineConfig()
        assert config.to_dict() == {
            "reset_timeout_ms": 1000,
            "init_timeout_ms": 300,
            "obd2_timeout_ms": 300,
            "j1939_timeout_ms": 400,
            "quiet_period_ms": 150,
            "retries": 1,
        }

    def test_command_timeout_per_protocol(self):
        config = EngineConfig()
        assert config.command_timeout_ms("obd2") == 300
        assert config.command_timeout_ms("j1939") == 400


class TestPrecedence:
    def test_file_in_config_dir(self, tmp_path):
        _write(tmp_path / "config" / "elmdiag.json", {"obd2_timeout_ms": 500})
        assert load_config().obd2_timeout_ms == 500

    def test_env_over_file(self, tmp_path, monkeypatch):
        _write(tmp_path / "config" / "elmdiag.json", {"obd2_timeout_ms": 500, "retries": 2})
        monkeypatch.setenv("ELMDIAG_OBD2_TIMEOUT_MS", "700")
        config = load_config()
        assert config.obd2_timeout_ms == 700
        assert config.retries == 2

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("ELMDIAG_QUIET_PERIOD_MS", "200")
        config = load_config({"quiet_period_ms": 80, "retries": None})
        assert config.quiet_period_ms == 80
        assert config.retries == 1

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "custom.json"
        _write(path, {"j1939_timeout_ms": 900})
        assert load_config(config_path=path).j1939_timeout_ms == 900

    def test_config_dir_from_xdg(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ELMDIAG_CONFIG_DIR")
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert config_dir() == tmp_path / "elmdiag"


class TestInvalid:
    def test_zero_retries_allowed(self):
        assert load_config({"retries": 0}).retries == 0

    @pytest.mark.parametrize(
        "overrides",
        [{"obd2_timeout_ms": 0}, {"retries": -1}, {"quiet_period_ms": "fast"}, {"init_timeout_ms": True}],
    )
    def test_bad_values(self, overrides):
        with pytest.raises(ConfigError):
            load_config(overrides)

    def test_bad_env(self, monkeypatch):
        monkeypatch.setenv("ELMDIAG_RETRIES", "many")
        with pytest.raises(ConfigError) as excinfo:
            load_config()
        assert "ELMDIAG_RETRIES" in str(excinfo.value)

    def test_unknown_key_in_file(self, tmp_path):
        _write(tmp_path / "config" / "elmdiag.json", {"baud": 38400})
        with pytest.raises(ConfigError):
            load_config()

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "config" / "elmdiag.json"
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config()
