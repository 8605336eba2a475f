"""Tests for configuration module."""

import argparse
from dataclasses import replace
from pathlib import Path

import pytest

from glowsync.config import (
    ConfigurationError,
    create_config_from_args,
    get_unknown_keys,
    load_config_from_toml,
    load_default_config,
    load_default_toml_data,
    merge_cli_args,
    process_toml_config,
    validate_config,
)


def _args(**kwargs) -> argparse.Namespace:
    defaults = {
        "config": None,
        "router_port": None,
        "status_port": None,
        "no_status_api": False,
        "log_dir": None,
        "log_level_console": None,
        "log_json_console": False,
        "log_rotation": None,
        "log_retention": None,
    }
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


class TestDefaults:
    def test_default_values(self):
        config = load_default_config()
        assert config.router_port == 5570
        assert config.bind_address == "*"
        assert config.enable_status_api is False
        assert config.heartbeat_timeout == 5.0
        assert config.position_margin == 0.1
        assert config.color_saturation == 80
        assert config.color_lightness == 60
        assert config.user_id_bytes == 3

    def test_empty_optional_strings_become_none(self):
        config = load_default_config()
        assert config.log_dir is None
        assert config.log_rotation is None
        assert config.log_retention is None

    def test_defaults_are_valid(self):
        assert validate_config(load_default_config()) == []

    def test_default_toml_has_no_unknown_keys(self):
        assert get_unknown_keys(load_default_toml_data()) == []


class TestLoadConfigFromToml:
    def test_load_valid_toml(self, tmp_path: Path):
        config_file = tmp_path / "config.toml"
        config_file.write_text('router_port = 6000\nstatus_host = "127.0.0.1"\n')

        data = load_config_from_toml(config_file)
        assert data["router_port"] == 6000
        assert data["status_host"] == "127.0.0.1"

    def test_load_nonexistent_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config_from_toml(tmp_path / "nonexistent.toml")

    def test_load_invalid_toml(self, tmp_path: Path):
        import tomllib

        config_file = tmp_path / "invalid.toml"
        config_file.write_text("invalid = [unclosed")

        with pytest.raises(tomllib.TOMLDecodeError):
            load_config_from_toml(config_file)


class TestProcessToml:
    def test_drops_unknown_keys(self):
        assert process_toml_config({"router_port": 1, "roter_port": 2}) == {"router_port": 1}

    def test_unknown_keys_are_reported(self):
        assert get_unknown_keys({"router_port": 1, "roter_port": 2}) == ["roter_port"]


class TestValidateConfig:
    def test_port_out_of_range(self):
        config = replace(load_default_config(), router_port=70000)
        errors = validate_config(config)
        assert any("router_port" in e for e in errors)

    def test_status_port_only_checked_when_enabled(self):
        config = replace(load_default_config(), status_port=0)
        assert validate_config(config) == []
        errors = validate_config(replace(config, enable_status_api=True))
        assert any("status_port" in e for e in errors)

    def test_status_port_must_differ_from_router_port(self):
        config = replace(
            load_default_config(), enable_status_api=True, status_port=5570
        )
        assert "status_port must differ from router_port" in validate_config(config)

    def test_cleanup_interval_not_above_heartbeat_timeout(self):
        config = replace(load_default_config(), cleanup_interval=10.0)
        assert any("cleanup_interval" in e for e in validate_config(config))

    @pytest.mark.parametrize(
        "field,value",
        [
            ("heartbeat_timeout", 0),
            ("poll_timeout", -1),
            ("user_id_bytes", 0),
            ("position_margin", 0.5),
            ("color_saturation", 101),
            ("color_lightness", -1),
            ("log_level_console", "LOUD"),
        ],
    )
    def test_rejects_bad_values(self, field, value):
        config = replace(load_default_config(), **{field: value})
        errors = validate_config(config)
        assert any(field in e for e in errors)


class TestMergeCliArgs:
    def test_no_args_returns_same_config(self):
        config = load_default_config()
        assert merge_cli_args(config, _args()) is config

    def test_ports(self):
        config = merge_cli_args(load_default_config(), _args(router_port=6000))
        assert config.router_port == 6000

    def test_status_port_enables_status_api(self):
        config = merge_cli_args(load_default_config(), _args(status_port=9000))
        assert config.status_port == 9000
        assert config.enable_status_api is True

    def test_no_status_api_wins(self):
        config = merge_cli_args(
            load_default_config(), _args(status_port=9000, no_status_api=True)
        )
        assert config.enable_status_api is False

    def test_logging_flags(self, tmp_path):
        config = merge_cli_args(
            load_default_config(),
            _args(
                log_dir=tmp_path,
                log_level_console="DEBUG",
                log_json_console=True,
                log_rotation="1 MB",
                log_retention="3 days",
            ),
        )
        assert config.log_dir == str(tmp_path)
        assert config.log_level_console == "DEBUG"
        assert config.log_json_console is True
        assert config.log_rotation == "1 MB"
        assert config.log_retention == "3 days"


class TestCreateConfigFromArgs:
    def test_without_user_config(self):
        config, overrides = create_config_from_args(_args())
        assert config == load_default_config()
        assert overrides == []

    def test_user_config_and_cli_priority(self, tmp_path):
        config_file = tmp_path / "glow.toml"
        config_file.write_text(
            "router_port = 6001\nheartbeat_timeout = 8.0\ncolor_lightness = 60\n"
        )

        config, overrides = create_config_from_args(
            _args(config=config_file, router_port=6002)
        )

        assert config.router_port == 6002
        assert config.heartbeat_timeout == 8.0
        override_keys = {o.key for o in overrides}
        assert override_keys == {"router_port", "heartbeat_timeout"}
        router_override = next(o for o in overrides if o.key == "router_port")
        assert router_override.default_value == 5570
        assert router_override.new_value == 6001

    def test_unknown_keys_warn_on_stderr(self, tmp_path, capsys):
        config_file = tmp_path / "glow.toml"
        config_file.write_text("routr_port = 1\n")

        create_config_from_args(_args(config=config_file))
        err = capsys.readouterr().err
        assert "Unknown keys" in err
        assert "routr_port" in err

    def test_invalid_values_raise(self, tmp_path):
        config_file = tmp_path / "glow.toml"
        config_file.write_text("router_port = 0\ncolor_saturation = 300\n")

        with pytest.raises(ConfigurationError) as excinfo:
            create_config_from_args(_args(config=config_file))
        assert len(excinfo.value.errors) == 2

    def test_missing_user_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            create_config_from_args(_args(config=tmp_path / "missing.toml"))
