"""Configuration management for the GlowSync server.

TOML-based configuration with CLI override capability.

Configuration priority: CLI args > user config > default config
"""

from __future__ import annotations

import argparse
import importlib.resources
import sys
import tomllib
from dataclasses import dataclass, fields
from dataclasses import replace as dataclass_replace
from pathlib import Path
from typing import Any, NamedTuple


class ConfigurationError(Exception):
    """Raised when configuration validation fails.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(errors)}")


class DefaultConfigError(Exception):
    """Raised when the bundled default configuration cannot be loaded."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to load default configuration: {message}")


class ConfigOverride(NamedTuple):
    """A value from the user config that differs from the default."""

    key: str
    default_value: Any
    new_value: Any


@dataclass
class ServerConfig:
    """Server configuration.

    Every field is required; defaults live in the bundled ``default.toml``.
    """

    # Network settings
    bind_address: str
    router_port: int
    enable_status_api: bool
    status_host: str
    status_port: int

    # Timing settings
    heartbeat_timeout: float
    cleanup_interval: float
    status_log_interval: float
    poll_timeout: int
    send_hwm: int

    # Identity allocation
    position_margin: float
    color_saturation: int
    color_lightness: int
    user_id_bytes: int

    # Logging settings
    log_dir: str | None
    log_level_console: str
    log_json_console: bool
    log_rotation: str | None
    log_retention: str | None


_VALID_KEYS: frozenset[str] = frozenset(f.name for f in fields(ServerConfig))
_OPTIONAL_STRING_KEYS = ("log_dir", "log_rotation", "log_retention")


def load_default_toml_data() -> dict[str, Any]:
    """Load ``default.toml`` from the package.

    Raises:
        DefaultConfigError: If default.toml cannot be found or parsed.
    """
    try:
        content = importlib.resources.files("glowsync").joinpath("default.toml").read_bytes()
        return tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError as e:
        raise DefaultConfigError(f"default.toml not found in package: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise DefaultConfigError(f"Invalid TOML syntax in default.toml: {e}") from e


def load_config_from_toml(path: Path) -> dict[str, Any]:
    """Load a user TOML file.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        tomllib.TOMLDecodeError: If the TOML syntax is invalid.
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def process_toml_config(toml_data: dict[str, Any]) -> dict[str, Any]:
    """Keep known keys; empty strings become ``None`` for optional settings."""
    result: dict[str, Any] = {}
    for key, value in toml_data.items():
        if key not in _VALID_KEYS:
            continue
        if key in _OPTIONAL_STRING_KEYS and value == "":
            value = None
        result[key] = value
    return result


def get_unknown_keys(toml_data: dict[str, Any]) -> list[str]:
    """Keys that do not map to a ``ServerConfig`` field (likely typos)."""
    return [key for key in toml_data if key not in _VALID_KEYS]


def validate_config(config: ServerConfig) -> list[str]:
    """Return validation errors; an empty list means the config is usable."""
    errors: list[str] = []

    if not 1 <= config.router_port <= 65535:
        errors.append(f"router_port must be between 1 and 65535, got {config.router_port}")
    if config.enable_status_api:
        if not 1 <= config.status_port <= 65535:
            errors.append(
                f"status_port must be between 1 and 65535, got {config.status_port}"
            )
        elif config.status_port == config.router_port:
            errors.append("status_port must differ from router_port")

    for field_name in (
        "heartbeat_timeout",
        "cleanup_interval",
        "status_log_interval",
    ):
        value = getattr(config, field_name)
        if value <= 0:
            errors.append(f"{field_name} must be positive, got {value}")

    for field_name in ("poll_timeout", "send_hwm", "user_id_bytes"):
        value = getattr(config, field_name)
        if value <= 0:
            errors.append(f"{field_name} must be positive, got {value}")

    if config.cleanup_interval > config.heartbeat_timeout:
        errors.append(
            f"cleanup_interval ({config.cleanup_interval}s) must not exceed "
            f"heartbeat_timeout ({config.heartbeat_timeout}s)"
        )

    if not 0 <= config.position_margin < 0.5:
        errors.append(
            f"position_margin must be in [0, 0.5), got {config.position_margin}"
        )

    for field_name in ("color_saturation", "color_lightness"):
        value = getattr(config, field_name)
        if not 0 <= value <= 100:
            errors.append(f"{field_name} must be between 0 and 100, got {value}")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level_console.upper() not in valid_log_levels:
        errors.append(
            f"log_level_console must be one of {valid_log_levels}, "
            f"got {config.log_level_console}"
        )

    return errors


def load_default_config() -> ServerConfig:
    """Build a ``ServerConfig`` from the bundled defaults.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded or is incomplete.
    """
    config_data = process_toml_config(load_default_toml_data())

    missing = _VALID_KEYS - set(config_data)
    if missing:
        raise DefaultConfigError(
            f"Missing required fields in default.toml: {', '.join(sorted(missing))}"
        )

    try:
        return ServerConfig(**config_data)
    except TypeError as e:
        raise DefaultConfigError(f"Invalid field types in default.toml: {e}") from e


def merge_cli_args(config: ServerConfig, args: argparse.Namespace) -> ServerConfig:
    """Apply explicitly given CLI arguments on top of ``config``."""
    updates: dict[str, Any] = {}

    if getattr(args, "router_port", None) is not None:
        updates["router_port"] = args.router_port
    if getattr(args, "status_port", None) is not None:
        updates["status_port"] = args.status_port
        updates["enable_status_api"] = True
    if getattr(args, "no_status_api", False):
        updates["enable_status_api"] = False

    if getattr(args, "log_dir", None) is not None:
        updates["log_dir"] = str(args.log_dir)
    if getattr(args, "log_level_console", None) is not None:
        updates["log_level_console"] = args.log_level_console
    if getattr(args, "log_json_console", False):
        updates["log_json_console"] = True
    if getattr(args, "log_rotation", None) is not None:
        updates["log_rotation"] = args.log_rotation
    if getattr(args, "log_retention", None) is not None:
        updates["log_retention"] = args.log_retention

    if not updates:
        return config
    return dataclass_replace(config, **updates)


def create_config_from_args(
    args: argparse.Namespace,
) -> tuple[ServerConfig, list[ConfigOverride]]:
    """Build the effective configuration for a CLI invocation.

    Returns:
        The validated ``ServerConfig`` and the user-config overrides that
        differ from the defaults.

    Raises:
        DefaultConfigError: If default.toml cannot be loaded (fatal).
        FileNotFoundError: If specified user config file does not exist.
        tomllib.TOMLDecodeError: If config file has invalid TOML syntax.
        ConfigurationError: If configuration validation fails.
    """
    config = load_default_config()
    overrides: list[ConfigOverride] = []

    if getattr(args, "config", None) is not None:
        user_config_path = Path(args.config)
        toml_data = load_config_from_toml(user_config_path)

        # Logging is not configured yet at this point
        unknown = get_unknown_keys(toml_data)
        if unknown:
            print(f"WARNING: Unknown keys in {user_config_path}:", file=sys.stderr)
            for key in unknown:
                print(f"  - {key}", file=sys.stderr)

        config_data = process_toml_config(toml_data)
        for key, new_value in config_data.items():
            default_value = getattr(config, key)
            if default_value != new_value:
                overrides.append(ConfigOverride(key, default_value, new_value))
        if config_data:
            config = dataclass_replace(config, **config_data)

    config = merge_cli_args(config, args)

    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)

    return config, overrides
