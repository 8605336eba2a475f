import os
import sys
import time
from datetime import timedelta
from pathlib import Path

import pytest

from glowsync import cli, logging_utils, server

# NOTE: _patch_quick_exit monkeypatches time.sleep globally via server.time.
# Capture the real sleep so tests can opt out of the interrupting stub.
REAL_SLEEP = time.sleep


@pytest.fixture(autouse=True)
def _reset_rotation_state():
    logging_utils.reset_rotation_state()
    yield


def _patch_quick_exit(monkeypatch):
    monkeypatch.setattr(server.network_utils, "get_local_ip_addresses", lambda: [])

    # Force the main loop to exit immediately
    def _raise_keyboard_interrupt(seconds):
        raise KeyboardInterrupt

    monkeypatch.setattr(server.time, "sleep", _raise_keyboard_interrupt)


def _patch_dummy_server(monkeypatch, store):
    class DummyServer:
        def __init__(self, config):
            store["config"] = config

        @classmethod
        def from_config(cls, config):
            return cls(config)

        def start(self):
            store["started"] = True

        def stop(self):
            store["stopped"] = True

    monkeypatch.setattr(server, "PresenceServer", DummyServer)


def _record_configure_logging(monkeypatch, store, passthrough=True):
    original_configure = server.configure_logging

    def wrapped_configure_logging(**kwargs):
        store["configure_args"] = kwargs
        if passthrough:
            return original_configure(**kwargs)
        return None

    monkeypatch.setattr(server, "configure_logging", wrapped_configure_logging)


def _wait_for_content(path: Path, attempts: int = 40) -> None:
    for _ in range(attempts):
        if path.exists() and path.stat().st_size > 0:
            return
        REAL_SLEEP(0.05)


def test_main_logging_args_with_log_dir(monkeypatch, tmp_path):
    _patch_quick_exit(monkeypatch)
    store: dict[str, object] = {}
    _patch_dummy_server(monkeypatch, store)
    _record_configure_logging(monkeypatch, store)

    argv = [
        "glowsync-server",
        "--log-dir",
        str(tmp_path),
        "--log-json-console",
        "--log-level-console",
        "DEBUG",
        "--log-rotation",
        "10 MB",
        "--log-retention",
        "5 days",
    ]
    monkeypatch.setattr(sys, "argv", argv)

    try:
        server.main()
    finally:
        server.logger.remove()

    assert store["configure_args"]["log_dir"] == Path(tmp_path)
    assert store["configure_args"]["console_json"] is True
    assert store["configure_args"]["console_level"] == "DEBUG"
    assert store["configure_args"]["rotation"] == "10 MB"
    assert store["configure_args"]["retention"] == "5 days"
    assert store["started"] is True
    assert store["stopped"] is True

    log_file = tmp_path / "glowsync-server.log"
    _wait_for_content(log_file)
    assert log_file.exists()
    first_line = log_file.read_text().splitlines()[0]
    assert first_line.lstrip().startswith("{")


def test_main_logging_args_without_log_dir(monkeypatch):
    _patch_quick_exit(monkeypatch)
    store: dict[str, object] = {}
    _patch_dummy_server(monkeypatch, store)
    _record_configure_logging(monkeypatch, store, passthrough=False)

    monkeypatch.setattr(sys, "argv", ["glowsync-server", "--router-port", "6100"])

    server.main()

    assert store["configure_args"]["log_dir"] is None
    assert store["configure_args"]["console_json"] is False
    assert store["configure_args"]["rotation"] is None
    assert store["configure_args"]["retention"] is None
    assert store["config"].router_port == 6100


def test_invalid_config_exits_with_code_2(monkeypatch, tmp_path, capsys):
    config_file = tmp_path / "bad.toml"
    config_file.write_text("router_port = 0\n")
    monkeypatch.setattr(sys, "argv", ["glowsync-server", "--config", str(config_file)])

    with pytest.raises(SystemExit) as excinfo:
        server.main()

    assert excinfo.value.code == 2
    assert "router_port" in capsys.readouterr().err


def test_cli_main_passes_system_exit_through(monkeypatch):
    def _exit():
        raise SystemExit(2)

    monkeypatch.setattr(cli, "main", _exit)
    with pytest.raises(SystemExit) as excinfo:
        cli.cli_main()
    assert excinfo.value.code == 2


def test_cli_main_turns_errors_into_exit_code_1(monkeypatch):
    def _fail():
        raise RuntimeError("boom")

    monkeypatch.setattr(cli, "main", _fail)
    with pytest.raises(SystemExit) as excinfo:
        cli.cli_main()
    assert excinfo.value.code == 1


def test_rotation_triggers_on_age(monkeypatch, tmp_path):
    store: dict[str, object] = {}
    _patch_quick_exit(monkeypatch)
    _patch_dummy_server(monkeypatch, store)
    monkeypatch.setattr(logging_utils, "LOG_ROTATION_MAX_AGE", timedelta(seconds=1))
    _record_configure_logging(monkeypatch, store)

    monkeypatch.setattr(sys, "argv", ["glowsync-server", "--log-dir", str(tmp_path)])
    try:
        server.main()
    finally:
        server.logger.remove()

    log_file = tmp_path / "glowsync-server.log"
    assert log_file.exists()
    REAL_SLEEP(1.2)

    server.logger.add(
        log_file,
        rotation=logging_utils._default_rotation_condition,
        serialize=True,
    )
    server.logger.info("trigger rotation")
    server.logger.remove()

    rotated = sorted(tmp_path.glob("glowsync-server*.log"))
    assert len(rotated) >= 2, "Expected rotation to create an additional log file"


def test_retention_keeps_newest_files(monkeypatch, tmp_path):
    monkeypatch.setattr(logging_utils, "LOG_RETENTION_MAX_FILES", 2)
    paths = []
    for i in range(4):
        path = tmp_path / f"glowsync-server.{i}.log"
        path.write_text("x")
        stamp = 1_700_000_000 + i * 10
        os.utime(path, (stamp, stamp))
        paths.append(path)

    logging_utils._default_retention_policy([str(p) for p in paths])

    remaining = sorted(p.name for p in tmp_path.iterdir())
    assert remaining == ["glowsync-server.2.log", "glowsync-server.3.log"]


def test_get_version_is_a_string():
    assert isinstance(server.get_version(), str)
    assert server.get_version() != ""
