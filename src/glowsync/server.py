# server.py
import sys

# ruff: noqa: E402, I001

# Python version check - must be at the very beginning
MIN_PY = (3, 11)
if sys.version_info < MIN_PY:
    sys.stderr.write(
        f"ERROR: GlowSync Server requires Python {MIN_PY[0]}.{MIN_PY[1]}+ "
        f"(current: {sys.version.split()[0]}).\n"
    )
    sys.exit(1)

import argparse
import threading
import time
import tomllib
import traceback
from functools import lru_cache
from pathlib import Path

import zmq
from loguru import logger

from . import network_utils, serializer
from .config import (
    ConfigurationError,
    DefaultConfigError,
    ServerConfig,
    create_config_from_args,
)
from .hub import PresenceHub
from .logging_utils import configure_logging
from .registry import DuplicateConnectionError, PresenceRegistry


@lru_cache(maxsize=1)
def get_version() -> str:
    """
    Return the server version.
    Priority:
      1) importlib.metadata for 'glowsync-server' (when installed)
      2) parse nearest pyproject.toml (when running from source)
      3) 'unknown'
    """
    import importlib.metadata as im

    try:
        return im.version("glowsync-server")
    except im.PackageNotFoundError:
        for dist in im.packages_distributions().get("glowsync", []):
            try:
                return im.version(dist)
            except im.PackageNotFoundError:
                pass

    for parent in Path(__file__).resolve().parents:
        toml_path = parent / "pyproject.toml"
        if toml_path.exists():
            data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
            v = (data.get("project") or {}).get("version")
            if v:
                return v
            break

    return "unknown"


class PresenceServer:
    """ZeroMQ ROUTER transport for :class:`PresenceHub`.

    Clients connect with a DEALER socket. The ROUTER routing identity of a
    client is its connection id (hex encoded). A session opens on
    ``MSG_CONNECT`` and closes on ``MSG_DISCONNECT`` or when nothing has been
    heard from the client for ``heartbeat_timeout`` seconds.

    One dispatch thread owns the socket and handles every event to
    completion before the next one, so sends reach each peer in the order
    the registry changed.
    """

    def __init__(
        self,
        router_port: int = 5570,
        bind_address: str = "*",
        heartbeat_timeout: float = 5.0,
        cleanup_interval: float = 1.0,
        status_log_interval: float = 10.0,
        poll_timeout: int = 100,
        send_hwm: int = 1000,
        registry: PresenceRegistry | None = None,
    ):
        self.router_port = router_port
        self.bind_address = bind_address
        self.heartbeat_timeout = heartbeat_timeout
        self.cleanup_interval = cleanup_interval
        self.status_log_interval = status_log_interval
        self.poll_timeout = poll_timeout
        self.send_hwm = send_hwm

        self.context = zmq.Context()
        self.router = None  # Created/owned by the dispatch thread only
        self._bound_port: int | None = None

        self.registry = registry if registry is not None else PresenceRegistry()
        self.hub = PresenceHub(self.registry, self)

        # Transport sessions: connection_id -> routing identity / last heard
        self._sessions: dict[str, bytes] = {}
        self._last_seen: dict[str, float] = {}

        # Threading
        self.running = False
        self._dispatch_thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._startup_exception: Exception | None = None

        # Statistics
        self.message_count = 0
        self.sent_count = 0
        self.dropped_count = 0
        self.timeout_count = 0
        self.expired_notice_count = 0

    @classmethod
    def from_config(cls, config: ServerConfig) -> "PresenceServer":
        registry = PresenceRegistry(
            position_margin=config.position_margin,
            color_saturation=config.color_saturation,
            color_lightness=config.color_lightness,
            user_id_bytes=config.user_id_bytes,
        )
        return cls(
            router_port=config.router_port,
            bind_address=config.bind_address,
            heartbeat_timeout=config.heartbeat_timeout,
            cleanup_interval=config.cleanup_interval,
            status_log_interval=config.status_log_interval,
            poll_timeout=config.poll_timeout,
            send_hwm=config.send_hwm,
            registry=registry,
        )

    @property
    def bound_port(self) -> int | None:
        """Actual ROUTER port (differs from ``router_port`` when that is 0)."""
        return self._bound_port

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Transport primitives used by the hub
    # ------------------------------------------------------------------
    def send_to(self, connection_id: str, message: bytes) -> None:
        identity = self._sessions.get(connection_id)
        if identity is None:
            logger.debug(f"send_to: no session for {connection_id}")
            return
        self._send(identity, message)

    def send_to_all_except(self, connection_id: str, message: bytes) -> None:
        for cid, identity in list(self._sessions.items()):
            if cid != connection_id:
                self._send(identity, message)

    def _send(self, identity: bytes, message: bytes) -> None:
        """Fire-and-forget; a peer whose pipe is full just misses the frame."""
        try:
            self.router.send_multipart([identity, message], flags=zmq.NOBLOCK)
            self.sent_count += 1
        except zmq.Again:
            self.dropped_count += 1
            logger.debug(f"Send queue full for {identity.hex()}: dropping a message")
        except zmq.ZMQError as e:
            self.dropped_count += 1
            logger.warning(f"Failed to send to {identity.hex()}: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        """Bind the ROUTER socket and start dispatching."""
        logger.info(f"Starting presence server on port {self.router_port} (ROUTER)")

        self.running = True
        self._ready.clear()
        self._startup_exception = None
        self._dispatch_thread = threading.Thread(
            target=self._dispatch_loop, name="DispatchThread", daemon=True
        )
        self._dispatch_thread.start()

        if not self._ready.wait(timeout=5.0):
            self.running = False
            raise RuntimeError("Timed out waiting for dispatch thread to bind ROUTER")

        e = self._startup_exception
        if e is None:
            logger.info("Server is ready and waiting for connections...")
            return

        self.running = False
        self._dispatch_thread.join()
        self.context.term()
        if isinstance(e, zmq.ZMQError) and e.errno == zmq.EADDRINUSE:
            logger.error(
                f"Error: Another server instance is already running on port {self.router_port}"
            )
            logger.error("Please stop the existing server before starting a new one.")
            logger.error(f"You can find the process using: lsof -i :{self.router_port}")
            logger.error("And stop it using: kill <PID>")
            raise SystemExit(1) from e
        logger.error(f"Failed to start server: {e}")
        raise e

    def stop(self):
        """Stop dispatching and release the socket."""
        logger.info("Stopping server...")
        self.running = False

        if self._dispatch_thread:
            self._dispatch_thread.join()
            self._dispatch_thread = None
            logger.info("Dispatch thread stopped")

        if not self.context.closed:
            self.context.term()

        logger.info(
            f"Server stopped. Messages processed: {self.message_count}, "
            f"sent: {self.sent_count}, dropped: {self.dropped_count}"
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def _bind(self) -> None:
        self.router = self.context.socket(zmq.ROUTER)
        self.router.setsockopt(zmq.LINGER, 0)
        self.router.setsockopt(zmq.SNDHWM, self.send_hwm)
        # A reconnecting client keeps its routing id; the new pipe takes over
        self.router.setsockopt(zmq.ROUTER_HANDOVER, 1)
        if self.router_port == 0:
            self._bound_port = self.router.bind_to_random_port(f"tcp://{self.bind_address}")
        else:
            self.router.bind(f"tcp://{self.bind_address}:{self.router_port}")
            self._bound_port = self.router_port
        logger.info(f"ROUTER socket bound to port {self._bound_port}")

    def _dispatch_loop(self):
        try:
            self._bind()
        except Exception as e:
            self._startup_exception = e
            if self.router is not None:
                self.router.close()
                self.router = None
            self._ready.set()
            return

        self._ready.set()
        logger.info("Dispatch loop started")
        last_sweep = time.monotonic()
        last_log = time.monotonic()

        try:
            while self.running:
                try:
                    if self.router.poll(self.poll_timeout, zmq.POLLIN):
                        self._drain_inbound()

                    current_time = time.monotonic()
                    if current_time - last_sweep >= self.cleanup_interval:
                        self._expire_sessions(current_time)
                        last_sweep = current_time

                    if current_time - last_log >= self.status_log_interval:
                        stats = self.hub.get_stats()
                        logger.info(
                            f"Status: {stats['participants']} participants, "
                            f"{self.session_count} sessions, {stats['updates']} updates, "
                            f"{self.dropped_count} dropped sends"
                        )
                        last_log = current_time

                except Exception as e:
                    logger.error(f"Error in dispatch loop: {e}")
                    logger.error(traceback.format_exc())
        finally:
            self.router.close()
            self.router = None
            logger.info("Dispatch loop ended")

    def _drain_inbound(self, max_messages: int = 256) -> None:
        """Handle queued frames without blocking, up to ``max_messages``."""
        for _ in range(max_messages):
            try:
                parts = self.router.recv_multipart(flags=zmq.NOBLOCK)
            except zmq.Again:
                return
            self.message_count += 1
            if len(parts) < 2:
                logger.warning(f"Received incomplete message with only {len(parts)} parts")
                continue
            self._handle_frame(parts[0], parts[-1])

    def _handle_frame(self, identity: bytes, data: bytes) -> None:
        connection_id = identity.hex()
        msg_type = data[0] if data else 0

        has_session = connection_id in self._sessions
        if has_session:
            self._last_seen[connection_id] = time.monotonic()

        if msg_type == serializer.MSG_CONNECT:
            self._open_session(connection_id, identity)
        elif msg_type == serializer.MSG_DISCONNECT:
            self._close_session(connection_id, reason="disconnect")
        elif msg_type == serializer.MSG_HEARTBEAT:
            if not has_session:
                self._notify_expired(connection_id, identity)
        else:
            self.hub.on_message(connection_id, data)
            if not has_session and msg_type == serializer.MSG_STATE_UPDATE:
                self._notify_expired(connection_id, identity)

    def _notify_expired(self, connection_id: str, identity: bytes) -> None:
        """Tell a client whose session is gone (timed out) to rejoin."""
        self.expired_notice_count += 1
        logger.info(f"Frame from expired session {connection_id}; asking it to rejoin")
        self._send(identity, serializer.serialize_expired())

    def _open_session(self, connection_id: str, identity: bytes) -> None:
        if connection_id in self._sessions:
            logger.warning(f"Duplicate connect from live session {connection_id}; ignored")
            return

        self._sessions[connection_id] = identity
        self._last_seen[connection_id] = time.monotonic()
        try:
            self.hub.on_connect(connection_id)
        except DuplicateConnectionError as e:
            # Registry and session table disagree; keep the existing record
            logger.error(f"{e}; session kept without a new identity")

    def _close_session(self, connection_id: str, reason: str) -> None:
        # Drop the session first so the departing peer is not sent its own `left`
        if self._sessions.pop(connection_id, None) is None:
            logger.debug(f"{reason} for unknown session {connection_id}")
        self._last_seen.pop(connection_id, None)
        self.hub.on_disconnect(connection_id)
        logger.info(f"Session {connection_id} closed ({reason})")

    def _expire_sessions(self, current_time: float) -> None:
        expired = [
            cid
            for cid, last_seen in self._last_seen.items()
            if current_time - last_seen > self.heartbeat_timeout
        ]
        for cid in expired:
            self.timeout_count += 1
            self._close_session(cid, reason="timeout")

    def get_stats(self) -> dict[str, int]:
        stats = self.hub.get_stats()
        stats.update(
            {
                "sessions": self.session_count,
                "messages": self.message_count,
                "sent": self.sent_count,
                "dropped": self.dropped_count,
                "timeouts": self.timeout_count,
                "expired_notices": self.expired_notice_count,
            }
        )
        return stats


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GlowSync presence server")
    parser.add_argument(
        "--config", type=Path, default=None, help="Path to a TOML config file"
    )
    parser.add_argument(
        "--router-port",
        type=int,
        default=None,
        help="Port for the ROUTER socket (default from config: 5570)",
    )
    parser.add_argument(
        "--status-port",
        type=int,
        default=None,
        help="Serve the read-only status API on this port",
    )
    parser.add_argument(
        "--no-status-api", action="store_true", help="Disable the status API"
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    parser.add_argument(
        "--log-level-console",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Console log level",
    )
    parser.add_argument(
        "--log-json-console", action="store_true", help="Emit console logs as JSON"
    )
    parser.add_argument("--log-rotation", default=None, help="loguru rotation rule")
    parser.add_argument("--log-retention", default=None, help="loguru retention rule")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {get_version()}",
        help="Show version and exit",
    )
    return parser


def main():
    args = build_arg_parser().parse_args()

    try:
        config, overrides = create_config_from_args(args)
    except (ConfigurationError, DefaultConfigError, FileNotFoundError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        raise SystemExit(2) from e
    except tomllib.TOMLDecodeError as e:
        print(f"ERROR: Invalid TOML in {args.config}: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    configure_logging(
        log_dir=Path(config.log_dir) if config.log_dir else None,
        console_level=config.log_level_console,
        console_json=config.log_json_console,
        rotation=config.log_rotation,
        retention=config.log_retention,
    )

    logger.info("=" * 60)
    logger.info("GlowSync Server Starting")
    logger.info("=" * 60)
    logger.info(f"  Version: {get_version()}")
    for endpoint in network_utils.format_endpoints(config.router_port):
        logger.info(f"  Endpoint: {endpoint}")
    logger.info(f"  Heartbeat timeout: {config.heartbeat_timeout}s")
    if config.enable_status_api:
        logger.info(f"  Status API: http://{config.status_host}:{config.status_port}")
    else:
        logger.info("  Status API: Disabled")
    for override in overrides:
        logger.info(
            f"  Config override: {override.key} = {override.new_value!r} "
            f"(default {override.default_value!r})"
        )
    logger.info("=" * 60)

    server = PresenceServer.from_config(config)
    status_server = None

    try:
        server.start()

        if config.enable_status_api:
            from .status_api import create_app, run_uvicorn_in_thread

            _, status_server = run_uvicorn_in_thread(
                create_app(server), host=config.status_host, port=config.status_port
            )

        logger.info("Server started successfully. Press Ctrl+C to stop.")

        while True:
            try:
                time.sleep(1)
            except KeyboardInterrupt:
                logger.info("Received interrupt signal (Ctrl+C)...")
                break

    except SystemExit:
        logger.info("Server startup failed. Exiting...")
        return
    except KeyboardInterrupt:
        logger.info("Received interrupt signal during startup...")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        logger.error(traceback.format_exc())
    finally:
        if status_server is not None:
            status_server.should_exit = True
        try:
            server.stop()
        except Exception as e:
            logger.error(f"Error during server shutdown: {e}")
        logger.info("Server shutdown complete.")
