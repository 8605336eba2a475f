"""
GlowSync client with a pull-based presence mirror.

The client keeps a :class:`~glowsync.mirror.ClientMirror` up to date from
server messages and sends its own intensity, throttled, from whatever sample
source the application provides.
"""

import logging
import os
import threading
import time
import uuid
from queue import Empty, Full, Queue
from typing import Any

# Dynamic ZMQ import based on environment variable
env_is_green = os.environ.get("GLOWSYNC_USE_ZMQ_GREEN", "")
if env_is_green.lower() == "true":
    import zmq.green as zmq
else:
    import zmq

from . import serializer
from .events import EventHandler
from .mirror import ClientMirror
from .registry import sanitize_intensity
from .sampling import (
    DEFAULT_UPDATE_INTERVAL,
    CallableSampleSource,
    SampleSource,
    ThrottledEmitter,
    read_sample,
)
from .types import presence_data

logger = logging.getLogger(__name__)


class presence_sync_manager:
    """
    GlowSync client manager.

    Design: one network thread owns the DEALER socket. It applies inbound
    frames to the mirror, fires events, drains the outbound queue and sends
    heartbeats while idle. Other threads read the mirror through
    ``get_presence_snapshot()`` and enqueue sends.
    """

    HEARTBEAT_INTERVAL = 1.0  # seconds of outbound silence before a heartbeat

    def __init__(
        self,
        server: str = "tcp://localhost",
        router_port: int = 5570,
        update_interval: float = DEFAULT_UPDATE_INTERVAL,
        queue_max: int = 1000,
    ):
        """
        Initialize the client.

        Args:
            server: ZeroMQ base address (e.g., "tcp://localhost")
            router_port: Server ROUTER port
            update_interval: Minimum seconds between outbound intensity updates
            queue_max: Max queued outbound frames
        """
        self._server = server
        self._router_port = router_port
        # Stable across reconnects so the server can tell an expired session
        self._routing_id = f"glow-{uuid.uuid4().hex}".encode()

        # ZeroMQ context and socket (owned by the network thread)
        self._context: zmq.Context | None = None
        self._dealer_socket: zmq.Socket | None = None

        # Threading
        self._running = False
        self._network_thread: threading.Thread | None = None
        self._sampling_thread: threading.Thread | None = None
        self._sampling_running = False
        self._lock = threading.RLock()
        self._outbox: Queue = Queue(maxsize=queue_max)

        # Mirror, guarded by _mirror_lock for readers on other threads
        self._mirror = ClientMirror()
        self._mirror_lock = threading.Lock()
        self._hello_received = threading.Event()
        self._rejoin_pending = False

        self._emitter = ThrottledEmitter(interval=update_interval)
        self._last_sent_at = 0.0

        # Event handlers
        self.on_hello = EventHandler("on_hello")
        self.on_peer_joined = EventHandler("on_peer_joined")
        self.on_peer_left = EventHandler("on_peer_left")
        self.on_intensity_changed = EventHandler("on_intensity_changed")
        self.on_session_lost = EventHandler("on_session_lost")

        # Statistics
        self._stats = {
            "messages_received": 0,
            "messages_ignored": 0,
            "updates_sent": 0,
            "updates_throttled": 0,
            "outbox_dropped": 0,
            "sessions_lost": 0,
        }

    # Properties
    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def server_address(self) -> str:
        return self._server

    @property
    def router_port(self) -> int:
        return self._router_port

    @property
    def routing_id(self) -> bytes:
        return self._routing_id

    @property
    def self_id(self) -> str | None:
        """This client's user id (None until the hello arrives)."""
        with self._mirror_lock:
            return self._mirror.self_id

    @property
    def is_ready(self) -> bool:
        """True once the hello snapshot has been applied."""
        return self._hello_received.is_set()

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        return self._hello_received.wait(timeout)

    def start(self) -> "presence_sync_manager":
        """Connect to the server and announce this participant."""
        with self._lock:
            if self._running:
                return self

            try:
                self._context = zmq.Context()
                self._dealer_socket = self._context.socket(zmq.DEALER)
                self._dealer_socket.setsockopt(zmq.LINGER, 200)
                self._dealer_socket.setsockopt(zmq.ROUTING_ID, self._routing_id)
                address = f"{self._server}:{self._router_port}"
                self._dealer_socket.connect(address)

                self._running = True
                self._enqueue(serializer.serialize_connect())
                self._network_thread = threading.Thread(
                    target=self._network_loop, name="GlowSyncClient", daemon=True
                )
                self._network_thread.start()

                logger.info(f"GlowSync client started: {address}")

            except Exception as e:
                self._running = False
                self._cleanup()
                raise Exception(f"Failed to start GlowSync client: {e}") from e

            return self

    def stop(self) -> None:
        """Leave gracefully and release resources. Disconnect is terminal."""
        with self._lock:
            if not self._running:
                return

            self.stop_sampling()
            self._enqueue(serializer.serialize_disconnect())
            self._running = False

            if self._network_thread and self._network_thread.is_alive():
                self._network_thread.join(timeout=1.0)

            self._cleanup()
            logger.info("GlowSync client stopped")

    def close(self) -> None:
        """Alias for stop()."""
        self.stop()

    def _cleanup(self) -> None:
        if self._dealer_socket:
            self._dealer_socket.close()
            self._dealer_socket = None
        if self._context:
            self._context.term()
            self._context = None

    # ------------------------------------------------------------------
    # Network thread
    # ------------------------------------------------------------------
    def _network_loop(self) -> None:
        poller = zmq.Poller()
        poller.register(self._dealer_socket, zmq.POLLIN)

        while self._running:
            try:
                self._flush_outbox()

                socks = dict(poller.poll(20))
                if self._dealer_socket in socks:
                    while True:
                        try:
                            data = self._dealer_socket.recv(flags=zmq.NOBLOCK)
                        except zmq.Again:
                            break
                        self._process_message(data)

                if time.monotonic() - self._last_sent_at >= self.HEARTBEAT_INTERVAL:
                    self._enqueue(serializer.serialize_heartbeat())

            except Exception as e:
                if self._running:
                    logger.error(f"Error in network loop: {e}")

        # Deliver whatever is left, the disconnect frame in particular
        try:
            self._flush_outbox()
        except zmq.ZMQError as e:
            logger.debug(f"Final flush failed: {e}")

    def _flush_outbox(self) -> None:
        while True:
            try:
                frame = self._outbox.get_nowait()
            except Empty:
                return
            try:
                self._dealer_socket.send(frame, flags=zmq.NOBLOCK)
            except zmq.Again:
                self._stats["outbox_dropped"] += 1
                logger.debug("Send pipe full: dropping a frame")
                continue
            self._last_sent_at = time.monotonic()

    def _enqueue(self, frame: bytes) -> bool:
        try:
            self._outbox.put_nowait(frame)
            return True
        except Full:
            self._stats["outbox_dropped"] += 1
            logger.debug("Outbound queue full: dropping a frame")
            return False

    def _process_message(self, data: bytes) -> None:
        msg_type, msg_data = serializer.deserialize(data)
        self._stats["messages_received"] += 1

        if msg_type == serializer.MSG_EXPIRED:
            self._on_session_expired()
            return

        with self._mirror_lock:
            user_id = msg_data.get("userId") if msg_data else None
            is_new_peer = user_id not in self._mirror
            applied = self._mirror.apply_message(msg_type, msg_data)
            self_id = self._mirror.self_id
            known = len(self._mirror)

        if not applied:
            self._stats["messages_ignored"] += 1
            return

        if msg_type == serializer.MSG_HELLO:
            self._hello_received.set()
            self._rejoin_pending = False
            logger.info(f"Joined as {self_id} with {max(0, known - 1)} peers")
            self.on_hello.invoke(self_id)
        elif msg_type == serializer.MSG_JOINED and is_new_peer:
            self.on_peer_joined.invoke(msg_data["userId"])
        elif msg_type == serializer.MSG_LEFT:
            self.on_peer_left.invoke(msg_data["userId"])
        elif msg_type == serializer.MSG_STATE_UPDATE:
            self.on_intensity_changed.invoke(
                msg_data["userId"], sanitize_intensity(msg_data.get("intensity"))
            )

    def _on_session_expired(self) -> None:
        """The server timed this client out; drop the stale mirror and rejoin."""
        with self._mirror_lock:
            lost_id = self._mirror.self_id
            self._mirror.reset()
        self._hello_received.clear()
        self._emitter.reset()

        if self._rejoin_pending:
            return
        self._rejoin_pending = True
        self._stats["sessions_lost"] += 1
        logger.warning(f"Session {lost_id} expired on the server; rejoining")
        self.on_session_lost.invoke(lost_id)
        self._enqueue(serializer.serialize_connect())

    # ------------------------------------------------------------------
    # Presence API (pull-based)
    # ------------------------------------------------------------------
    def get_presence_snapshot(self) -> list[presence_data]:
        """Copies of every known participant, self included, for rendering."""
        with self._mirror_lock:
            return self._mirror.present_records()

    def get_presence(self, user_id: str) -> presence_data | None:
        with self._mirror_lock:
            return self._mirror.get(user_id)

    # ------------------------------------------------------------------
    # Sending API
    # ------------------------------------------------------------------
    def send_intensity(self, value: float) -> bool:
        """Send an intensity now, bypassing the throttle.

        Returns False before the hello arrives, including while rejoining.
        """
        if not self._running or not self.is_ready:
            return False
        return self._enqueue(serializer.serialize_state_update(sanitize_intensity(value)))

    def update_self_intensity(self, sample: float | None) -> float | None:
        """Feed one local sample.

        Updates the self record immediately and sends it if the throttle
        allows. ``None`` (no sample available) counts as 0. Returns the value
        sent, or ``None`` when nothing was sent.
        """
        value = sanitize_intensity(0.0 if sample is None else sample)
        with self._mirror_lock:
            if self._mirror.set_self_intensity(value) is None:
                return None

        if self._emitter.offer(value) is None:
            self._stats["updates_throttled"] += 1
            return None
        if not self.send_intensity(value):
            return None
        self._stats["updates_sent"] += 1
        return value

    def start_sampling(self, source: Any, rate_hz: float = 60.0) -> None:
        """Poll ``source`` at ``rate_hz`` on a background thread.

        ``source`` is a :class:`SampleSource` or a callable returning
        ``float | None``.
        """
        if self._sampling_running:
            return
        if not isinstance(source, SampleSource):
            source = CallableSampleSource(source)
        if rate_hz <= 0:
            raise ValueError(f"rate_hz must be positive, got {rate_hz}")

        self._sampling_running = True
        self._sampling_thread = threading.Thread(
            target=self._sampling_loop,
            args=(source, 1.0 / rate_hz),
            name="GlowSyncSampler",
            daemon=True,
        )
        self._sampling_thread.start()

    def stop_sampling(self) -> None:
        self._sampling_running = False
        if self._sampling_thread and self._sampling_thread.is_alive():
            self._sampling_thread.join(timeout=1.0)
        self._sampling_thread = None

    def _sampling_loop(self, source: SampleSource, period: float) -> None:
        while self._sampling_running:
            try:
                self.update_self_intensity(read_sample(source))
            except Exception as e:
                logger.error(f"Sampling error: {e}")
            time.sleep(period)

    # Diagnostics
    def get_stats(self) -> dict[str, Any]:
        stats = self._stats.copy()
        stats["peers"] = max(0, len(self.get_presence_snapshot()) - (1 if self.is_ready else 0))
        return stats
