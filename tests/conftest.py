import random
import time

import pytest

from glowsync import serializer
from glowsync.hub import PresenceHub
from glowsync.registry import PresenceRegistry
from glowsync.server import PresenceServer


class RecordingTransport:
    """Captures hub output as (recipient, msg_type, payload) per live connection."""

    def __init__(self):
        self.connections: list[str] = []
        self.sent: list[tuple[str, int, dict]] = []

    def open(self, connection_id: str) -> None:
        self.connections.append(connection_id)

    def close(self, connection_id: str) -> None:
        self.connections.remove(connection_id)

    def send_to(self, connection_id, message):
        msg_type, payload = serializer.deserialize(message)
        self.sent.append((connection_id, msg_type, payload))

    def send_to_all_except(self, connection_id, message):
        for cid in self.connections:
            if cid != connection_id:
                self.send_to(cid, message)

    def received_by(self, connection_id, msg_type=None):
        return [
            (t, p)
            for cid, t, p in self.sent
            if cid == connection_id and (msg_type is None or t == msg_type)
        ]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def registry():
    return PresenceRegistry(rng=random.Random(1234))


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def hub(registry, transport):
    return PresenceHub(registry, transport)


@pytest.fixture
def connect(hub, transport):
    """Open a connection on the fake transport and run the hub's connect path."""

    def _connect(connection_id):
        transport.open(connection_id)
        return hub.on_connect(connection_id)

    return _connect


@pytest.fixture
def disconnect(hub, transport):
    def _disconnect(connection_id):
        transport.close(connection_id)
        return hub.on_disconnect(connection_id)

    return _disconnect


def wait_until(predicate, timeout=5.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def server():
    """A real presence server on an ephemeral localhost port."""
    srv = PresenceServer(
        router_port=0,
        bind_address="127.0.0.1",
        heartbeat_timeout=1.5,
        cleanup_interval=0.1,
        poll_timeout=10,
    )
    srv.start()
    yield srv
    srv.stop()
