"""Connection-event dispatch and fan-out for the presence protocol.

:class:`PresenceHub` turns the three transport events (connect, inbound
message, disconnect) into registry operations and outbound messages. It only
knows two transport primitives:

* ``send_to(connection_id, message)``
* ``send_to_all_except(connection_id, message)``

so the same hub runs on the ZeroMQ server, in tests with a recording
transport, or behind any other transport that can provide those two calls.

Fan-out never echoes to the originating connection.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from . import serializer
from .adapters import record_to_wire
from .registry import ConnectionId, PresenceRecord, PresenceRegistry

logger = logging.getLogger(__name__)


class BroadcastTransport(Protocol):
    """What the hub needs from a transport."""

    def send_to(self, connection_id: ConnectionId, message: bytes) -> None: ...

    def send_to_all_except(self, connection_id: ConnectionId, message: bytes) -> None: ...


def parse_state_update(payload: Any) -> Any:
    """Pull the raw intensity out of an inbound ``stateUpdate`` body.

    The body is untrusted: a missing body or missing key yields ``None``,
    which the registry's sanitizer turns into 0.
    """
    if not isinstance(payload, dict):
        return None
    return payload.get("intensity")


class PresenceHub:
    """Owns the registry and applies the broadcast rules."""

    def __init__(self, registry: PresenceRegistry, transport: BroadcastTransport):
        self.registry = registry
        self.transport = transport

        # Statistics
        self.connect_count = 0
        self.disconnect_count = 0
        self.update_count = 0
        self.stale_update_count = 0
        self.malformed_count = 0

    def on_connect(self, connection_id: ConnectionId) -> PresenceRecord:
        """Register, greet the newcomer with a snapshot, announce it to the rest."""
        with self.registry.lock:
            record = self.registry.register(connection_id)
            peers = self.registry.peers_of(connection_id)

            self.transport.send_to(
                connection_id,
                serializer.serialize_hello(
                    record_to_wire(record), [record_to_wire(p) for p in peers]
                ),
            )
            self.transport.send_to_all_except(
                connection_id, serializer.serialize_joined(record_to_wire(record))
            )
            self.connect_count += 1

        logger.info(f"User {record.user_id} joined ({len(peers)} peers present)")
        return record

    def on_state_update(self, connection_id: ConnectionId, payload: Any) -> float | None:
        """Apply an inbound intensity and fan it out; ``None`` if stale."""
        raw = parse_state_update(payload)
        with self.registry.lock:
            applied = self.registry.apply_intensity(connection_id, raw)
            if applied is None:
                self.stale_update_count += 1
                return None

            record = self.registry.get(connection_id)
            self.transport.send_to_all_except(
                connection_id,
                serializer.serialize_state_broadcast(record.user_id, applied),
            )
            self.update_count += 1
        return applied

    def on_disconnect(self, connection_id: ConnectionId) -> PresenceRecord | None:
        """Remove and announce the departure; silent if already gone."""
        with self.registry.lock:
            record = self.registry.remove(connection_id)
            if record is None:
                return None
            self.transport.send_to_all_except(
                connection_id, serializer.serialize_left(record.user_id)
            )
            self.disconnect_count += 1

        logger.info(f"User {record.user_id} left")
        return record

    def on_message(self, connection_id: ConnectionId, data: bytes) -> None:
        """Decode one inbound frame and route it.

        Connection lifecycle frames (connect/disconnect/heartbeat) belong to
        the transport; only ``stateUpdate`` is handled here.
        """
        msg_type, payload = serializer.deserialize(data)
        if msg_type == serializer.MSG_STATE_UPDATE:
            # An undecodable body still counts as an update of 0
            self.on_state_update(connection_id, payload)
        else:
            self.malformed_count += 1
            logger.warning(
                f"Unexpected message type {msg_type} from connection {connection_id!r}"
            )

    def get_stats(self) -> dict[str, int]:
        return {
            "participants": len(self.registry),
            "connects": self.connect_count,
            "disconnects": self.disconnect_count,
            "updates": self.update_count,
            "stale_updates": self.stale_update_count,
            "malformed": self.malformed_count,
        }
