"""Wire codec for the GlowSync presence protocol.

Every frame is one message-type byte followed by a MessagePack map:

    [type:1][msgpack payload]

Server → client frames carry presence records in camelCase; client → server
frames are tiny (connect/heartbeat/disconnect carry an empty map). Payload
contents from clients are untrusted; validation happens in the hub and the
registry, not here.
"""

from __future__ import annotations

import logging
from typing import Any

import msgpack

logger = logging.getLogger(__name__)

# Message type identifiers
MSG_CONNECT = 1  # Client asks to join; answered with MSG_HELLO
MSG_HELLO = 2  # Snapshot for the newly connected client only
MSG_JOINED = 3  # A new participant, sent to everyone else
MSG_STATE_UPDATE = 4  # Intensity update (both directions)
MSG_LEFT = 5  # A participant disconnected
MSG_HEARTBEAT = 6  # Client keepalive, no payload
MSG_DISCONNECT = 7  # Graceful client leave
MSG_EXPIRED = 8  # Frame from a client with no live session; client should rejoin

MESSAGE_NAMES = {
    MSG_CONNECT: "connect",
    MSG_HELLO: "hello",
    MSG_JOINED: "joined",
    MSG_STATE_UPDATE: "stateUpdate",
    MSG_LEFT: "left",
    MSG_HEARTBEAT: "heartbeat",
    MSG_DISCONNECT: "disconnect",
    MSG_EXPIRED: "expired",
}


def _frame(msg_type: int, payload: dict[str, Any]) -> bytes:
    return bytes([msg_type]) + msgpack.packb(payload, use_bin_type=True)


# Server → client
def serialize_hello(self_record: dict[str, Any], peers: list[dict[str, Any]]) -> bytes:
    return _frame(MSG_HELLO, {"self": self_record, "peers": peers})


def serialize_joined(record: dict[str, Any]) -> bytes:
    return _frame(MSG_JOINED, record)


def serialize_state_broadcast(user_id: str, intensity: float) -> bytes:
    return _frame(MSG_STATE_UPDATE, {"userId": user_id, "intensity": intensity})


def serialize_left(user_id: str) -> bytes:
    return _frame(MSG_LEFT, {"userId": user_id})


def serialize_expired() -> bytes:
    return _frame(MSG_EXPIRED, {})


# Client → server
def serialize_connect() -> bytes:
    return _frame(MSG_CONNECT, {})


def serialize_state_update(intensity: float) -> bytes:
    return _frame(MSG_STATE_UPDATE, {"intensity": intensity})


def serialize_heartbeat() -> bytes:
    return _frame(MSG_HEARTBEAT, {})


def serialize_disconnect() -> bytes:
    return _frame(MSG_DISCONNECT, {})


def deserialize(data: bytes) -> tuple[int, dict[str, Any] | None]:
    """Decode a frame into ``(message_type, payload)``.

    Never raises: empty input, unknown types, undecodable or non-map
    payloads all come back with ``None`` as the payload.
    """
    if not data:
        return 0, None

    message_type = data[0]
    if message_type not in MESSAGE_NAMES:
        return message_type, None

    try:
        payload = msgpack.unpackb(data[1:], raw=False, strict_map_key=False)
    except Exception as e:
        logger.debug(f"Undecodable {MESSAGE_NAMES[message_type]} payload: {e}")
        return message_type, None

    if not isinstance(payload, dict):
        return message_type, None
    return message_type, payload
