"""Authoritative server-side presence registry.

The registry maps a transport connection id to a :class:`PresenceRecord`.
It is an ordinary object owned by whoever dispatches connection events
(see :class:`glowsync.hub.PresenceHub`); there is no module-level instance.

Every operation takes ``self.lock`` (re-entrant), so a caller that needs a
mutation and the messages derived from it to be atomic can hold the same
lock around both.
"""

from __future__ import annotations

import logging
import math
import random
import threading
from collections.abc import Hashable
from dataclasses import dataclass, replace
from typing import Any

from . import identity
from .types import color_data, position_data

logger = logging.getLogger(__name__)

ConnectionId = Hashable


class RegistryError(Exception):
    """Base class for registry invariant violations."""


class DuplicateConnectionError(RegistryError):
    """Raised when a connection id is registered twice."""

    def __init__(self, connection_id: ConnectionId) -> None:
        self.connection_id = connection_id
        super().__init__(f"Connection {connection_id!r} is already registered")


def clamp_intensity(value: float) -> float:
    """Clamp into [0, 1]. NaN maps to 0; infinities clamp to the bounds."""
    if math.isnan(value):
        return 0.0
    return max(0.0, min(float(value), 1.0))


def sanitize_intensity(raw: Any) -> float:
    """Turn an untrusted wire value into a stored intensity.

    Anything that is not a finite int/float (``bool`` included) becomes 0.
    """
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0.0
    value = float(raw)
    if not math.isfinite(value):
        return 0.0
    return clamp_intensity(value)


@dataclass(slots=True)
class PresenceRecord:
    """One live participant. ``color``/``position`` never change."""

    user_id: str
    connection_id: ConnectionId
    color: color_data
    position: position_data
    intensity: float = 0.0


class PresenceRegistry:
    """In-memory connection → presence record store."""

    def __init__(
        self,
        position_margin: float = identity.DEFAULT_POSITION_MARGIN,
        color_saturation: int = identity.DEFAULT_SATURATION,
        color_lightness: int = identity.DEFAULT_LIGHTNESS,
        user_id_bytes: int = identity.DEFAULT_USER_ID_BYTES,
        rng: random.Random | None = None,
    ):
        self.position_margin = position_margin
        self.color_saturation = color_saturation
        self.color_lightness = color_lightness
        self.user_id_bytes = user_id_bytes
        self._rng = rng
        self._records: dict[ConnectionId, PresenceRecord] = {}
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self._records)

    def __contains__(self, connection_id: object) -> bool:
        with self.lock:
            return connection_id in self._records

    def register(self, connection_id: ConnectionId) -> PresenceRecord:
        """Allocate an identity for ``connection_id`` and insert its record."""
        with self.lock:
            if connection_id in self._records:
                raise DuplicateConnectionError(connection_id)

            user_id, color, position = identity.allocate(
                margin=self.position_margin,
                saturation=self.color_saturation,
                lightness=self.color_lightness,
                user_id_bytes=self.user_id_bytes,
                rng=self._rng,
            )
            record = PresenceRecord(
                user_id=user_id,
                connection_id=connection_id,
                color=color,
                position=position,
                intensity=0.0,
            )
            self._records[connection_id] = record
            logger.info(
                f"Registered user {user_id} (hue {color.hue}) "
                f"at ({position.x:.2f}, {position.y:.2f})"
            )
            return replace(record)

    def get(self, connection_id: ConnectionId) -> PresenceRecord | None:
        with self.lock:
            record = self._records.get(connection_id)
            return replace(record) if record else None

    def remove(self, connection_id: ConnectionId) -> PresenceRecord | None:
        """Delete and return the record; ``None`` if it was already gone."""
        with self.lock:
            record = self._records.pop(connection_id, None)
            if record is None:
                logger.debug(f"Remove for unknown connection {connection_id!r}")
                return None
            logger.info(f"Removed user {record.user_id}")
            return record

    def snapshot(self) -> list[PresenceRecord]:
        """Copies of all live records in registration order."""
        with self.lock:
            return [replace(record) for record in self._records.values()]

    def peers_of(self, connection_id: ConnectionId) -> list[PresenceRecord]:
        """Snapshot excluding ``connection_id``."""
        with self.lock:
            return [
                replace(record)
                for cid, record in self._records.items()
                if cid != connection_id
            ]

    def connection_ids(self) -> list[ConnectionId]:
        with self.lock:
            return list(self._records)

    def apply_intensity(self, connection_id: ConnectionId, raw_value: Any) -> float | None:
        """Validate, clamp and store an intensity; ``None`` for unknown ids.

        An update racing a processed disconnect lands here with an unknown id
        and must not produce a broadcast, hence the ``None``.
        """
        with self.lock:
            record = self._records.get(connection_id)
            if record is None:
                logger.debug(f"Intensity update for unknown connection {connection_id!r}")
                return None
            record.intensity = sanitize_intensity(raw_value)
            return record.intensity
