"""Client-side replica of the presence registry.

The mirror is built only from protocol messages. Messages addressed to one
client arrive in send order, but messages caused by different participants
interleave arbitrarily, so every non-``hello`` transition is idempotent and
tolerates references to ids it has never seen:

* ``hello``       – reset, then insert self and every peer
* ``joined``      – insert or overwrite
* ``left``        – remove if present
* ``stateUpdate`` – ignored for self and for unknown ids, clamped otherwise

The mirror does no locking; the client that owns it serialises access.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from . import serializer
from .adapters import presence_from_wire
from .registry import sanitize_intensity
from .types import presence_data

logger = logging.getLogger(__name__)


class ClientMirror:
    """``user_id`` → ``presence_data`` plus the designated ``self_id``."""

    def __init__(self) -> None:
        self._users: dict[str, presence_data] = {}
        self._self_id: str | None = None

    @property
    def self_id(self) -> str | None:
        return self._self_id

    def __len__(self) -> int:
        return len(self._users)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._users

    def get(self, user_id: str) -> presence_data | None:
        user = self._users.get(user_id)
        return replace(user) if user else None

    def present_records(self) -> list[presence_data]:
        """Copies of every present record, for renderers."""
        return [replace(user) for user in self._users.values()]

    def reset(self) -> None:
        """Forget everything, self included (session lost)."""
        self._users.clear()
        self._self_id = None

    def apply_hello(self, self_record: Any, peers: Any) -> None:
        self.reset()

        if isinstance(self_record, dict) and self_record.get("userId"):
            me = presence_from_wire(self_record, is_self=True)
            self._self_id = me.user_id
            self._users[me.user_id] = me

        for peer in peers or []:
            if not isinstance(peer, dict) or not peer.get("userId"):
                continue
            user = presence_from_wire(peer, is_self=False)
            if user.user_id == self._self_id:
                continue
            self._users[user.user_id] = user

    def apply_joined(self, record: Any) -> bool:
        """Insert or overwrite. Returns ``True`` if the id was new."""
        if not isinstance(record, dict) or not record.get("userId"):
            return False
        user_id = str(record["userId"])
        is_new = user_id not in self._users
        self._users[user_id] = presence_from_wire(
            record, is_self=(user_id == self._self_id)
        )
        return is_new

    def apply_left(self, user_id: Any) -> bool:
        """Remove a record if present. Returns ``True`` if something was removed.

        A ``left`` for self removes the self record too; ``self_id`` is kept so
        later updates naming it are still ignored.
        """
        if not isinstance(user_id, str):
            return False
        return self._users.pop(user_id, None) is not None

    def apply_state_update(self, user_id: Any, intensity: Any) -> float | None:
        """Store a peer's intensity; ``None`` when the update is ignored."""
        if not isinstance(user_id, str) or user_id == self._self_id:
            return None
        user = self._users.get(user_id)
        if user is None:
            return None
        user.intensity = sanitize_intensity(intensity)
        return user.intensity

    def set_self_intensity(self, value: float) -> float | None:
        """Local sampler path; the self record is authoritative locally."""
        if self._self_id is None:
            return None
        me = self._users.get(self._self_id)
        if me is None:
            return None
        me.intensity = sanitize_intensity(value)
        return me.intensity

    def apply_message(self, msg_type: int, data: dict[str, Any] | None) -> bool:
        """Apply a decoded server frame. Returns ``False`` if it was ignored."""
        if data is None:
            return False

        if msg_type == serializer.MSG_HELLO:
            self.apply_hello(data.get("self"), data.get("peers"))
            return True
        if msg_type == serializer.MSG_JOINED:
            if not data.get("userId"):
                return False
            self.apply_joined(data)
            return True
        if msg_type == serializer.MSG_LEFT:
            return self.apply_left(data.get("userId"))
        if msg_type == serializer.MSG_STATE_UPDATE:
            return (
                self.apply_state_update(data.get("userId"), data.get("intensity"))
                is not None
            )

        logger.debug(f"Mirror ignoring message type {msg_type}")
        return False
