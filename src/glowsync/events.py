"""
Simple event system for GlowSync client callbacks.
"""

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class EventHandler:
    """Ordered list of callbacks fired on the client's network thread."""

    def __init__(self, name: str = "event"):
        self.name = name
        self._callbacks: list[Callable] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add_listener(self, callback: Callable) -> Callable[[], None]:
        """Add a callback listener. Returns unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe():
            self.remove_listener(callback)

        return unsubscribe

    def remove_listener(self, callback: Callable) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def invoke(self, *args: Any, **kwargs: Any) -> None:
        """Call every listener; one failing listener does not stop the rest."""
        for callback in list(self._callbacks):
            try:
                callback(*args, **kwargs)
            except Exception:
                logger.exception(f"Listener for {self.name} raised")

    def clear(self) -> None:
        self._callbacks.clear()
