"""Self-sampling support: sample sources and throttled emission.

Sampling (e.g. a smoothed microphone level) happens at whatever rate the
sampler runs; outbound ``stateUpdate`` messages are limited to one per
``interval`` seconds so broadcast volume stays bounded.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from .registry import sanitize_intensity

DEFAULT_UPDATE_INTERVAL = 0.12  # seconds between outbound state updates


@runtime_checkable
class SampleSource(Protocol):
    """Provider of already-smoothed samples in [0, 1].

    ``available`` is ``False`` while the underlying capability is denied
    (no microphone, permission refused, ...); callers then treat the signal
    as a steady 0. ``read()`` is still called every tick so a source can
    report that the capability came back.
    """

    available: bool

    def read(self) -> float: ...


class CallableSampleSource:
    """Adapts ``fn() -> float | None`` to :class:`SampleSource`.

    Returning ``None`` marks the source unavailable from then on until a
    number comes back.
    """

    def __init__(self, fn: Callable[[], float | None]):
        self._fn = fn
        self.available = True

    def read(self) -> float:
        value = self._fn()
        if value is None:
            self.available = False
            return 0.0
        self.available = True
        return value


def read_sample(source: SampleSource) -> float:
    """One sample from ``source``; 0 while the capability is unavailable."""
    value = source.read()
    if not source.available:
        return 0.0
    return sanitize_intensity(value)


class ThrottledEmitter:
    """Decides which offered samples are worth sending.

    The first offer is always emitted; after that at most one per
    ``interval`` seconds, measured on ``clock`` (monotonic by default).
    """

    def __init__(
        self,
        interval: float = DEFAULT_UPDATE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self._clock = clock
        self._last_sent: float | None = None
        self.emitted = 0
        self.suppressed = 0

    def ready(self, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        return self._last_sent is None or now - self._last_sent >= self.interval

    def offer(self, value: float, now: float | None = None) -> float | None:
        """Return the value to send, or ``None`` if throttled."""
        now = self._clock() if now is None else now
        if not self.ready(now):
            self.suppressed += 1
            return None
        self._last_sent = now
        self.emitted += 1
        return value

    def reset(self) -> None:
        self._last_sent = None
