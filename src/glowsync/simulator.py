"""
GlowSync Participant Simulator - load testing and demo tool.

Spawns simulated participants against a running GlowSync server. Each one is
a regular :class:`~glowsync.client.presence_sync_manager` whose sample source
is a synthetic intensity pattern, so updates go through the same sampling and
throttled-emission path as a real microphone-driven client.

Architecture:
    - Intensity patterns: pluggable signal shapes (pulse, breathing, ...)
    - Participants: one client plus one sampling thread each
    - Orchestrator: batch spawning, signal handling, periodic status
"""

import argparse
import logging
import math
import random
import signal
import sys
import threading
import time
from abc import ABC, abstractmethod
from enum import Enum

from .client import presence_sync_manager

logger = logging.getLogger(__name__)


class IntensityPattern(Enum):
    """Available intensity patterns for simulated participants."""

    PULSE = "pulse"
    BREATHING = "breathing"
    RANDOM_WALK = "random_walk"
    SILENT = "silent"


# ============================================================================
# Pattern Strategies
# ============================================================================


class PatternStrategy(ABC):
    """Maps elapsed seconds to a sample in [0, 1]."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()
        self.phase = self.rng.uniform(0, 2 * math.pi)

    @abstractmethod
    def sample(self, elapsed: float) -> float:
        pass


class PulseStrategy(PatternStrategy):
    """Short bursts, like someone clapping or speaking in syllables."""

    period = 0.8
    duty = 0.3

    def sample(self, elapsed: float) -> float:
        position = ((elapsed + self.phase) % self.period) / self.period
        if position >= self.duty:
            return 0.0
        return math.sin(math.pi * position / self.duty)


class BreathingStrategy(PatternStrategy):
    """Slow sine between 0.1 and 0.7."""

    period = 4.0

    def sample(self, elapsed: float) -> float:
        return 0.4 + 0.3 * math.sin(2 * math.pi * elapsed / self.period + self.phase)


class RandomWalkStrategy(PatternStrategy):
    """Bounded random walk."""

    step = 0.08

    def __init__(self, rng: random.Random | None = None):
        super().__init__(rng)
        self.value = self.rng.random() * 0.5

    def sample(self, elapsed: float) -> float:
        self.value += self.rng.uniform(-self.step, self.step)
        self.value = max(0.0, min(self.value, 1.0))
        return self.value


class SilentStrategy(PatternStrategy):
    """A participant with no microphone; the source reports unavailable."""

    def sample(self, elapsed: float) -> float | None:
        return None


class PatternStrategyFactory:
    """Factory for creating pattern strategies."""

    _strategies = {
        IntensityPattern.PULSE: PulseStrategy,
        IntensityPattern.BREATHING: BreathingStrategy,
        IntensityPattern.RANDOM_WALK: RandomWalkStrategy,
        IntensityPattern.SILENT: SilentStrategy,
    }

    @classmethod
    def create(
        cls, pattern: IntensityPattern, rng: random.Random | None = None
    ) -> PatternStrategy:
        strategy_class = cls._strategies.get(pattern)
        if not strategy_class:
            raise ValueError(f"Unknown intensity pattern: {pattern}")
        return strategy_class(rng)


# ============================================================================
# Simulated Participant
# ============================================================================


class SimulatedParticipant:
    """One simulated client feeding a pattern into the sampling path."""

    def __init__(
        self,
        index: int,
        server_addr: str,
        router_port: int,
        pattern: IntensityPattern,
        sample_rate: float = 30.0,
    ):
        self.index = index
        self.pattern = pattern
        self.sample_rate = sample_rate
        self.strategy = PatternStrategyFactory.create(pattern)
        self.manager = presence_sync_manager(server=server_addr, router_port=router_port)
        self._started_at = 0.0

    def _read(self) -> float | None:
        return self.strategy.sample(time.monotonic() - self._started_at)

    def start(self) -> None:
        self._started_at = time.monotonic()
        self.manager.start()
        self.manager.start_sampling(self._read, rate_hz=self.sample_rate)

    def stop(self) -> None:
        self.manager.stop()

    @property
    def user_id(self) -> str | None:
        return self.manager.self_id


# ============================================================================
# Main Simulator Orchestrator
# ============================================================================


class ParticipantSimulator:
    """Main orchestrator for participant simulation."""

    def __init__(
        self,
        server_addr: str,
        router_port: int,
        num_participants: int,
        patterns: list[IntensityPattern] | None = None,
        sample_rate: float = 30.0,
        spawn_batch_size: int = 0,
        spawn_batch_interval: float = 0.0,
        duration: float | None = None,
    ):
        self.server_addr = server_addr
        self.router_port = router_port
        self.num_participants = num_participants
        self.patterns = patterns or list(IntensityPattern)
        self.sample_rate = sample_rate
        self.spawn_batch_size = spawn_batch_size
        self.spawn_batch_interval = spawn_batch_interval
        self.duration = duration

        self.participants: list[SimulatedParticipant] = []
        self.stop_event = threading.Event()

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        self.stop_event.set()

    def spawn(self) -> None:
        for i in range(self.num_participants):
            if self.stop_event.is_set():
                break
            pattern = self.patterns[i % len(self.patterns)]
            participant = SimulatedParticipant(
                index=i,
                server_addr=self.server_addr,
                router_port=self.router_port,
                pattern=pattern,
                sample_rate=self.sample_rate,
            )
            try:
                participant.start()
            except Exception as e:
                logger.error(f"Failed to start participant {i}: {e}")
                continue
            self.participants.append(participant)

            if (
                self.spawn_batch_size > 0
                and (i + 1) % self.spawn_batch_size == 0
                and self.spawn_batch_interval > 0
            ):
                self.stop_event.wait(self.spawn_batch_interval)

        logger.info(f"Spawned {len(self.participants)} participants")

    def start(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        started_at = time.monotonic()
        self.spawn()

        try:
            while not self.stop_event.wait(5.0):
                ready = sum(1 for p in self.participants if p.manager.is_ready)
                sent = sum(p.manager.get_stats()["updates_sent"] for p in self.participants)
                logger.info(
                    f"Status: {ready}/{len(self.participants)} ready, {sent} updates sent"
                )
                if self.duration is not None and time.monotonic() - started_at >= self.duration:
                    break
        finally:
            self.stop()

    def stop(self) -> None:
        logger.info("Stopping all participants...")
        for participant in self.participants:
            try:
                participant.stop()
            except Exception as e:
                logger.warning(f"Participant {participant.index} failed to stop: {e}")
        self.participants.clear()
        logger.info("All participants stopped")


# ============================================================================
# CLI Entry Point
# ============================================================================


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="GlowSync Participant Simulator - load testing tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --participants 20
  %(prog)s --participants 100 --server tcp://192.168.1.100 --pattern pulse
  %(prog)s --participants 5 --duration 30 --log-level DEBUG
        """,
    )
    parser.add_argument(
        "--participants",
        type=int,
        default=10,
        help="Number of participants to simulate (default: 10)",
    )
    parser.add_argument(
        "--server",
        type=str,
        default="tcp://localhost",
        help="Server address (default: tcp://localhost)",
    )
    parser.add_argument(
        "--router-port", type=int, default=5570, help="Server ROUTER port (default: 5570)"
    )
    parser.add_argument(
        "--pattern",
        action="append",
        choices=[p.value for p in IntensityPattern],
        default=None,
        help="Intensity pattern; repeat to mix (default: all patterns)",
    )
    parser.add_argument(
        "--sample-rate",
        type=float,
        default=30.0,
        help="Samples per second per participant (default: 30)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until Ctrl+C)",
    )
    parser.add_argument(
        "--spawn-batch-size", type=int, default=0, help="Spawn in batches of N (0 disables)"
    )
    parser.add_argument(
        "--spawn-batch-interval",
        type=float,
        default=0.0,
        help="Delay in seconds between batches",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def main():
    """Main entry point for the participant simulator."""
    args = build_arg_parser().parse_args()

    from .logging_utils import configure_logging

    configure_logging(log_dir=None, console_level=args.log_level)

    logger.info("=" * 60)
    logger.info("GlowSync Participant Simulator")
    logger.info("=" * 60)

    patterns = [IntensityPattern(p) for p in args.pattern] if args.pattern else None
    simulator = ParticipantSimulator(
        server_addr=args.server,
        router_port=args.router_port,
        num_participants=args.participants,
        patterns=patterns,
        sample_rate=args.sample_rate,
        spawn_batch_size=args.spawn_batch_size,
        spawn_batch_interval=args.spawn_batch_interval,
        duration=args.duration,
    )

    try:
        simulator.start()
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
