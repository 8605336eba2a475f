"""
GlowSync Presence Server Package

Shared "glow" presence: every connected participant gets a random color and
spawn position, streams a smoothed intensity in [0, 1], and every client
keeps a local mirror of everybody's latest state for rendering.

Main Classes:
    PresenceServer: ZeroMQ ROUTER server hosting the presence registry
    presence_sync_manager: Python client that mirrors the registry

Examples:
    # Run server via CLI (after installation)
    glowsync-server
    glowsync-simulator --participants 10

    # Use server programmatically
    from glowsync import PresenceServer
    server = PresenceServer(router_port=5570)
    server.start()

    # Use client programmatically
    from glowsync import presence_sync_manager
    manager = presence_sync_manager(server="tcp://localhost").start()
    manager.update_self_intensity(0.4)
    snapshot = manager.get_presence_snapshot()
"""

from importlib.metadata import PackageNotFoundError, version

from .client import presence_sync_manager
from .hub import PresenceHub
from .registry import PresenceRegistry, clamp_intensity
from .server import PresenceServer, get_version
from .types import color_data, position_data, presence_data

# Export public API
__all__ = [
    # Server API
    "PresenceServer",
    "PresenceHub",
    "PresenceRegistry",
    "clamp_intensity",
    "get_version",
    # Client API
    "presence_sync_manager",
    # Data types
    "color_data",
    "position_data",
    "presence_data",
]

try:
    __version__ = version("glowsync-server")
except PackageNotFoundError:
    __version__ = "unknown"
