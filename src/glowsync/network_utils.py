"""Network helpers for the GlowSync server startup banner."""

import logging
import socket

import psutil

logger = logging.getLogger(__name__)

# Interface name prefixes that are almost never reachable from other devices
VIRTUAL_INTERFACE_PREFIXES = (
    "bridge",
    "docker",
    "veth",
    "vmnet",
    "vboxnet",
    "virbr",
    "tun",
    "tap",
    "utun",
    "vnic",
    "ppp",
)


def is_shareable_ipv4(address: str) -> bool:
    """False for loopback and link-local (APIPA) addresses."""
    return not (address.startswith("127.") or address.startswith("169.254."))


def get_local_ip_addresses() -> list[str]:
    """IPv4 addresses of physical interfaces that clients could connect to."""
    addresses: list[str] = []
    try:
        interfaces = psutil.net_if_addrs()
    except Exception as e:
        logger.warning(f"Failed to enumerate network interfaces: {e}")
        return addresses

    for interface_name, interface_addresses in interfaces.items():
        if interface_name.lower().startswith(VIRTUAL_INTERFACE_PREFIXES):
            continue
        for address in interface_addresses:
            if address.family == socket.AF_INET and is_shareable_ipv4(address.address):
                addresses.append(address.address)

    return addresses


def format_endpoints(port: int, addresses: list[str] | None = None) -> list[str]:
    """``tcp://ip:port`` endpoints for the banner; localhost if none found."""
    if addresses is None:
        addresses = get_local_ip_addresses()
    if not addresses:
        addresses = ["localhost"]
    return [f"tcp://{address}:{port}" for address in addresses]
