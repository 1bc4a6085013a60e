"""Best-effort discovery of the address advertised to viewers."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Iterable, Optional

LOGGER = logging.getLogger(__name__)

LOOPBACK_ADDRESS = "127.0.0.1"


def _first_routable(candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        try:
            address = ipaddress.ip_address(candidate)
        except ValueError:
            continue
        if address.version == 4 and not address.is_loopback and not address.is_unspecified:
            return str(address)
    return None


def _hostname_addresses() -> list[str]:
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        LOGGER.debug("Hostname lookup failed", exc_info=True)
        return []
    return [info[4][0] for info in infos]


def _default_route_address() -> list[str]:
    # Connecting a UDP socket only selects a route; no packet is sent.
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        return [sock.getsockname()[0]]
    except OSError:
        LOGGER.debug("Default route probe failed", exc_info=True)
        return []
    finally:
        sock.close()


def local_ipv4_address() -> str:
    """Return a non-loopback local IPv4 address, or 127.0.0.1 when none is found."""
    return (
        _first_routable(_hostname_addresses())
        or _first_routable(_default_route_address())
        or LOOPBACK_ADDRESS
    )


def build_server_url(port: int, host: Optional[str] = None) -> str:
    return f"http://{host or local_ipv4_address()}:{port}"


__all__ = ["LOOPBACK_ADDRESS", "build_server_url", "local_ipv4_address"]
