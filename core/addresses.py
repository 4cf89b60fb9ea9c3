"""Host name checks and address-range guards shared by the pipeline and fetchers."""

from __future__ import annotations

import socket
from ipaddress import ip_address, ip_network
from typing import Iterable

from core.config import BLOCKED_IP_RANGES


def blocked_networks() -> list:
    """Build blocked network list from compliance config."""
    return [ip_network(cidr, strict=False) for cidr in BLOCKED_IP_RANGES]


def resolve_ip_addresses(hostname: str) -> set[str]:
    """Resolve hostname to a set of IP addresses; unresolvable names give an empty set."""
    literal = hostname.strip("[]")
    try:
        return {str(ip_address(literal))}
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError):
        return set()
    return {item[4][0] for item in infos}


def is_blocked_ip(ip_text: str, networks: Iterable) -> bool:
    """Check if an IP is inside blocked ranges."""
    ip_obj = ip_address(ip_text.split("%", 1)[0])
    return any(ip_obj in network for network in networks)


def host_is_blocked(hostname: str, networks: Iterable | None = None) -> bool:
    """True when any resolved address of ``hostname`` is in a blocked range."""
    checked = list(networks) if networks is not None else blocked_networks()
    resolved = resolve_ip_addresses(hostname)
    return any(is_blocked_ip(ip_text, checked) for ip_text in resolved)


def is_valid_host_name(hostname: str) -> bool:
    """False for names the IDNA codec rejects, such as labels over 63 characters."""
    try:
        hostname.encode("idna")
    except UnicodeError:
        return False
    return True
