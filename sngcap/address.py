"""Network addresses as seen in captured packets."""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass

import psutil

#: Longest textual IP address accepted
ADDRESSLEN = 46

_PORT_RE = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class Address:
    """An IP address with a port; equality takes both into account."""

    ip: str = ""
    port: int = 0

    def same_host(self, other: Address) -> bool:
        """Return True if both addresses share the IP, whatever their ports."""
        return self.ip == other.ip

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


def parse_address(ipport: str) -> Address:
    """Parse an ``IP:PORT`` string into an :class:`Address`.

    Raises ValueError when the text is not in that form.
    """
    if ipport is None or len(ipport) > ADDRESSLEN + 6:
        raise ValueError(f"invalid address: {ipport!r}")
    host, sep, rest = ipport.partition(":")
    if not host or not sep or len(host) > ADDRESSLEN:
        raise ValueError(f"invalid address: {ipport!r}")
    match = _PORT_RE.match(rest)
    if not match:
        raise ValueError(f"invalid port in address: {ipport!r}")
    return Address(host, int(match.group(1)) & 0xFFFF)


def is_local_address(address: Address) -> bool:
    """Return True if the address IP belongs to a local network interface."""
    families = (socket.AF_INET, socket.AF_INET6)
    for entries in psutil.net_if_addrs().values():
        for entry in entries:
            if entry.family not in families or not entry.address:
                continue
            # Strip IPv6 scope identifiers such as "fe80::1%eth0"
            if entry.address.split("%", 1)[0] == address.ip:
                return True
    return False