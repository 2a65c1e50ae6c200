"""Sending and receiving captured packets over HEP/EEP UDP sockets."""

from __future__ import annotations

import re
import socket
from typing import Iterator, Optional, Union

from .address import ADDRESSLEN, Address
from .hep import HepError, encode_hep2, encode_hep3
from .hep_decode import decode_hep2, decode_hep3
from .packet import MAX_CAPTURE_LEN, Packet, PacketType

_URL_RE = re.compile(r"[^:]+:([^:]{1,%d}):\s*(\S{1,5})" % ADDRESSLEN)
_VERSIONS = (2, 3)

Port = Union[int, str]


def parse_eep_url(url: str) -> tuple[str, str]:
    """Parse a ``proto:address:port`` URL into (address, port).

    Raises ValueError when the URL is not in that form.
    """
    match = _URL_RE.match(url or "")
    if not match:
        raise ValueError(f"invalid EEP url: {url!r}")
    return match.group(1), match.group(2)


def _resolve(host: str, port: Port) -> tuple:
    infos = socket.getaddrinfo(
        host,
        str(port),
        socket.AF_UNSPEC,
        socket.SOCK_DGRAM,
        socket.IPPROTO_UDP,
        socket.AI_NUMERICSERV,
    )
    return infos[0]


def _check_version(version: int) -> None:
    if version not in _VERSIONS:
        raise ValueError(f"unsupported HEP version {version}")


class EepClient:
    """Sends captured packets to a HEP collector."""

    def __init__(
        self,
        host: str,
        port: Port,
        version: int = 3,
        capture_id: int = 0,
        password: Optional[str] = None,
    ) -> None:
        _check_version(version)
        self.version = version
        self.capture_id = capture_id
        self.password = password
        family, socktype, proto, _, sockaddr = _resolve(host, port)
        self.socket = socket.socket(family, socktype, proto)
        try:
            self.socket.connect(sockaddr)
        except OSError:
            self.socket.close()
            raise

    def send(self, packet: Packet) -> bool:
        """Send a packet; RTP packets are not sent and give False."""
        if packet.type is PacketType.RTP:
            return False
        if self.version == 2:
            data = encode_hep2(packet, self.capture_id)
        else:
            data = encode_hep3(packet, self.capture_id, self.password)
        self.socket.send(data)
        return True

    def close(self) -> None:
        """Close the client socket."""
        self.socket.close()

    def __enter__(self) -> EepClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EepServer:
    """Receives HEP packets on a bound UDP socket."""

    def __init__(
        self, host: str, port: Port, version: int = 3, password: Optional[str] = None
    ) -> None:
        _check_version(version)
        self.version = version
        self.password = password
        family, socktype, proto, _, sockaddr = _resolve(host, port)
        self.socket = socket.socket(family, socktype, proto)
        try:
            self.socket.bind(sockaddr)
        except OSError:
            self.socket.close()
            raise

    @property
    def address(self) -> Address:
        """The local address the server listens on."""
        host, port = self.socket.getsockname()[:2]
        return Address(host, port)

    def receive(self) -> Packet:
        """Wait for one datagram and decode it.

        Raises HepError when the datagram is not a valid HEP packet.
        """
        data, _ = self.socket.recvfrom(MAX_CAPTURE_LEN)
        if self.version == 2:
            return decode_hep2(data)
        return decode_hep3(data, self.password)

    def __iter__(self) -> Iterator[Packet]:
        """Yield received packets, skipping invalid ones, until the socket closes."""
        while True:
            try:
                yield self.receive()
            except HepError:
                continue
            except OSError:
                return

    def close(self) -> None:
        """Close the server socket."""
        self.socket.close()

    def __enter__(self) -> EepServer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()