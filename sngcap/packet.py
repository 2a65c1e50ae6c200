"""Captured packet, frame and link-layer definitions."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from .address import Address

#: Max allowed packet assembled size
MAX_CAPTURE_LEN = 20480
#: Max allowed packet length
MAXIMUM_SNAPLEN = 262144
#: VLAN 802.1Q Ethernet type
ETHERTYPE_8021Q = 0x8100
#: NFLOG TLV type carrying the packet payload
NFULA_PAYLOAD = 9

#: Websocket header bits
WH_FIN = 0x80
WH_RSV = 0x70
WH_OPCODE = 0x0F
WH_MASK = 0x80
WH_LEN = 0x7F
WS_OPCODE_TEXT = 0x1


class LinkType(IntEnum):
    """Link-layer header types as stored in capture files."""

    NULL = 0
    EN10MB = 1
    IEEE802 = 6
    SLIP = 8
    PPP = 9
    FDDI = 10
    PPP_SERIAL = 50
    PPP_ETHER = 51
    RAW = 101
    SLIP_BSDOS = 102
    PPP_BSDOS = 103
    LOOP = 108
    ENC = 109
    LINUX_SLL = 113
    IPNET = 226
    NFLOG = 239
    LINUX_SLL2 = 276


class CaptureStorage(IntEnum):
    """Where captured packets are kept."""

    NONE = 0
    MEMORY = 1
    DISK = 2


class PacketType(Enum):
    """Transport a packet was captured on."""

    SIP_UDP = "UDP"
    SIP_TCP = "TCP"
    SIP_TLS = "TLS"
    SIP_WS = "WS"
    SIP_WSS = "WSS"
    RTP = "RTP"


_LINK_HEADER_SIZES = {
    LinkType.EN10MB: 14,
    LinkType.IEEE802: 22,
    LinkType.LOOP: 4,
    LinkType.NULL: 4,
    LinkType.SLIP: 16,
    LinkType.SLIP_BSDOS: 16,
    LinkType.PPP: 4,
    LinkType.PPP_BSDOS: 4,
    LinkType.PPP_SERIAL: 4,
    LinkType.PPP_ETHER: 4,
    LinkType.RAW: 0,
    LinkType.FDDI: 21,
    LinkType.ENC: 12,
    LinkType.NFLOG: 4,
    LinkType.LINUX_SLL: 16,
    LinkType.LINUX_SLL2: 20,
    LinkType.IPNET: 24,
}


def datalink_size(datalink: int) -> int:
    """Return the link-layer header size for a link type.

    Raises ValueError for link types that cannot be handled.
    """
    try:
        return _LINK_HEADER_SIZES[LinkType(datalink)]
    except (ValueError, KeyError):
        raise ValueError(f"Unable to handle linktype {datalink}") from None


@dataclass(frozen=True)
class Frame:
    """One captured frame with its capture timestamp."""

    data: bytes
    sec: int = 0
    usec: int = 0
    orig_len: int = -1

    def __post_init__(self) -> None:
        if self.orig_len < 0:
            object.__setattr__(self, "orig_len", len(self.data))

    @property
    def caplen(self) -> int:
        return len(self.data)


@dataclass
class Packet:
    """A network packet assembled from one or more frames."""

    ip_version: int
    proto: int
    src: Address = field(default_factory=Address)
    dst: Address = field(default_factory=Address)
    ip_id: int = 0
    frames: list[Frame] = field(default_factory=list)
    type: PacketType | None = None
    payload: bytes = b""
    tcp_seq: int = 0
    ip_cap_len: int = 0
    ip_exp_len: int = 0

    def add_frame(self, frame: Frame) -> None:
        """Append a frame to this packet."""
        self.frames.append(frame)

    def clone(self) -> Packet:
        """Return a copy whose frame list is independent of this one."""
        return dataclasses.replace(self, frames=list(self.frames))

    def timestamp(self) -> tuple[int, int]:
        """Return (seconds, microseconds) of the first frame."""
        if not self.frames:
            raise ValueError("packet has no frames")
        first = self.frames[0]
        return first.sec, first.usec