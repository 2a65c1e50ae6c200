"""HEP/EEP (Extensible Encapsulation Protocol) encoding of captured packets."""

from __future__ import annotations

import ipaddress
import struct
from enum import IntEnum

from .address import Address
from .packet import Frame, Packet

#: Identifier at the start of every HEPv3 packet
HEP3_MAGIC = b"HEP3"
#: Address family values carried on the wire (Linux numbering)
HEP_AF_INET = 2
HEP_AF_INET6 = 10
#: Vendor id of the generic chunks
VENDOR_GENERIC = 0
#: Protocol type chunk value for SIP
PROTO_TYPE_SIP = 1

#: HEPv3 control header: identifier and total length
HEP3_CTRL = struct.Struct("!4sH")
#: HEPv3 chunk header: vendor id, type id and chunk length (header included)
CHUNK_HEADER = struct.Struct("!HHH")
#: HEPv2 fixed header: version, header length, family, protocol, ports
HEP2_HEADER = struct.Struct("!BBBBHH")
#: HEPv2 time header: seconds, microseconds, capture id (host order, padded)
HEP2_TIME = struct.Struct("<IIH2x")

_ETHER_HEADER = struct.Struct("!6s6sH")
_IP_HEADER = struct.Struct("!BBHHHBBH4s4s")
_UDP_HEADER = struct.Struct("!HHHH")
_ETHERTYPE_IP = 0x0800
_IPPROTO_UDP = 17
_FRAME_TTL = 128
_ETHER_DST = b"\xbb" * 6
_ETHER_SRC = b"\xaa" * 6


class ChunkType(IntEnum):
    """Generic HEPv3 chunk types."""

    INVALID = 0
    FAMILY = 1
    PROTO = 2
    SRC_IP4 = 3
    DST_IP4 = 4
    SRC_IP6 = 5
    DST_IP6 = 6
    SRC_PORT = 7
    DST_PORT = 8
    TS_SEC = 9
    TS_USEC = 10
    PROTO_TYPE = 11
    CAPT_ID = 12
    KEEP_TM = 13
    AUTH_KEY = 14
    PAYLOAD = 15
    CORRELATION_ID = 16


class HepError(Exception):
    """Raised when a packet cannot be encoded or decoded as HEP."""


def _ipv4_or_zero(ip: str) -> bytes:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return bytes(4)
    return address.packed if address.version == 4 else bytes(4)


def build_frame(timestamp: tuple[int, int], payload: bytes, src: Address, dst: Address) -> Frame:
    """Wrap a payload in synthetic Ethernet, IPv4 and UDP headers.

    Addresses that are not IPv4 are written as zeros.
    """
    sec, usec = timestamp
    payload = bytes(payload)
    ip_header = _IP_HEADER.pack(
        0x45,
        0,
        (_IP_HEADER.size + _UDP_HEADER.size + len(payload)) & 0xFFFF,
        0,
        0,
        _FRAME_TTL,
        _IPPROTO_UDP,
        0,
        _ipv4_or_zero(src.ip),
        _ipv4_or_zero(dst.ip),
    )
    udp_header = _UDP_HEADER.pack(
        src.port & 0xFFFF,
        dst.port & 0xFFFF,
        (_UDP_HEADER.size + len(payload)) & 0xFFFF,
        0,
    )
    ether_header = _ETHER_HEADER.pack(_ETHER_DST, _ETHER_SRC, _ETHERTYPE_IP)
    return Frame(ether_header + ip_header + udp_header + payload, sec, usec)


def _packed_ip(ip: str, version: int) -> bytes:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        raise HepError(f"invalid IP address: {ip!r}") from None
    if address.version != version:
        raise HepError(f"address {ip!r} is not IPv{version}")
    return address.packed


def _family(packet: Packet) -> int:
    if packet.ip_version == 4:
        return HEP_AF_INET
    if packet.ip_version == 6:
        return HEP_AF_INET6
    raise HepError(f"unsupported IP version {packet.ip_version}")


def _timestamp(packet: Packet) -> tuple[int, int]:
    try:
        return packet.timestamp()
    except ValueError as error:
        raise HepError(str(error)) from error


def encode_hep2(packet: Packet, capture_id: int = 0) -> bytes:
    """Encode a packet as HEPv2.

    The length byte holds the size of the fixed and address headers.
    """
    family = _family(packet)
    sec, usec = _timestamp(packet)
    addresses = _packed_ip(packet.src.ip, packet.ip_version) + _packed_ip(
        packet.dst.ip, packet.ip_version
    )
    header = HEP2_HEADER.pack(
        2,
        HEP2_HEADER.size + len(addresses),
        family,
        packet.proto & 0xFF,
        packet.src.port & 0xFFFF,
        packet.dst.port & 0xFFFF,
    )
    time_header = HEP2_TIME.pack(sec & 0xFFFFFFFF, usec & 0xFFFFFFFF, capture_id & 0xFFFF)
    return header + addresses + time_header + bytes(packet.payload)


def _chunk(chunk_type: ChunkType, data: bytes) -> bytes:
    return CHUNK_HEADER.pack(VENDOR_GENERIC, chunk_type, CHUNK_HEADER.size + len(data)) + data


def encode_hep3(packet: Packet, capture_id: int = 0, password: str | None = None) -> bytes:
    """Encode a packet as HEPv3, adding an auth key chunk when a password is given."""
    family = _family(packet)
    sec, usec = _timestamp(packet)
    if packet.ip_version == 4:
        src_type, dst_type = ChunkType.SRC_IP4, ChunkType.DST_IP4
    else:
        src_type, dst_type = ChunkType.SRC_IP6, ChunkType.DST_IP6

    chunks = [
        _chunk(ChunkType.FAMILY, struct.pack("!B", family)),
        _chunk(ChunkType.PROTO, struct.pack("!B", packet.proto & 0xFF)),
        _chunk(ChunkType.SRC_PORT, struct.pack("!H", packet.src.port & 0xFFFF)),
        _chunk(ChunkType.DST_PORT, struct.pack("!H", packet.dst.port & 0xFFFF)),
        _chunk(ChunkType.TS_SEC, struct.pack("!I", sec & 0xFFFFFFFF)),
        _chunk(ChunkType.TS_USEC, struct.pack("!I", usec & 0xFFFFFFFF)),
        _chunk(ChunkType.PROTO_TYPE, struct.pack("!B", PROTO_TYPE_SIP)),
        _chunk(ChunkType.CAPT_ID, struct.pack("!I", capture_id & 0xFFFFFFFF)),
        _chunk(src_type, _packed_ip(packet.src.ip, packet.ip_version)),
        _chunk(dst_type, _packed_ip(packet.dst.ip, packet.ip_version)),
    ]
    if password is not None:
        chunks.append(_chunk(ChunkType.AUTH_KEY, password.encode()))
    chunks.append(_chunk(ChunkType.PAYLOAD, bytes(packet.payload)))

    body = b"".join(chunks)
    total = HEP3_CTRL.size + len(body)
    if total > 0xFFFF:
        raise HepError(f"HEP packet too large: {total} bytes")
    return HEP3_CTRL.pack(HEP3_MAGIC, total) + body