"""Decoding of HEP/EEP packets back into captured packets."""

from __future__ import annotations

import socket
import struct
from typing import Optional

from .address import Address
from .hep import (
    CHUNK_HEADER,
    HEP2_HEADER,
    HEP2_TIME,
    HEP3_CTRL,
    HEP3_MAGIC,
    HEP_AF_INET,
    HEP_AF_INET6,
    VENDOR_GENERIC,
    ChunkType,
    HepError,
    build_frame,
)
from .packet import Packet, PacketType

_ADDRESS_SIZES = {HEP_AF_INET: 4, HEP_AF_INET6: 16}
_SOCKET_FAMILIES = {HEP_AF_INET: socket.AF_INET, HEP_AF_INET6: socket.AF_INET6}


def _make_packet(
    family: int, proto: int, src: Address, dst: Address, timestamp: tuple[int, int], payload: bytes
) -> Packet:
    packet = Packet(4 if family == HEP_AF_INET else 6, proto, src, dst, 0)
    packet.add_frame(build_frame(timestamp, payload, src, dst))
    packet.type = PacketType.SIP_UDP
    packet.payload = bytes(payload)
    return packet


def decode_hep2(data: bytes) -> Packet:
    """Decode a HEPv2 packet.

    Everything after the time header is taken as payload.
    Raises HepError when the data is not a valid HEPv2 packet.
    """
    data = bytes(data)
    if len(data) < HEP2_HEADER.size:
        raise HepError("truncated HEPv2 header")
    version, _length, family, proto, sport, dport = HEP2_HEADER.unpack_from(data)
    if version != 2:
        raise HepError(f"unexpected HEP version {version}")
    size = _ADDRESS_SIZES.get(family)
    if size is None:
        raise HepError(f"unsupported address family {family}")

    pos = HEP2_HEADER.size
    if len(data) < pos + 2 * size + HEP2_TIME.size:
        raise HepError("truncated HEPv2 packet")
    inet = _SOCKET_FAMILIES[family]
    src = Address(socket.inet_ntop(inet, data[pos:pos + size]), sport)
    dst = Address(socket.inet_ntop(inet, data[pos + size:pos + 2 * size]), dport)
    pos += 2 * size

    sec, usec, _capture_id = HEP2_TIME.unpack_from(data, pos)
    pos += HEP2_TIME.size

    return _make_packet(family, proto, src, dst, (sec, usec), data[pos:])


def _fixed(data: bytes, fmt: str, chunk_type: ChunkType) -> int:
    try:
        return struct.unpack_from(fmt, data)[0]
    except struct.error:
        raise HepError(f"truncated {chunk_type.name} chunk") from None


def _ip(data: bytes, inet: int, size: int, chunk_type: ChunkType) -> str:
    if len(data) < size:
        raise HepError(f"truncated {chunk_type.name} chunk")
    return socket.inet_ntop(inet, data[:size])


def decode_hep3(data: bytes, password: Optional[str] = None) -> Packet:
    """Decode a HEPv3 packet.

    When a password is given, the packet must carry an auth key starting
    with it. Raises HepError when the packet is invalid or not authorised.
    """
    data = bytes(data)
    if len(data) < HEP3_CTRL.size:
        raise HepError("truncated HEPv3 header")
    magic, total_len = HEP3_CTRL.unpack_from(data)
    if magic != HEP3_MAGIC:
        raise HepError("missing HEP3 identifier")

    family = 0
    proto = 0
    src_ip = dst_ip = ""
    sport = dport = 0
    sec = usec = 0
    auth_key = b""
    payload = b""

    pos = HEP3_CTRL.size
    while pos < total_len:
        if pos + CHUNK_HEADER.size > len(data):
            raise HepError("truncated HEPv3 chunk")
        vendor, type_id, chunk_len = CHUNK_HEADER.unpack_from(data, pos)
        if chunk_len < CHUNK_HEADER.size:
            raise HepError(f"bad chunk length {chunk_len}")
        if vendor != VENDOR_GENERIC:
            pos += chunk_len
            continue

        body = data[pos + CHUNK_HEADER.size:pos + chunk_len]
        if type_id == ChunkType.INVALID:
            raise HepError("invalid chunk type")
        elif type_id == ChunkType.FAMILY:
            family = _fixed(body, "!B", ChunkType.FAMILY)
        elif type_id == ChunkType.PROTO:
            proto = _fixed(body, "!B", ChunkType.PROTO)
        elif type_id == ChunkType.SRC_IP4:
            src_ip = _ip(body, socket.AF_INET, 4, ChunkType.SRC_IP4)
        elif type_id == ChunkType.DST_IP4:
            dst_ip = _ip(body, socket.AF_INET, 4, ChunkType.DST_IP4)
        elif type_id == ChunkType.SRC_IP6:
            src_ip = _ip(body, socket.AF_INET6, 16, ChunkType.SRC_IP6)
        elif type_id == ChunkType.DST_IP6:
            dst_ip = _ip(body, socket.AF_INET6, 16, ChunkType.DST_IP6)
        elif type_id == ChunkType.SRC_PORT:
            sport = _fixed(body, "!H", ChunkType.SRC_PORT)
        elif type_id == ChunkType.DST_PORT:
            dport = _fixed(body, "!H", ChunkType.DST_PORT)
        elif type_id == ChunkType.TS_SEC:
            sec = _fixed(body, "!I", ChunkType.TS_SEC)
        elif type_id == ChunkType.TS_USEC:
            usec = _fixed(body, "!I", ChunkType.TS_USEC)
        elif type_id == ChunkType.AUTH_KEY:
            auth_key = body.split(b"\x00", 1)[0]
        elif type_id == ChunkType.PAYLOAD:
            if len(body) < chunk_len - CHUNK_HEADER.size:
                raise HepError("truncated PAYLOAD chunk")
            payload = body
        pos += chunk_len

    if password is not None:
        if not auth_key:
            raise HepError("packet carries no auth key")
        if not auth_key.startswith(password.encode()):
            raise HepError("auth key does not match")

    return _make_packet(
        family, proto, Address(src_ip, sport), Address(dst_ip, dport), (sec, usec), payload
    )