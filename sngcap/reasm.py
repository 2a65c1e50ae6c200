"""IP fragment and TCP segment reassembly for captured frames."""

from __future__ import annotations

import socket
import struct
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional

from .address import Address
from .packet import (
    ETHERTYPE_8021Q,
    MAX_CAPTURE_LEN,
    NFULA_PAYLOAD,
    Frame,
    LinkType,
    Packet,
    datalink_size,
)

IPPROTO_IPIP = 4
IPPROTO_TCP = 6
IPPROTO_UDP = 17
IPPROTO_FRAGMENT = 44

IP_MF = 0x2000
IP_OFFMASK = 0x1FFF
IP6F_OFF_MASK = 0xFFF8
IP6F_MORE_FRAG = 0x0001

IPV4_HEADER_LEN = 20
IPV6_HEADER_LEN = 40
IPV6_FRAG_HEADER_LEN = 8

TH_FIN = 0x01
TH_SYN = 0x02
TH_RST = 0x04
TH_PUSH = 0x08
TH_ACK = 0x10
TH_URG = 0x20


class Validation(Enum):
    """Outcome of checking whether a payload holds SIP messages."""

    NOT_SIP = auto()
    PARTIAL_SIP = auto()
    COMPLETE_SIP = auto()
    MULTIPLE_SIP = auto()


#: Checks a packet payload; on MULTIPLE_SIP it trims the payload to the first message.
Validator = Callable[[Packet], Validation]


@dataclass(frozen=True)
class TcpHeader:
    """Fields of a TCP header needed for reassembly."""

    sport: int
    dport: int
    seq: int
    ack: int = 0
    header_length: int = 20
    flags: int = 0


@dataclass(frozen=True)
class UdpHeader:
    """Fields of a UDP header."""

    sport: int
    dport: int
    length: int = 0
    checksum: int = 0
    header_length: int = 8


def parse_tcp_header(data: bytes) -> TcpHeader:
    """Parse a TCP header from the start of ``data``.

    Raises ValueError when the data is too short.
    """
    if len(data) < 20:
        raise ValueError("truncated TCP header")
    sport, dport, seq, ack, offset, flags = struct.unpack_from("!HHIIBB", data)
    return TcpHeader(sport, dport, seq, ack, (offset >> 4) * 4, flags)


def parse_udp_header(data: bytes) -> UdpHeader:
    """Parse a UDP header from the start of ``data``.

    Raises ValueError when the data is too short.
    """
    if len(data) < 8:
        raise ValueError("truncated UDP header")
    sport, dport, length, checksum = struct.unpack_from("!HHHH", data)
    return UdpHeader(sport, dport, length, checksum)


@dataclass(frozen=True)
class _IpHeader:
    version: int
    header_length: int
    proto: int
    length: int
    ident: int
    fragmented: bool
    frag_offset: int
    more_fragments: bool
    src: str
    dst: str
    frag_next: int = 0


def _parse_ip(data: bytes, offset: int) -> Optional[_IpHeader]:
    if len(data) < offset + 1:
        return None
    version = data[offset] >> 4
    if version == 4:
        if len(data) < offset + IPV4_HEADER_LEN:
            return None
        vhl, _, length, ident, ip_off, _, proto, _ = struct.unpack_from("!BBHHHBBH", data, offset)
        frag = ip_off & (IP_MF | IP_OFFMASK)
        return _IpHeader(
            version=4,
            header_length=(vhl & 0x0F) * 4,
            proto=proto,
            length=length,
            ident=ident,
            fragmented=frag != 0,
            frag_offset=(ip_off & IP_OFFMASK) * 8 if frag else 0,
            more_fragments=bool(ip_off & IP_MF),
            src=socket.inet_ntop(socket.AF_INET, data[offset + 12:offset + 16]),
            dst=socket.inet_ntop(socket.AF_INET, data[offset + 16:offset + 20]),
        )
    if version == 6:
        if len(data) < offset + IPV6_HEADER_LEN:
            return None
        plen, nxt = struct.unpack_from("!HB", data, offset + 4)
        src = socket.inet_ntop(socket.AF_INET6, data[offset + 8:offset + 24])
        dst = socket.inet_ntop(socket.AF_INET6, data[offset + 24:offset + 40])
        fragmented = nxt == IPPROTO_FRAGMENT
        frag_offset = ident = frag_next = 0
        more = False
        if fragmented:
            start = offset + IPV6_HEADER_LEN
            if len(data) < start + IPV6_FRAG_HEADER_LEN:
                return None
            frag_next, _, offlg, ident = struct.unpack_from("!BBHI", data, start)
            frag_offset = offlg & IP6F_OFF_MASK
            more = bool(offlg & IP6F_MORE_FRAG)
        return _IpHeader(
            version=6,
            header_length=IPV6_HEADER_LEN,
            proto=nxt,
            length=plen + IPV6_HEADER_LEN,
            ident=ident,
            fragmented=fragmented,
            frag_offset=frag_offset,
            more_fragments=more,
            src=src,
            dst=dst,
            frag_next=frag_next,
        )
    return None


class Reassembler:
    """Rebuilds IP packets from fragments and SIP messages from TCP segments."""

    def __init__(self, link: int, validator: Optional[Validator] = None) -> None:
        self.link = link
        self.link_hl = datalink_size(link)
        self.validator: Validator = validator or (lambda _packet: Validation.COMPLETE_SIP)
        self.ip_pending: list[Packet] = []
        self.tcp_pending: list[Packet] = []

    def _link_header_length(self, data: bytes) -> int:
        link_hl = self.link_hl
        if self.link == LinkType.EN10MB and len(data) >= 14:
            if struct.unpack_from("!H", data, 12)[0] == ETHERTYPE_8021Q:
                link_hl += 4
        if self.link == LinkType.LINUX_SLL and len(data) >= 16:
            if struct.unpack_from("!H", data, 14)[0] == ETHERTYPE_8021Q:
                link_hl += 4
        if self.link == LinkType.NFLOG:
            # NFLOG TLVs are stored in host (little endian) byte order
            while link_hl + 8 <= len(data):
                tlv_length, tlv_type = struct.unpack_from("<HH", data, link_hl)
                if tlv_type == NFULA_PAYLOAD:
                    link_hl += 4
                    break
                if tlv_length < 4:
                    break
                link_hl += (tlv_length + 3) & ~3
        return link_hl

    def reassemble_ip(self, frame: Frame) -> Optional[tuple[Packet, bytes]]:
        """Feed one captured frame.

        Returns the packet and its IP payload (the transport segment) when the
        frame is not fragmented or completes a fragmented packet; otherwise None.
        """
        data = frame.data
        link_hl = self._link_header_length(data)
        size = len(data) - link_hl
        header: Optional[_IpHeader] = None

        while size >= IPV4_HEADER_LEN:
            header = _parse_ip(data, link_hl)
            if header is None:
                return None
            size = header.length - header.header_length
            if header.proto == IPPROTO_IPIP:
                # Tunnelled packet: skip the outer header and parse again
                link_hl += header.header_length
            else:
                break

        if header is None:
            return None

        src = Address(header.src)
        dst = Address(header.dst)

        if not header.fragmented:
            packet = Packet(header.version, header.proto, src, dst, header.ident)
            packet.add_frame(frame)
            start = link_hl + header.header_length
            return packet, data[start:link_hl + header.length]

        packet = next(
            (
                p
                for p in self.ip_pending
                if p.src == src and p.dst == dst and p.ip_id == header.ident
            ),
            None,
        )
        if packet is None:
            packet = Packet(header.version, header.proto, src, dst, header.ident)
            self.ip_pending.append(packet)
        packet.add_frame(frame)

        extra = IPV6_FRAG_HEADER_LEN if header.version == 6 else 0
        packet.ip_cap_len += header.length - header.header_length - extra
        if not header.more_fragments:
            packet.ip_exp_len = (
                header.frag_offset + header.length - header.header_length - extra
            )

        if packet.ip_cap_len != packet.ip_exp_len:
            return None

        return self._assemble(packet, link_hl)

    def _assemble(self, packet: Packet, link_hl: int) -> Optional[tuple[Packet, bytes]]:
        pieces: list[tuple[int, bytes]] = []
        for frame in packet.frames:
            header = _parse_ip(frame.data, link_hl)
            if header is None:
                continue
            start = link_hl + header.header_length
            if header.version == 6:
                start += IPV6_FRAG_HEADER_LEN
                packet.proto = header.frag_next
            pieces.append((header.frag_offset, frame.data[start:link_hl + header.length]))

        total = sum(len(piece) for _, piece in pieces)
        if total > MAX_CAPTURE_LEN:
            self.ip_pending.remove(packet)
            return None

        buffer = bytearray(total)
        for offset, piece in pieces:
            end = offset + len(piece)
            if end > len(buffer):
                buffer.extend(bytes(end - len(buffer)))
            buffer[offset:end] = piece

        self.ip_pending.remove(packet)
        return packet, bytes(buffer)

    def reassemble_tcp(self, packet: Packet, tcp: TcpHeader, payload: bytes) -> Optional[Packet]:
        """Feed one TCP segment of ``packet``.

        Returns a packet whose payload is ready to be parsed, or None while
        more segments are needed or the assembled data was dropped.
        """
        if not payload:
            return packet

        stored = next(
            (p for p in self.tcp_pending if p.src == packet.src and p.dst == packet.dst),
            None,
        )
        if stored is not None:
            for frame in packet.frames:
                stored.add_frame(frame)
        else:
            stored = packet
            self.tcp_pending.append(packet)

        if stored.tcp_seq == 0:
            stored.tcp_seq = tcp.seq

        if len(stored.frames) == 1:
            stored.payload = bytes(payload)
        else:
            if len(stored.payload) + len(payload) > MAX_CAPTURE_LEN:
                self.tcp_pending.remove(stored)
                return None
            if stored.tcp_seq < tcp.seq:
                stored.tcp_seq = tcp.seq
                stored.payload = stored.payload + payload
            else:
                stored.payload = bytes(payload) + stored.payload

        if len(stored.payload) > MAX_CAPTURE_LEN:
            self.tcp_pending.remove(stored)
            return None

        full_payload = stored.payload
        valid = self.validator(stored)

        if valid is Validation.COMPLETE_SIP:
            self.tcp_pending.remove(stored)
            return stored

        if valid is Validation.MULTIPLE_SIP:
            self.tcp_pending.remove(stored)
            rest = full_payload[len(stored.payload):]
            if 0 < len(rest) < MAX_CAPTURE_LEN:
                following = stored.clone()
                following.payload = rest
                self.tcp_pending.append(following)
            return stored

        if valid is Validation.NOT_SIP and tcp.flags & TH_PUSH:
            self.tcp_pending.remove(stored)
            return stored

        return None