import ipaddress
import struct

import pytest

from sngcap.address import Address
from sngcap.hep import (
    HEP2_HEADER,
    HEP2_TIME,
    HEP3_MAGIC,
    HEP_AF_INET,
    HEP_AF_INET6,
    ChunkType,
    HepError,
    build_frame,
    encode_hep2,
    encode_hep3,
)
from sngcap.packet import Frame, LinkType, Packet, datalink_size

PAYLOAD = b"OPTIONS sip:bob@example.com SIP/2.0\r\n\r\n"


def _packet(version=4, src="10.0.0.1", dst="10.0.0.2", payload=PAYLOAD, frames=None):
    if frames is None:
        frames = [Frame(b"frame", 1700000000, 123456)]
    return Packet(
        version,
        17,
        Address(src, 5060),
        Address(dst, 5080),
        frames=frames,
        payload=payload,
    )


def _chunks(data):
    total = struct.unpack_from("!H", data, 4)[0]
    pos = 6
    result = []
    while pos < total:
        vendor, ctype, length = struct.unpack_from("!HHH", data, pos)
        result.append((vendor, ctype, data[pos + 6:pos + length]))
        pos += length
    return result


def test_chunk_type_values_follow_declaration_order():
    assert ChunkType(7) is ChunkType.SRC_PORT
    assert ChunkType(15) is ChunkType.PAYLOAD
    assert ChunkType(16) is ChunkType.CORRELATION_ID
    with pytest.raises(ValueError):
        ChunkType(17)


def test_build_frame_layout():
    src, dst = Address("10.0.0.1", 5060), Address("10.0.0.2", 5080)
    frame = build_frame((10, 20), PAYLOAD, src, dst)
    eth = datalink_size(LinkType.EN10MB)
    assert (frame.sec, frame.usec) == (10, 20)
    assert frame.data[:6] == b"\xbb" * 6
    assert frame.data[6:12] == b"\xaa" * 6
    assert frame.data[12:14] == b"\x08\x00"
    assert frame.data.endswith(PAYLOAD)
    ip = frame.data[eth:]
    assert ip[0] >> 4 == 4
    assert struct.unpack_from("!H", ip, 2)[0] == len(frame.data) - eth
    assert ip[8] == 128
    assert ip[9] == 17
    assert ip[12:16] == ipaddress.ip_address("10.0.0.1").packed
    assert ip[16:20] == ipaddress.ip_address("10.0.0.2").packed
    udp = ip[(ip[0] & 0x0F) * 4:]
    sport, dport, ulen = struct.unpack_from("!HHH", udp)
    assert (sport, dport) == (5060, 5080)
    assert ulen == len(udp)
    assert frame.orig_len == frame.caplen == len(frame.data)


def test_build_frame_ipv6_addresses_are_zero():
    frame = build_frame((1, 2), b"x", Address("::1", 1), Address("::2", 2))
    eth = datalink_size(LinkType.EN10MB)
    assert frame.data[eth + 12:eth + 20] == bytes(8)


def test_hep2_layout():
    data = encode_hep2(_packet(), capture_id=7)
    version, hlen, family, proto, sport, dport = HEP2_HEADER.unpack_from(data)
    assert version == 2
    assert family == HEP_AF_INET
    assert proto == 17
    assert (sport, dport) == (5060, 5080)
    assert data[HEP2_HEADER.size:hlen] == (
        ipaddress.ip_address("10.0.0.1").packed + ipaddress.ip_address("10.0.0.2").packed
    )
    sec, usec, capture_id = HEP2_TIME.unpack_from(data, hlen)
    assert (sec, usec, capture_id) == (1700000000, 123456, 7)
    assert data[hlen + HEP2_TIME.size:] == PAYLOAD


def test_hep2_ipv6():
    data = encode_hep2(_packet(6, "2001:db8::1", "2001:db8::2"))
    hlen = data[1]
    assert data[2] == HEP_AF_INET6
    assert data[HEP2_HEADER.size:hlen] == (
        ipaddress.ip_address("2001:db8::1").packed + ipaddress.ip_address("2001:db8::2").packed
    )
    assert data.endswith(PAYLOAD)


def test_hep3_header_and_length():
    data = encode_hep3(_packet(), capture_id=3)
    assert data[:4] == HEP3_MAGIC
    assert struct.unpack_from("!H", data, 4)[0] == len(data)


def test_hep3_chunks_carry_packet_fields():
    data = encode_hep3(_packet(), capture_id=3)
    chunks = {ctype: value for vendor, ctype, value in _chunks(data)}
    assert all(vendor == 0 for vendor, _, _ in _chunks(data))
    assert chunks[ChunkType.FAMILY] == bytes([HEP_AF_INET])
    assert chunks[ChunkType.PROTO] == bytes([17])
    assert struct.unpack("!H", chunks[ChunkType.SRC_PORT])[0] == 5060
    assert struct.unpack("!H", chunks[ChunkType.DST_PORT])[0] == 5080
    assert struct.unpack("!I", chunks[ChunkType.TS_SEC])[0] == 1700000000
    assert struct.unpack("!I", chunks[ChunkType.TS_USEC])[0] == 123456
    assert struct.unpack("!I", chunks[ChunkType.CAPT_ID])[0] == 3
    assert chunks[ChunkType.SRC_IP4] == ipaddress.ip_address("10.0.0.1").packed
    assert chunks[ChunkType.DST_IP4] == ipaddress.ip_address("10.0.0.2").packed
    assert chunks[ChunkType.PAYLOAD] == PAYLOAD
    assert ChunkType.AUTH_KEY not in chunks


def test_hep3_payload_is_last_chunk():
    types = [ctype for _, ctype, _ in _chunks(encode_hep3(_packet()))]
    assert types[-1] == ChunkType.PAYLOAD


def test_hep3_with_password():
    password = "password"
    data = encode_hep3(_packet(), password=password)
    chunks = {ctype: value for _, ctype, value in _chunks(data)}
    assert chunks[ChunkType.AUTH_KEY] == password.encode()
    assert struct.unpack_from("!H", data, 4)[0] == len(data)


def test_hep3_ipv6_chunks():
    data = encode_hep3(_packet(6, "2001:db8::1", "2001:db8::2"))
    chunks = {ctype: value for _, ctype, value in _chunks(data)}
    assert chunks[ChunkType.FAMILY] == bytes([HEP_AF_INET6])
    assert chunks[ChunkType.SRC_IP6] == ipaddress.ip_address("2001:db8::1").packed
    assert chunks[ChunkType.DST_IP6] == ipaddress.ip_address("2001:db8::2").packed
    assert ChunkType.SRC_IP4 not in chunks


@pytest.mark.parametrize("encoder", [encode_hep2, encode_hep3])
def test_unsupported_ip_version(encoder):
    with pytest.raises(HepError):
        encoder(_packet(version=5))


@pytest.mark.parametrize("encoder", [encode_hep2, encode_hep3])
def test_packet_without_frames(encoder):
    with pytest.raises(HepError):
        encoder(_packet(frames=[]))


@pytest.mark.parametrize("encoder", [encode_hep2, encode_hep3])
def test_address_family_mismatch(encoder):
    with pytest.raises(HepError):
        encoder(_packet(version=4, src="2001:db8::1"))


def test_hep3_too_large():
    with pytest.raises(HepError):
        encode_hep3(_packet(payload=b"a" * 70000))