import pytest

from sngcap.address import Address
from sngcap.packet import (
    Frame,
    LinkType,
    Packet,
    PacketType,
    datalink_size,
)


@pytest.mark.parametrize(
    "link,size",
    [
        (LinkType.EN10MB, 14),
        (LinkType.IEEE802, 22),
        (LinkType.NULL, 4),
        (LinkType.LOOP, 4),
        (LinkType.SLIP, 16),
        (LinkType.PPP_ETHER, 4),
        (LinkType.RAW, 0),
        (LinkType.FDDI, 21),
        (LinkType.ENC, 12),
        (LinkType.NFLOG, 4),
        (LinkType.LINUX_SLL, 16),
        (LinkType.LINUX_SLL2, 20),
        (LinkType.IPNET, 24),
    ],
)
def test_datalink_size(link, size):
    assert datalink_size(link) == size


def test_datalink_size_accepts_plain_int():
    assert datalink_size(int(LinkType.EN10MB)) == datalink_size(LinkType.EN10MB)


def test_datalink_size_unknown():
    with pytest.raises(ValueError):
        datalink_size(9999)


def test_every_link_type_has_a_size():
    for link in LinkType:
        assert datalink_size(link) >= 0


def test_frame_orig_len_defaults_to_data_length():
    frame = Frame(b"abcdef", 1, 2)
    assert frame.orig_len == frame.caplen == len(b"abcdef")


def test_frame_explicit_orig_len():
    frame = Frame(b"abc", orig_len=1500)
    assert frame.orig_len == 1500
    assert frame.caplen == 3


def _packet():
    return Packet(4, 17, Address("10.0.0.1", 5060), Address("10.0.0.2", 5060))


def test_add_frame_and_timestamp():
    pkt = _packet()
    pkt.add_frame(Frame(b"x", 100, 5))
    pkt.add_frame(Frame(b"y", 50, 1))
    assert len(pkt.frames) == 2
    assert pkt.timestamp() == (100, 5)


def test_timestamp_without_frames_raises():
    with pytest.raises(ValueError):
        _packet().timestamp()


def test_clone_is_independent():
    pkt = _packet()
    pkt.add_frame(Frame(b"x", 1, 1))
    pkt.type = PacketType.SIP_UDP
    pkt.payload = b"INVITE"
    copy = pkt.clone()
    copy.add_frame(Frame(b"y", 2, 2))
    copy.payload = b"BYE"
    assert len(pkt.frames) == 1
    assert pkt.payload == b"INVITE"
    assert copy.type is PacketType.SIP_UDP
    assert copy.src == pkt.src and copy.dst == pkt.dst


def test_new_packets_do_not_share_frames():
    a = _packet()
    b = _packet()
    a.add_frame(Frame(b"x"))
    assert b.frames == []