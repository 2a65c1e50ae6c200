import socket
from collections import namedtuple
from unittest.mock import patch

import pytest

from sngcap.address import ADDRESSLEN, Address, is_local_address, parse_address

FakeAddr = namedtuple("FakeAddr", "family address netmask broadcast ptp")


def _ifaces():
    return {
        "lo": [FakeAddr(socket.AF_INET, "127.0.0.1", None, None, None)],
        "eth0": [
            FakeAddr(socket.AF_INET, "192.0.2.10", None, None, None),
            FakeAddr(socket.AF_INET6, "fe80::1%eth0", None, None, None),
        ],
    }


def test_parse_address_basic():
    assert parse_address("10.0.0.1:5060") == Address("10.0.0.1", 5060)


def test_parse_address_trailing_garbage_after_port():
    assert parse_address("10.0.0.1:5061abc") == Address("10.0.0.1", 5061)


@pytest.mark.parametrize("text", ["10.0.0.1", ":5060", "10.0.0.1:", "10.0.0.1:abc", ""])
def test_parse_address_invalid(text):
    with pytest.raises(ValueError):
        parse_address(text)


def test_parse_address_too_long():
    with pytest.raises(ValueError):
        parse_address("1" * (ADDRESSLEN + 1) + ":5060")


def test_parse_address_none():
    with pytest.raises(ValueError):
        parse_address(None)


def test_equality_includes_port():
    assert Address("10.0.0.1", 5060) != Address("10.0.0.1", 5061)
    assert Address("10.0.0.1", 5060) == Address("10.0.0.1", 5060)


def test_same_host_ignores_port():
    a = Address("10.0.0.1", 5060)
    assert a.same_host(Address("10.0.0.1", 5080))
    assert not a.same_host(Address("10.0.0.2", 5060))


def test_str_round_trip():
    a = Address("192.0.2.5", 5060)
    assert parse_address(str(a)) == a


@patch("sngcap.address.psutil.net_if_addrs", side_effect=_ifaces)
def test_is_local_address_ipv4(_mock):
    assert is_local_address(Address("192.0.2.10", 0))
    assert is_local_address(Address("127.0.0.1", 5060))
    assert not is_local_address(Address("198.51.100.1", 0))


@patch("sngcap.address.psutil.net_if_addrs", side_effect=_ifaces)
def test_is_local_address_ipv6_scope_stripped(_mock):
    assert is_local_address(Address("fe80::1", 0))