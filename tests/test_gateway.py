import socket
import struct
from unittest import mock

import pytest

from zscan.gateway import (
    AF_INET,
    NDA_DST,
    NDA_LLADDR,
    RT_TABLE_MAIN,
    RTA_GATEWAY,
    RTA_OIF,
    GatewayError,
    get_default_iface,
    parse_default_gateway,
    parse_neighbor_mac,
    parse_netlink_messages,
)

GW = "192.0.2.1"
OTHER = "192.0.2.77"
MAC = bytes([0x02, 0, 0, 0, 0, 0x01])
OTHER_MAC = bytes([0x02, 0, 0, 0, 0, 0x02])


def attr(kind, value):
    length = 4 + len(value)
    raw = struct.pack("=HH", length, kind) + value
    return raw + b"\0" * ((-len(raw)) % 4)


def message(msg_type, body, flags=2):
    raw = struct.pack("=IHHII", 16 + len(body), msg_type, flags, 0, 0) + body
    return raw + b"\0" * ((-len(raw)) % 4)


def route(attrs, family=AF_INET, table=RT_TABLE_MAIN):
    body = struct.pack("=BBBBBBBBI", family, 0, 0, 0, table, 0, 0, 0, 0)
    return message(24, body + b"".join(attrs))


def neighbor(attrs, family=AF_INET):
    body = struct.pack("=BBHiHBB", family, 0, 0, 3, 2, 0, 0)
    return message(28, body + b"".join(attrs))


def test_parse_netlink_messages_splits_and_stops_on_truncation():
    data = message(24, b"abcd", flags=2) + message(25, b"xyz", flags=0)
    parsed = list(parse_netlink_messages(data))
    assert parsed == [(24, 2, b"abcd"), (25, 0, b"xyz")]
    assert list(parse_netlink_messages(data[:10])) == []


def test_default_gateway_found():
    data = route([attr(RTA_OIF, struct.pack("=i", 7)), attr(RTA_GATEWAY, socket.inet_aton(GW))])
    assert parse_default_gateway(data) == (GW, 7)


def test_default_gateway_skips_other_tables_and_families():
    data = (
        route([attr(RTA_GATEWAY, socket.inet_aton(OTHER))], table=255)
        + route([attr(RTA_GATEWAY, socket.inet_aton(OTHER))], family=10)
        + route([attr(RTA_OIF, struct.pack("=i", 3))])
        + route([attr(RTA_GATEWAY, socket.inet_aton(GW))])
    )
    gateway, oif = parse_default_gateway(data)
    assert gateway == GW
    # the interface index seen on an earlier main-table route carries over
    assert oif == 3


def test_default_gateway_missing_raises():
    data = route([attr(RTA_OIF, struct.pack("=i", 2))])
    with pytest.raises(GatewayError):
        parse_default_gateway(data)


def test_neighbor_mac_matches_gateway():
    data = neighbor([attr(NDA_DST, socket.inet_aton(OTHER)), attr(NDA_LLADDR, OTHER_MAC)]) + neighbor(
        [attr(NDA_DST, socket.inet_aton(GW)), attr(NDA_LLADDR, MAC)]
    )
    assert parse_neighbor_mac(data, GW) == MAC


def test_neighbor_mac_not_found():
    data = neighbor([attr(NDA_DST, socket.inet_aton(OTHER)), attr(NDA_LLADDR, OTHER_MAC)])
    with pytest.raises(GatewayError, match="no hardware address"):
        parse_neighbor_mac(data, GW)


def test_neighbor_bad_hardware_length_raises():
    data = neighbor([attr(NDA_DST, socket.inet_aton(GW)), attr(NDA_LLADDR, b"\x01\x02\x03\x04")])
    with pytest.raises(GatewayError, match="Unexpected hardware address length"):
        parse_neighbor_mac(data, GW)


def test_neighbor_bad_ip_length_raises():
    data = neighbor([attr(NDA_DST, b"\x01\x02"), attr(NDA_LLADDR, MAC)])
    with pytest.raises(GatewayError, match="Unexpected IP address length"):
        parse_neighbor_mac(data, GW)


def test_neighbor_wrong_family_raises():
    data = neighbor([attr(NDA_DST, socket.inet_aton(GW)), attr(NDA_LLADDR, MAC)], family=10)
    with pytest.raises(GatewayError):
        parse_neighbor_mac(data, GW)


def test_default_iface_skips_loopback():
    with mock.patch("socket.if_nameindex", return_value=[(1, "lo"), (2, "eth0")]):
        assert get_default_iface() == "eth0"


def test_default_iface_none_available():
    with mock.patch("socket.if_nameindex", return_value=[(1, "lo")]):
        with pytest.raises(GatewayError, match="could not detect default network interface"):
            get_default_iface()