"""Discovery of the default gateway, its hardware address and interface addresses."""

from __future__ import annotations

import logging
import os
import re
import socket
import struct
from typing import Iterator, Optional, Tuple

log = logging.getLogger("get-gw")


class GatewayError(RuntimeError):
    """Raised when gateway or interface information cannot be obtained."""


AF_INET = 2
NETLINK_ROUTE = 0
NLMSG_ERROR = 2
NLMSG_DONE = 3
NLM_F_REQUEST = 0x1
NLM_F_MULTI = 0x2
NLM_F_DUMP = 0x300
RTM_GETROUTE = 26
RTM_GETNEIGH = 30
RTA_OIF = 4
RTA_GATEWAY = 5
NDA_DST = 1
NDA_LLADDR = 2
NUD_REACHABLE = 0x02
RT_TABLE_MAIN = 254
IFHWADDRLEN = 6
IFNAMSIZ = 16
SIOCGIFADDR = 0x8915
SIOCGIFHWADDR = 0x8927
GW_BUFFER_SIZE = 64000
ROUTE_BUFFER_SIZE = 8192

_NLMSG_HDR = struct.Struct("=IHHII")
_RTMSG = struct.Struct("=BBBBBBBBI")
_NDMSG = struct.Struct("=BBHiHBB")
_RTATTR = struct.Struct("=HH")
_IFREQ_SIZE = 40

_VPN_HINT = (
    " If you are using a VPN, supply the --iplayer flag"
    " (and provide an interface via -i)"
)


def _align(length: int) -> int:
    return (length + 3) & ~3


def parse_netlink_messages(data: bytes) -> Iterator[Tuple[int, int, bytes]]:
    """Yield ``(type, flags, payload)`` for each complete netlink message in ``data``."""
    offset = 0
    remaining = len(data)
    while remaining >= _NLMSG_HDR.size:
        length, msg_type, flags, _seq, _pid = _NLMSG_HDR.unpack_from(data, offset)
        if length < _NLMSG_HDR.size or length > remaining:
            break
        yield msg_type, flags, bytes(data[offset + _NLMSG_HDR.size : offset + length])
        step = _align(length)
        offset += step
        remaining -= step


def _attributes(payload: bytes, offset: int) -> Iterator[Tuple[int, bytes]]:
    while len(payload) - offset >= _RTATTR.size:
        rta_len, rta_type = _RTATTR.unpack_from(payload, offset)
        if rta_len < _RTATTR.size or rta_len > len(payload) - offset:
            break
        yield rta_type, payload[offset + _RTATTR.size : offset + rta_len]
        offset += _align(rta_len)


def parse_default_gateway(data: bytes) -> Tuple[str, Optional[int]]:
    """Find the first main-table IPv4 route with a gateway in a route dump.

    Returns the gateway address and the output interface index (None if absent).
    """
    oif: Optional[int] = None
    for _type, _flags, payload in parse_netlink_messages(data):
        if len(payload) < _RTMSG.size:
            continue
        family, table = payload[0], payload[4]
        if family != AF_INET or table != RT_TABLE_MAIN:
            continue
        gateway: Optional[str] = None
        for attr_type, value in _attributes(payload, _RTMSG.size):
            if attr_type == RTA_OIF and len(value) >= 4:
                oif = struct.unpack_from("=i", value)[0]
            elif attr_type == RTA_GATEWAY and len(value) >= 4:
                gateway = socket.inet_ntoa(value[:4])
        if gateway is not None:
            return gateway, oif
    raise GatewayError("unable to find default gateway")


def parse_neighbor_mac(data: bytes, gateway_ip: str) -> bytes:
    """Find the hardware address of ``gateway_ip`` in a neighbour table dump."""
    target = socket.inet_aton(gateway_ip)
    for _type, _flags, payload in parse_netlink_messages(data):
        if not payload or payload[0] != AF_INET:
            raise GatewayError("unexpected address family in neighbour table")
        mac: Optional[bytes] = None
        correct_ip = False
        for attr_type, value in _attributes(payload, _NDMSG.size):
            if attr_type == NDA_LLADDR:
                if len(value) != IFHWADDRLEN:
                    raise GatewayError(
                        f"Unexpected hardware address length ({len(value)})." + _VPN_HINT
                    )
                mac = value
            elif attr_type == NDA_DST:
                if len(value) != 4:
                    raise GatewayError(
                        f"Unexpected IP address length ({len(value)})." + _VPN_HINT
                    )
                if value == target:
                    correct_ip = True
        if correct_ip and mac is not None:
            return bytes(mac)
    raise GatewayError(f"no hardware address found for {gateway_ip}")


def _open_request(msg_type: int, seq: int, payload: bytes) -> socket.socket:
    family = getattr(socket, "AF_NETLINK", None)
    if family is None:
        raise GatewayError("netlink sockets are not available on this platform")
    try:
        sock = socket.socket(family, socket.SOCK_DGRAM, NETLINK_ROUTE)
    except OSError as exc:
        raise GatewayError(f"unable to get socket: {exc.strerror}") from exc
    header = _NLMSG_HDR.pack(
        _NLMSG_HDR.size + len(payload),
        msg_type,
        NLM_F_DUMP | NLM_F_REQUEST,
        seq,
        os.getpid(),
    )
    try:
        sock.send(header + payload)
    except OSError as exc:
        sock.close()
        raise GatewayError(f"failure sending: {exc.strerror}") from exc
    return sock


def _read_netlink(sock: socket.socket, bufsize: int) -> bytes:
    chunks = []
    total = 0
    while True:
        try:
            chunk = sock.recv(bufsize - total)
        except OSError as exc:
            raise GatewayError(f"recv failed: {exc.strerror}") from exc
        if len(chunk) < _NLMSG_HDR.size:
            raise GatewayError("recv failed")
        length, msg_type, flags, _seq, _pid = _NLMSG_HDR.unpack_from(chunk)
        if length < _NLMSG_HDR.size or length > len(chunk) or msg_type == NLMSG_ERROR:
            raise GatewayError("recv failed")
        if msg_type == NLMSG_DONE:
            break
        chunks.append(chunk)
        total += len(chunk)
        if not flags & NLM_F_MULTI:
            break
    data = b"".join(chunks)
    if not data:
        raise GatewayError("empty netlink response")
    return data


def get_default_iface() -> str:
    """Name of the first non-loopback network interface."""
    try:
        interfaces = socket.if_nameindex()
    except OSError:
        interfaces = []
    for _index, name in interfaces:
        if not re.fullmatch(r"lo\d*", name):
            return name
    raise GatewayError(
        "could not detect default network interface (e.g. eth0). "
        "Try running as root or setting interface using -i flag."
    )


def get_default_gateway() -> Tuple[str, str]:
    """Return the default gateway address and the name of its interface."""
    with _open_request(RTM_GETROUTE, 0, bytes(_RTMSG.size)) as sock:
        data = _read_netlink(sock, ROUTE_BUFFER_SIZE)
    gateway, oif = parse_default_gateway(data)
    iface = ""
    if oif:
        try:
            iface = socket.if_indextoname(oif)
        except OSError:
            iface = ""
    return gateway, iface


def check_default_gateway(iface: str) -> str:
    """Return the default gateway, requiring that it is reached through ``iface``."""
    gateway, gw_iface = get_default_gateway()
    if iface != gw_iface:
        raise GatewayError(
            f"interface specified ({iface}) does not match the interface of the "
            f"default gateway ({gw_iface}). You will need to manually specify the "
            "MAC address of your gateway."
        )
    return gateway


def get_hw_addr(gateway_ip: str, iface: str) -> bytes:
    """Look up the hardware address of ``gateway_ip`` in the neighbour table."""
    try:
        ifindex = socket.if_nametoindex(iface)
    except OSError:
        ifindex = 0
    request = _NDMSG.pack(AF_INET, 0, 0, ifindex, NUD_REACHABLE, 0, NDA_LLADDR)
    with _open_request(RTM_GETNEIGH, 1, request) as sock:
        data = _read_netlink(sock, GW_BUFFER_SIZE)
    return parse_neighbor_mac(data, gateway_ip)


def _ifreq(iface: str, max_len: int) -> bytes:
    name = iface.encode()[:max_len].ljust(IFNAMSIZ, b"\0")
    return name + struct.pack("=H", AF_INET) + bytes(_IFREQ_SIZE - IFNAMSIZ - 2)


def get_iface_ip(iface: str) -> str:
    """IPv4 address assigned to ``iface``."""
    import fcntl

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as exc:
        raise GatewayError(f"failure opening socket: {exc.strerror}") from exc
    with sock:
        try:
            result = fcntl.ioctl(sock.fileno(), SIOCGIFADDR, _ifreq(iface, IFNAMSIZ - 1))
        except OSError as exc:
            raise GatewayError(f"ioctl failure: {exc.strerror}") from exc
    return socket.inet_ntoa(result[20:24])


def get_iface_hw_addr(iface: str) -> bytes:
    """Hardware address of ``iface``; all zeros if the interface has none."""
    import fcntl

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as exc:
        raise GatewayError(f"Unable to open socket: {exc.strerror}") from exc
    request = _ifreq(iface, IFNAMSIZ)
    with sock:
        try:
            result = fcntl.ioctl(sock.fileno(), SIOCGIFHWADDR, request)
        except OSError as exc:
            log.debug("SIOCGIFHWADDR failed for %s: %s", iface, exc)
            result = bytes(_IFREQ_SIZE)
    return bytes(result[18:24])