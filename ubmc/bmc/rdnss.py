"""Recursive DNS server options from IPv6 router advertisements."""

from __future__ import annotations

import ipaddress
import logging
import socket
import struct
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterator, List, Optional, Tuple

log = logging.getLogger(__name__)

ND_ROUTER_ADVERT = 134
ND_OPT_RDNSS = 25

NETLINK_ROUTE = 0
RTNLGRP_ND_USEROPT = 20
RTM_NEWNDUSEROPT = 68
AF_INET6 = 10

# family, pad, opts_len, ifindex, icmp_type, icmp_code, 6 bytes of padding
_USEROPT_MSG = struct.Struct("<BxHIBB6x")
# type, length in 8-byte units, pad
_USEROPT_HDR = struct.Struct(">BBxx")
_NLMSG_HDR = struct.Struct("=IHHII")
_RDNSS_MIN_LENGTH = 24
_ADDRESS_LENGTH = 16


@dataclass
class RDNSSOption:
    """A recursive DNS server option: its servers and how long they are valid."""

    lifetime: timedelta
    servers: List[ipaddress.IPv6Address] = field(default_factory=list)


@dataclass
class NDUserOpt:
    """A neighbour discovery user option message from the kernel."""

    family: int
    ifindex: int
    icmp_type: int
    icmp_code: int
    rdnss: List[RDNSSOption] = field(default_factory=list)


def parse_rdnss_option(data: bytes) -> RDNSSOption:
    """Decode one RDNSS option, header included."""
    if len(data) < _RDNSS_MIN_LENGTH:
        raise ValueError(f"RDNSS option too short {len(data)} < {_RDNSS_MIN_LENGTH}")
    (lifetime,) = struct.unpack_from(">I", data, 4)
    body = data[8:]
    servers = [
        ipaddress.IPv6Address(body[start : start + _ADDRESS_LENGTH])
        for start in range(0, len(body) - _ADDRESS_LENGTH + 1, _ADDRESS_LENGTH)
    ]
    return RDNSSOption(timedelta(seconds=lifetime), servers)


def parse_nd_user_opt(data: bytes) -> Optional[NDUserOpt]:
    """Decode a neighbour discovery user option message.

    Returns None for a well-formed message that must be ignored, and raises
    ValueError for a malformed one.
    """
    if len(data) < _USEROPT_MSG.size:
        raise ValueError(f"message too short {len(data)} < {_USEROPT_MSG.size}")
    family, opts_len, ifindex, icmp_type, icmp_code = _USEROPT_MSG.unpack_from(data)
    result = NDUserOpt(family, ifindex, icmp_type, icmp_code)

    rest = data[_USEROPT_MSG.size :]
    if len(rest) < opts_len:
        raise ValueError(f"message too short for options, {len(rest)} < {opts_len}")
    rest = rest[:opts_len]

    while True:
        if len(rest) < _USEROPT_HDR.size:
            raise ValueError("message ran out while reading option header")
        opt_type, opt_units = _USEROPT_HDR.unpack_from(rest)
        length = opt_units << 3
        if length == 0:
            # A zero length option is invalid (RFC 4861), ignore the message
            return None
        if len(rest) < length:
            raise ValueError("message ran out while reading options")
        if opt_type == ND_OPT_RDNSS:
            result.rdnss.append(parse_rdnss_option(rest[:length]))
        rest = rest[length:]
        if len(rest) < _USEROPT_HDR.size:
            break
    return result


def _netlink_messages(data: bytes) -> Iterator[Tuple[int, bytes]]:
    offset = 0
    while offset + _NLMSG_HDR.size <= len(data):
        length, msg_type, _flags, _seq, _pid = _NLMSG_HDR.unpack_from(data, offset)
        if length < _NLMSG_HDR.size or offset + length > len(data):
            return
        yield msg_type, data[offset + _NLMSG_HDR.size : offset + length]
        offset += (length + 3) & ~3


def watch_rdnss() -> Iterator[RDNSSOption]:
    """Yield RDNSS options from router advertisements as the kernel reports them."""
    family = getattr(socket, "AF_NETLINK", None)
    if family is None:
        raise OSError("netlink sockets are not available on this system")
    with socket.socket(family, socket.SOCK_RAW, NETLINK_ROUTE) as sock:
        sock.bind((0, 1 << (RTNLGRP_ND_USEROPT - 1)))
        while True:
            data = sock.recv(65536)
            for msg_type, payload in _netlink_messages(data):
                if msg_type != RTM_NEWNDUSEROPT:
                    continue
                try:
                    opt = parse_nd_user_opt(payload)
                except ValueError as err:
                    log.warning("error processing nd user opt: %s", err)
                    continue
                if opt is None:
                    continue
                if opt.family != AF_INET6 or opt.icmp_code != 0:
                    continue
                if opt.icmp_type != ND_ROUTER_ADVERT:
                    continue
                yield from opt.rdnss