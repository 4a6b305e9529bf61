"""Checks on the addresses of network links."""

from __future__ import annotations

import ipaddress
from typing import Union

_LINK_LOCAL_PREFIX = bytes((0xFE, 0x80, 0, 0, 0, 0, 0, 0))


def is_link_local_for_mac(
    address: Union[bytes, bytearray, ipaddress.IPv6Address],
    hardware_address: Union[bytes, bytearray],
) -> bool:
    """Tell whether an IPv6 address is the EUI-64 link-local one of a MAC."""
    if isinstance(address, ipaddress.IPv6Address):
        address = address.packed
    hw = bytes(hardware_address)
    if len(hw) < 6:
        raise ValueError(f"hardware address too short: {len(hw)} bytes")
    interface_id = bytearray((hw[0], hw[1], hw[2], 0xFF, 0xFE, hw[3], hw[4], hw[5]))
    interface_id[0] ^= 0x2
    return _LINK_LOCAL_PREFIX + bytes(interface_id) == bytes(address)