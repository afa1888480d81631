from __future__ import annotations

from ipaddress import IPv4Address
from typing import Union

AddressLike = Union[IPv4Address, str, int]


def is_public(address: AddressLike) -> bool:
    """
    True unless the address is private, CGNAT, loopback, link-local,
    documentation (TEST-NET-1/2/3), multicast or reserved (first octet >= 224).
    """
    a, b, c, _ = IPv4Address(address).packed
    if a == 10 or a == 127 or a >= 224:
        return False
    if a == 100 and 64 <= b <= 127:
        return False
    if a == 169 and b == 254:
        return False
    if a == 172 and 16 <= b <= 31:
        return False
    if a == 192 and (b == 168 or (b == 0 and c == 2)):
        return False
    if a == 198 and b == 51 and c == 100:
        return False
    if a == 203 and b == 0 and c == 113:
        return False
    return True
