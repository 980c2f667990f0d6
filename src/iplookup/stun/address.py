"""MAPPED-ADDRESS and XOR-MAPPED-ADDRESS attribute handling.

Brief:
  Decodes the reflexive transport address from a parsed Binding Response and
  builds the same attribute values for stub servers and tests.
"""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass
from typing import Union

from ..errors import NoAddressAttribute, TruncatedAttribute, UnsupportedFamily
from .codec import (
    ATTR_MAPPED_ADDRESS,
    ATTR_XOR_MAPPED_ADDRESS,
    ATTR_XOR_MAPPED_ADDRESS_LEGACY,
    MAGIC_COOKIE,
    MAGIC_COOKIE_BYTES,
    StunMessage,
)

FAMILY_IPV4 = 0x01
FAMILY_IPV6 = 0x02

_ADDRESS_WIDTH = {FAMILY_IPV4: 4, FAMILY_IPV6: 16}
_ADDR_PREFIX = struct.Struct("!xBH")

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class MappedAddress:
    """Public transport address reported by the server."""

    family: int
    port: int
    address: IPAddress

    def __str__(self) -> str:
        if self.family == FAMILY_IPV6:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


def xor_bytes(data: bytes, key: bytes) -> bytes:
    """
    Brief: XOR data with key byte-for-byte. Applying it twice is a no-op.

    Inputs:
      - data: bytes to transform
      - key: at least len(data) bytes

    Outputs:
      - bytes of len(data)
    """
    if len(key) < len(data):
        raise ValueError("xor key shorter than data")
    return bytes(a ^ b for a, b in zip(data, key))


def _xor_key(family: int, transaction_id: bytes) -> bytes:
    if family == FAMILY_IPV6:
        return MAGIC_COOKIE_BYTES + bytes(transaction_id)
    return MAGIC_COOKIE_BYTES


def _family_for(address: IPAddress) -> int:
    return FAMILY_IPV6 if address.version == 6 else FAMILY_IPV4


def encode_mapped_address(address: Union[str, IPAddress], port: int) -> bytes:
    """Build a plain MAPPED-ADDRESS value for address/port."""
    ip = ipaddress.ip_address(address)
    return _ADDR_PREFIX.pack(_family_for(ip), port) + ip.packed


def encode_xor_mapped_address(
    address: Union[str, IPAddress], port: int, transaction_id: bytes
) -> bytes:
    """
    Brief: Build an XOR-MAPPED-ADDRESS value.

    Inputs:
      - address: IPv4 or IPv6 address
      - port: 0-65535
      - transaction_id: 12-byte id of the request being answered

    Outputs:
      - bytes: attribute value without the attribute header
    """
    ip = ipaddress.ip_address(address)
    family = _family_for(ip)
    xport = port ^ (MAGIC_COOKIE >> 16)
    return _ADDR_PREFIX.pack(family, xport) + xor_bytes(
        ip.packed, _xor_key(family, transaction_id)
    )


def decode_address_value(
    value: bytes, transaction_id: bytes, xored: bool
) -> MappedAddress:
    """
    Brief: Decode a (XOR-)MAPPED-ADDRESS attribute value.

    Inputs:
      - value: attribute value bytes
      - transaction_id: id of the request, needed for IPv6 XOR
      - xored: True for XOR-MAPPED-ADDRESS encodings

    Outputs:
      - MappedAddress; raises UnsupportedFamily or TruncatedAttribute
    """
    if len(value) < _ADDR_PREFIX.size:
        raise TruncatedAttribute(f"address attribute too short: {len(value)} bytes")
    family, port = _ADDR_PREFIX.unpack_from(value, 0)
    width = _ADDRESS_WIDTH.get(family)
    if width is None:
        raise UnsupportedFamily(family)
    if len(value) != _ADDR_PREFIX.size + width:
        raise TruncatedAttribute(
            f"address attribute length {len(value)}, expected {_ADDR_PREFIX.size + width}"
        )
    raw = value[_ADDR_PREFIX.size :]
    if xored:
        port ^= MAGIC_COOKIE >> 16
        raw = xor_bytes(raw, _xor_key(family, transaction_id))
    return MappedAddress(family, port, ipaddress.ip_address(raw))


def extract_mapped_address(
    message: StunMessage, transaction_id: bytes
) -> MappedAddress:
    """
    Brief: Pull the public address out of a Binding Success Response.

    Inputs:
      - message: parsed response
      - transaction_id: id of the request

    Outputs:
      - MappedAddress

    Notes:
      - XOR-MAPPED-ADDRESS wins over MAPPED-ADDRESS regardless of order.
    """
    for attr_type in (ATTR_XOR_MAPPED_ADDRESS, ATTR_XOR_MAPPED_ADDRESS_LEGACY):
        attr = message.find(attr_type)
        if attr is not None:
            return decode_address_value(attr.value, transaction_id, xored=True)
    attr = message.find(ATTR_MAPPED_ADDRESS)
    if attr is not None:
        return decode_address_value(attr.value, transaction_id, xored=False)
    raise NoAddressAttribute(
        "no XOR-MAPPED-ADDRESS or MAPPED-ADDRESS attribute in response"
    )
