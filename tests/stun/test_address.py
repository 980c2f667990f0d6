"""
Brief: Tests for iplookup.stun.address extraction and XOR handling.

Inputs:
  - None

Outputs:
  - None
"""

import ipaddress
import struct

import pytest

from iplookup.errors import NoAddressAttribute, TruncatedAttribute, UnsupportedFamily
from iplookup.stun.address import (
    FAMILY_IPV4,
    FAMILY_IPV6,
    MappedAddress,
    decode_address_value,
    encode_mapped_address,
    encode_xor_mapped_address,
    extract_mapped_address,
    xor_bytes,
)
from iplookup.stun.codec import (
    ATTR_MAPPED_ADDRESS,
    ATTR_XOR_MAPPED_ADDRESS,
    ATTR_XOR_MAPPED_ADDRESS_LEGACY,
    BINDING_SUCCESS_RESPONSE,
    MAGIC_COOKIE_BYTES,
    Attribute,
    StunMessage,
    decode_message,
    encode_message,
)

TID = bytes.fromhex("b7e7a701bc34d686fa87dfae")

CASES = [
    ("203.0.113.7", 0),
    ("192.0.2.1", 32853),
    ("0.0.0.0", 65535),
    ("2001:db8:1234:5678:11:2233:4455:6677", 32853),
    ("::1", 3478),
]


def _response(*attrs):
    return decode_message(encode_message(BINDING_SUCCESS_RESPONSE, TID, list(attrs)))


@pytest.mark.parametrize("address,port", CASES)
def test_plain_and_xor_recover_triple(address, port):
    """
    Brief: Both encodings decode to the family/port/address they were built from.

    Inputs:
      - address, port: parametrized IPv4 and IPv6 cases

    Outputs:
      - None: Asserts MappedAddress equality for each encoding
    """
    ip = ipaddress.ip_address(address)
    family = FAMILY_IPV6 if ip.version == 6 else FAMILY_IPV4
    expected = MappedAddress(family, port, ip)

    plain = _response(Attribute(ATTR_MAPPED_ADDRESS, encode_mapped_address(address, port)))
    assert extract_mapped_address(plain, TID) == expected

    xored = _response(
        Attribute(ATTR_XOR_MAPPED_ADDRESS, encode_xor_mapped_address(address, port, TID))
    )
    assert extract_mapped_address(xored, TID) == expected


def test_rfc5769_ipv4_vector():
    """
    Brief: XOR-MAPPED-ADDRESS value from RFC 5769 section 2.2 decodes correctly.

    Inputs:
      - value for 192.0.2.1:32853

    Outputs:
      - None: Asserts decoded address and port
    """
    value = bytes.fromhex("0001a147e112a643")
    addr = decode_address_value(value, TID, xored=True)
    assert str(addr.address) == "192.0.2.1"
    assert addr.port == 32853
    assert encode_xor_mapped_address("192.0.2.1", 32853, TID) == value


def test_rfc5769_ipv6_vector():
    value = bytes.fromhex("0002a147" "0113a9fa a5d3f179bc25f4b5 bed2b9d9".replace(" ", ""))
    addr = decode_address_value(value, TID, xored=True)
    assert str(addr.address) == "2001:db8:1234:5678:11:2233:4455:6677"
    assert addr.port == 32853


def test_xor_is_self_inverse():
    key = MAGIC_COOKIE_BYTES + TID
    for data in (b"\x00" * 16, bytes(range(16)), b"\xcb\x00\x71\x07"):
        assert xor_bytes(xor_bytes(data, key), key) == data


def test_xor_key_too_short():
    with pytest.raises(ValueError):
        xor_bytes(b"\x00" * 5, b"\x00" * 4)


def test_xor_attribute_preferred_over_plain():
    """
    Brief: XOR-MAPPED-ADDRESS wins even when MAPPED-ADDRESS comes first.

    Inputs:
      - response with plain 10.0.0.1 followed by XOR 203.0.113.7

    Outputs:
      - None: Asserts the XOR value is returned
    """
    msg = _response(
        Attribute(ATTR_MAPPED_ADDRESS, encode_mapped_address("10.0.0.1", 1)),
        Attribute(ATTR_XOR_MAPPED_ADDRESS, encode_xor_mapped_address("203.0.113.7", 2, TID)),
    )
    addr = extract_mapped_address(msg, TID)
    assert str(addr.address) == "203.0.113.7"
    assert addr.port == 2


def test_legacy_xor_attribute_code():
    msg = _response(
        Attribute(0x8022, b"test"),
        Attribute(ATTR_XOR_MAPPED_ADDRESS_LEGACY, encode_xor_mapped_address("198.51.100.4", 9, TID)),
    )
    assert str(extract_mapped_address(msg, TID).address) == "198.51.100.4"


def test_no_address_attribute():
    with pytest.raises(NoAddressAttribute):
        extract_mapped_address(_response(Attribute(0x8022, b"srv")), TID)
    with pytest.raises(NoAddressAttribute):
        extract_mapped_address(StunMessage(BINDING_SUCCESS_RESPONSE, TID), TID)


def test_unsupported_family():
    value = struct.pack("!xBH", 0x03, 80) + b"\x01\x02\x03\x04"
    with pytest.raises(UnsupportedFamily) as exc_info:
        extract_mapped_address(_response(Attribute(ATTR_MAPPED_ADDRESS, value)), TID)
    assert exc_info.value.family == 0x03


@pytest.mark.parametrize(
    "value",
    [
        struct.pack("!xBH", FAMILY_IPV4, 80) + b"\x01\x02\x03",
        struct.pack("!xBH", FAMILY_IPV4, 80) + b"\x00" * 16,
        struct.pack("!xBH", FAMILY_IPV6, 80) + b"\x00" * 4,
        b"\x00\x01",
    ],
)
def test_truncated_attribute(value):
    with pytest.raises(TruncatedAttribute):
        extract_mapped_address(_response(Attribute(ATTR_XOR_MAPPED_ADDRESS, value)), TID)


def test_mapped_address_str():
    assert str(MappedAddress(FAMILY_IPV4, 80, ipaddress.ip_address("192.0.2.1"))) == "192.0.2.1:80"
    assert str(MappedAddress(FAMILY_IPV6, 80, ipaddress.ip_address("::1"))) == "[::1]:80"
