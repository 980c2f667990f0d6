"""STUN Binding codec and mapped-address extraction."""

from .address import MappedAddress, extract_mapped_address
from .codec import StunMessage, decode_message, encode_binding_request

__all__ = [
    "MappedAddress",
    "StunMessage",
    "decode_message",
    "encode_binding_request",
    "extract_mapped_address",
]
