"""STUN (RFC 5389) message framing.

Brief:
  Builds Binding Request frames and parses received frames into StunMessage
  instances. All multi-byte fields are big-endian. Parsing never reads past
  the end of the buffer; any framing problem raises MalformedFrame.

Inputs:
  - transaction ids (12 bytes) and raw datagrams

Outputs:
  - bytes for outbound requests, StunMessage for inbound responses
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from ..errors import MalformedFrame, UnexpectedMessageType

MAGIC_COOKIE = 0x2112A442
MAGIC_COOKIE_BYTES = struct.pack("!I", MAGIC_COOKIE)
HEADER_SIZE = 20
TRANSACTION_ID_SIZE = 12

BINDING_REQUEST = 0x0001
BINDING_SUCCESS_RESPONSE = 0x0101
BINDING_ERROR_RESPONSE = 0x0111

ATTR_MAPPED_ADDRESS = 0x0001
ATTR_ERROR_CODE = 0x0009
ATTR_XOR_MAPPED_ADDRESS = 0x0020
# Pre-RFC 5389 servers (draft-ietf-behave-rfc3489bis) send this code instead.
ATTR_XOR_MAPPED_ADDRESS_LEGACY = 0x8020

_HEADER = struct.Struct("!HHI12s")
_ATTR_HEADER = struct.Struct("!HH")


@dataclass(frozen=True)
class Attribute:
    """A single attribute record with its value stripped of padding."""

    type: int
    value: bytes


@dataclass(frozen=True)
class StunMessage:
    """
    Brief: Parsed STUN frame.

    Inputs:
      - message_type: 16-bit message type code
      - transaction_id: 12-byte transaction id
      - attributes: attribute records in wire order

    Outputs:
      - StunMessage instance
    """

    message_type: int
    transaction_id: bytes
    attributes: Tuple[Attribute, ...] = ()

    def find(self, attr_type: int) -> Optional[Attribute]:
        """Return the first attribute of attr_type, or None."""
        for attr in self.attributes:
            if attr.type == attr_type:
                return attr
        return None


def padded_length(length: int) -> int:
    """Round length up to the next multiple of 4."""
    return (length + 3) & ~3


def read_u16(data: bytes, offset: int) -> int:
    """
    Brief: Read a big-endian unsigned 16-bit integer with a bounds check.

    Inputs:
      - data: buffer
      - offset: start offset

    Outputs:
      - int value; raises MalformedFrame when fewer than 2 bytes remain
    """
    if offset < 0 or offset + 2 > len(data):
        raise MalformedFrame(f"need 2 bytes at offset {offset}, have {len(data)}")
    return struct.unpack_from("!H", data, offset)[0]


def read_bytes(data: bytes, offset: int, length: int) -> bytes:
    """Slice length bytes at offset, raising MalformedFrame if out of range."""
    if offset < 0 or length < 0 or offset + length > len(data):
        raise MalformedFrame(
            f"need {length} bytes at offset {offset}, have {len(data)}"
        )
    return bytes(data[offset : offset + length])


def _check_transaction_id(transaction_id: bytes) -> bytes:
    tid = bytes(transaction_id)
    if len(tid) != TRANSACTION_ID_SIZE:
        raise ValueError(
            f"transaction id must be {TRANSACTION_ID_SIZE} bytes, got {len(tid)}"
        )
    return tid


def encode_attribute(attr_type: int, value: bytes) -> bytes:
    """Encode one attribute record including zero padding."""
    if len(value) > 0xFFFF:
        raise ValueError("attribute value too long")
    pad = padded_length(len(value)) - len(value)
    return _ATTR_HEADER.pack(attr_type, len(value)) + bytes(value) + b"\x00" * pad


def encode_message(
    message_type: int,
    transaction_id: bytes,
    attributes: Iterable[Attribute] = (),
) -> bytes:
    """
    Brief: Encode a complete STUN frame.

    Inputs:
      - message_type: 16-bit message type code
      - transaction_id: 12 bytes
      - attributes: Attribute records, written in order

    Outputs:
      - bytes: header followed by padded attributes

    Example:
      >>> len(encode_message(BINDING_REQUEST, b"\\x00" * 12))
      20
    """
    tid = _check_transaction_id(transaction_id)
    body = b"".join(encode_attribute(a.type, a.value) for a in attributes)
    if len(body) > 0xFFFF:
        raise ValueError("message body too long")
    return _HEADER.pack(message_type, len(body), MAGIC_COOKIE, tid) + body


def encode_binding_request(transaction_id: bytes) -> bytes:
    """
    Brief: Build a Binding Request with no attributes.

    Inputs:
      - transaction_id: 12 bytes, reused for every retry of one lookup

    Outputs:
      - bytes: 20-byte frame, deterministic for a given id
    """
    return encode_message(BINDING_REQUEST, transaction_id)


def parse_frame(data: bytes) -> StunMessage:
    """
    Brief: Parse the header and attribute records of any STUN frame.

    Inputs:
      - data: received datagram

    Outputs:
      - StunMessage; raises MalformedFrame on any framing error

    Notes:
      - The message type is not checked here so callers can look at the
        transaction id of a frame before deciding whether it is for them.
    """
    if len(data) < HEADER_SIZE:
        raise MalformedFrame(f"frame too short: {len(data)} bytes")
    message_type, length, cookie, transaction_id = _HEADER.unpack_from(data, 0)
    if message_type & 0xC000:
        raise MalformedFrame("leading bits of message type are not zero")
    if cookie != MAGIC_COOKIE:
        raise MalformedFrame(f"bad magic cookie 0x{cookie:08x}")
    available = len(data) - HEADER_SIZE
    if length > available:
        raise MalformedFrame(
            f"declared payload length {length} exceeds {available} available bytes"
        )
    if length != available:
        raise MalformedFrame(
            f"declared payload length {length} but {available} bytes follow header"
        )

    end = HEADER_SIZE + length
    offset = HEADER_SIZE
    attributes = []
    while offset < end:
        if offset + _ATTR_HEADER.size > end:
            raise MalformedFrame(f"truncated attribute header at offset {offset}")
        attr_type = read_u16(data, offset)
        attr_len = read_u16(data, offset + 2)
        value_start = offset + _ATTR_HEADER.size
        if value_start + attr_len > end:
            raise MalformedFrame(
                f"attribute 0x{attr_type:04x} length {attr_len} runs past end of frame"
            )
        attributes.append(Attribute(attr_type, read_bytes(data, value_start, attr_len)))
        # Some servers omit padding on the final attribute.
        offset = min(value_start + padded_length(attr_len), end)

    return StunMessage(message_type, bytes(transaction_id), tuple(attributes))


def _error_code_text(message: StunMessage) -> str:
    attr = message.find(ATTR_ERROR_CODE)
    if attr is None or len(attr.value) < 4:
        return ""
    code = (attr.value[2] & 0x07) * 100 + attr.value[3]
    reason = attr.value[4:].decode("utf-8", errors="replace")
    return " (error %s)" % f"{code} {reason}".strip()


def ensure_binding_success(message: StunMessage) -> StunMessage:
    """Raise UnexpectedMessageType unless message is a Binding Success Response."""
    if message.message_type != BINDING_SUCCESS_RESPONSE:
        detail = ""
        if message.message_type == BINDING_ERROR_RESPONSE:
            detail = _error_code_text(message)
        raise UnexpectedMessageType(
            message.message_type,
            f"unexpected message type 0x{message.message_type:04x}{detail}",
        )
    return message


def decode_message(data: bytes) -> StunMessage:
    """
    Brief: Parse a datagram that must be a Binding Success Response.

    Inputs:
      - data: received datagram

    Outputs:
      - StunMessage; raises MalformedFrame or UnexpectedMessageType
    """
    return ensure_binding_success(parse_frame(data))
