"""Exception hierarchy for public address lookups.

Brief:
  Fatal errors (resolution, transport) end a lookup immediately. Protocol
  errors describe a single bad response and are absorbed by the retry loop in
  iplookup.client; only Exhausted, Cancelled or a fatal error reach callers.
"""

from __future__ import annotations

from typing import Optional


class LookupFailure(Exception):
    """Base class for every error raised by a lookup."""

    pass


class ResolutionFailure(LookupFailure):
    """
    Brief: The server host could not be resolved to any UDP endpoint.

    Inputs:
      - message: description including the host that failed

    Outputs:
      - Exception instance
    """

    pass


class TransportFailure(LookupFailure):
    """
    Brief: Sending or receiving on the UDP endpoint failed with an OS error.

    Inputs:
      - message: description of the failed socket operation

    Outputs:
      - Exception instance
    """

    pass


class ProtocolError(LookupFailure):
    """A received datagram could not be turned into an address."""

    pass


class MalformedFrame(ProtocolError):
    """The datagram is not a well-formed STUN frame."""

    pass


class UnexpectedMessageType(ProtocolError):
    """
    Brief: The frame is valid but is not a Binding Success Response.

    Inputs:
      - message_type: received 16-bit message type code

    Outputs:
      - Exception instance carrying message_type for diagnostics
    """

    def __init__(self, message_type: int, message: Optional[str] = None) -> None:
        self.message_type = message_type
        super().__init__(message or f"unexpected message type 0x{message_type:04x}")


class NoAddressAttribute(ProtocolError):
    """The response carries neither XOR-MAPPED-ADDRESS nor MAPPED-ADDRESS."""

    pass


class UnsupportedFamily(ProtocolError):
    """
    Brief: The mapped address family is neither IPv4 (0x01) nor IPv6 (0x02).

    Inputs:
      - family: received family tag

    Outputs:
      - Exception instance carrying family
    """

    def __init__(self, family: int) -> None:
        self.family = family
        super().__init__(f"unsupported address family 0x{family:02x}")


class TruncatedAttribute(ProtocolError):
    """The address attribute length does not match its family's width."""

    pass


class Exhausted(LookupFailure):
    """
    Brief: No usable response arrived before the time budget ran out.

    Inputs:
      - rounds: number of send/wait rounds performed
      - elapsed: cumulative seconds spent waiting

    Outputs:
      - Exception instance
    """

    def __init__(self, rounds: int, elapsed: float, target: str = "") -> None:
        self.rounds = rounds
        self.elapsed = elapsed
        suffix = f" from {target}" if target else ""
        super().__init__(
            f"Timed out waiting for response{suffix} "
            f"after {rounds} attempts ({elapsed:g}s)"
        )


class Cancelled(LookupFailure):
    """The caller's cancel event was set while the lookup was in progress."""

    pass
