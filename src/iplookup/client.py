"""Public address lookup over STUN with exponential backoff.

Brief:
  lookup() drives one Binding transaction against one server: it sends the
  same request (same transaction id) once per round, waits with a timeout that
  doubles after every failed round and gives up once the total wait reaches
  the configured budget.

Inputs:
  - server address string and a transport implementing resolve/send/receive

Outputs:
  - MappedAddress on success; LookupFailure subclasses otherwise
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence

from .config.settings import LookupSettings, split_host_port
from .errors import (
    Cancelled,
    Exhausted,
    ProtocolError,
    ResolutionFailure,
    TransportFailure,
)
from .stun.address import MappedAddress, extract_mapped_address
from .stun.codec import (
    TRANSACTION_ID_SIZE,
    encode_binding_request,
    ensure_binding_success,
    parse_frame,
)

logger = logging.getLogger(__name__)

# Longest single wait while a cancel event is being watched.
CANCEL_POLL_INTERVAL = 0.1
# Budget left below this is treated as spent (float accumulation noise).
_BUDGET_EPSILON = 1e-6


class Transport(Protocol):
    """Socket operations the driver needs; see transports.udp.UDPTransport."""

    def resolve(self, host: str, port: int) -> Sequence[Any]: ...

    def send(self, endpoint: Any, data: bytes) -> None: ...

    def receive(self, timeout: float) -> Optional[bytes]: ...


@dataclass
class AttemptState:
    """Mutable per-lookup retry bookkeeping."""

    interval: float
    rounds: int = 0
    elapsed: float = 0.0


def new_transaction_id(rng: Optional[random.Random] = None) -> bytes:
    """Return TRANSACTION_ID_SIZE random bytes; uniqueness is all that matters."""
    source = rng or random
    return source.getrandbits(TRANSACTION_ID_SIZE * 8).to_bytes(
        TRANSACTION_ID_SIZE, "big"
    )


def next_interval(state: AttemptState, budget: float) -> Optional[float]:
    """
    Brief: Account for a failed round and compute the next wait.

    Inputs:
      - state: AttemptState whose current interval was just spent (mutated)
      - budget: total seconds allowed across all rounds

    Outputs:
      - float: next interval (doubled, shortened to what is left of the budget)
      - None: the budget is spent

    Example:
      >>> s = AttemptState(interval=16.0, rounds=5, elapsed=15.0)
      >>> next_interval(s, 31.0) is None
      True
    """
    state.elapsed += state.interval
    remaining = budget - state.elapsed
    if remaining <= _BUDGET_EPSILON:
        return None
    state.interval = min(state.interval * 2, remaining)
    return state.interval


def _send_first_reachable(
    transport: Transport, endpoints: Sequence[Any], request: bytes
) -> Any:
    last_error: Optional[TransportFailure] = None
    for endpoint in endpoints:
        try:
            transport.send(endpoint, request)
            return endpoint
        except TransportFailure as exc:
            logger.warning("Endpoint %s unreachable: %s", endpoint, exc)
            last_error = exc
    if last_error is None:
        raise TransportFailure("no endpoints to send to")
    raise last_error


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise Cancelled("lookup cancelled")


def _await_response(
    transport: Transport,
    transaction_id: bytes,
    interval: float,
    *,
    clock: Callable[[], float],
    cancel: Optional[threading.Event],
    debug: bool,
) -> Optional[MappedAddress]:
    """
    Brief: Wait out one round, returning the address or None if the round failed.

    Inputs:
      - transport: transport that sent the request
      - transaction_id: id of the request
      - interval: seconds this round may wait

    Outputs:
      - MappedAddress when a matching, valid response arrives
      - None on timeout or on a malformed/unexpected response

    Notes:
      - Responses carrying another transaction id are ignored and the wait
        resumes with whatever is left of this round.
    """
    deadline = clock() + interval
    while True:
        _check_cancel(cancel)
        remaining = deadline - clock()
        if remaining <= 0:
            return None
        wait = remaining if cancel is None else min(remaining, CANCEL_POLL_INTERVAL)
        data = transport.receive(wait)
        if data is None:
            if cancel is None:
                return None
            continue
        if debug:
            logger.debug("Received (%db): %s", len(data), data.hex())

        try:
            message = parse_frame(data)
        except ProtocolError as exc:
            logger.info("Discarding malformed response: %s", exc)
            return None
        if message.transaction_id != transaction_id:
            logger.info(
                "Ignoring response with transaction id %s (sent %s)",
                message.transaction_id.hex(),
                transaction_id.hex(),
            )
            continue
        try:
            ensure_binding_success(message)
            return extract_mapped_address(message, transaction_id)
        except ProtocolError as exc:
            logger.info("Unusable response: %s", exc)
            return None


def lookup(
    server: str,
    transport: Transport,
    *,
    settings: Optional[LookupSettings] = None,
    debug: bool = False,
    cancel: Optional[threading.Event] = None,
    rng: Optional[random.Random] = None,
    clock: Callable[[], float] = time.monotonic,
) -> MappedAddress:
    """
    Brief: Discover the public address of this host through one STUN server.

    Inputs:
      - server: 'host:port' (see split_host_port for accepted forms)
      - transport: resolve/send/receive implementation owned by this call
      - settings: LookupSettings (initial_interval, budget); defaults if None
      - debug: log outbound/inbound bytes and every computed interval
      - cancel: optional Event; when set, the lookup raises Cancelled
      - rng: random source for the transaction id
      - clock: monotonic clock used to track the time left in a round

    Outputs:
      - MappedAddress

    Raises:
      - ResolutionFailure, TransportFailure: fatal, no retry
      - Exhausted: no usable response within the budget
      - Cancelled: cancel event was set

    Example:
        >>> from iplookup.transports.udp import UDPTransport
        >>> with UDPTransport() as t:
        ...     addr = lookup('stun.l.google.com:19302', t)
        >>> print(addr.address)
    """
    settings = settings or LookupSettings()
    try:
        host, port = split_host_port(server)
    except ValueError as exc:
        raise ResolutionFailure(f"Invalid endpoint {server!r}: {exc}") from exc

    endpoints: List[Any] = list(transport.resolve(host, port))
    if not endpoints:
        raise ResolutionFailure(f"Missing addresses in endpoint resolution: {server}")

    transaction_id = new_transaction_id(rng)
    request = encode_binding_request(transaction_id)
    state = AttemptState(interval=settings.initial_interval)
    endpoint: Any = None

    while True:
        _check_cancel(cancel)
        state.rounds += 1
        if debug:
            logger.debug(
                "Sending attempt %d to %s (%db): %s",
                state.rounds,
                endpoint or endpoints[0],
                len(request),
                request.hex(),
            )
        if endpoint is None:
            endpoint = _send_first_reachable(transport, endpoints, request)
        else:
            transport.send(endpoint, request)

        result = _await_response(
            transport,
            transaction_id,
            state.interval,
            clock=clock,
            cancel=cancel,
            debug=debug,
        )
        if result is not None:
            logger.info("Discovered public address %s via %s", result, endpoint)
            return result

        spent = state.interval
        if next_interval(state, settings.budget) is None:
            logger.info("Timed out after %gs, giving up.", spent)
            raise Exhausted(state.rounds, state.elapsed, str(endpoint))
        logger.info("No usable response after %gs, trying %s again...", spent, endpoint)
        if debug:
            logger.debug(
                "Backoff interval now %gs (%gs of %gs budget used)",
                state.interval,
                state.elapsed,
                settings.budget,
            )
