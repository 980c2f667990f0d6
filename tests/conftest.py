"""
Brief: Global pytest configuration and shared STUN test helpers.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'iplookup' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from iplookup.stun.address import (  # noqa: E402
    encode_mapped_address,
    encode_xor_mapped_address,
)
from iplookup.stun.codec import (  # noqa: E402
    ATTR_MAPPED_ADDRESS,
    ATTR_XOR_MAPPED_ADDRESS,
    BINDING_SUCCESS_RESPONSE,
    Attribute,
    encode_message,
    parse_frame,
)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


@pytest.fixture(autouse=True)
def restore_root_logging():
    """
    Brief: Undo init_logging() handler changes made by a test.

    Inputs:
      - None

    Outputs:
      - None
    """
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


def binding_response(request, address="203.0.113.7", port=0, xor=True, tid=None):
    """
    Brief: Build a Binding Success Response answering request bytes.

    Inputs:
      - request: encoded Binding Request (its transaction id is echoed)
      - address, port: mapped address to report
      - xor: use XOR-MAPPED-ADDRESS instead of MAPPED-ADDRESS
      - tid: override the echoed transaction id

    Outputs:
      - bytes: response datagram
    """
    tid = tid if tid is not None else parse_frame(request).transaction_id
    if xor:
        attr = Attribute(ATTR_XOR_MAPPED_ADDRESS, encode_xor_mapped_address(address, port, tid))
    else:
        attr = Attribute(ATTR_MAPPED_ADDRESS, encode_mapped_address(address, port))
    return encode_message(BINDING_SUCCESS_RESPONSE, tid, [attr])


class FakeTransport:
    """
    Brief: Scripted in-memory transport for driving lookup() without sockets.

    Inputs:
      - responder: callable(request_bytes, attempt_number) -> list of replies,
        each reply being bytes or None (a timeout); a missing reply list means
        the round times out
      - endpoints: what resolve() returns

    Outputs:
      - FakeTransport recording sends, receive timeouts and simulated time
    """

    def __init__(self, responder=None, endpoints=("E",)):
        self.responder = responder or (lambda request, attempt: [])
        self.endpoints = list(endpoints)
        self.sent = []
        self.timeouts = []
        self.resolved = []
        self.now = 0.0
        self._pending = []

    def clock(self):
        return self.now

    def resolve(self, host, port):
        self.resolved.append((host, port))
        return list(self.endpoints)

    def send(self, endpoint, data):
        self.sent.append((endpoint, data))
        self._pending = list(self.responder(data, len(self.sent)) or [])

    def receive(self, timeout):
        self.timeouts.append(timeout)
        if self._pending:
            reply = self._pending.pop(0)
            if reply is not None:
                return reply
        self.now += timeout
        return None


@pytest.fixture
def fake_transport():
    """Return the FakeTransport class for tests to instantiate."""
    return FakeTransport
