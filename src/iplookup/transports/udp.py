import logging
import socket
import time
from typing import List, NamedTuple, Optional, Tuple

from ..errors import ResolutionFailure, TransportFailure

logger = logging.getLogger(__name__)


class Endpoint(NamedTuple):
    """
    Brief: A resolved UDP destination.

    Inputs:
      - family: socket.AF_INET or socket.AF_INET6
      - sockaddr: address tuple as returned by getaddrinfo

    Outputs:
      - Endpoint instance
    """

    family: int
    sockaddr: Tuple

    def __str__(self) -> str:
        host, port = self.sockaddr[0], self.sockaddr[1]
        if self.family == socket.AF_INET6:
            return f"[{host}]:{port}"
        return f"{host}:{port}"


class UDPTransport:
    """
    Brief: Blocking UDP endpoint used by one lookup at a time.

    Inputs:
      - source_ip: optional local address to bind before the first send
      - recv_buffer: maximum datagram size accepted

    Outputs:
      - UDPTransport instance; use as a context manager or call close()

    Example:
        >>> with UDPTransport() as t:
        ...     ep = t.resolve('127.0.0.1', 3478)[0]
        ...     t.send(ep, b'\x00\x01')
        ...     t.receive(0.5)
    """

    def __init__(self, source_ip: Optional[str] = None, recv_buffer: int = 2048):
        self.source_ip = source_ip
        self.recv_buffer = int(recv_buffer)
        self._sock: Optional[socket.socket] = None
        self._target: Optional[Endpoint] = None

    def __enter__(self) -> "UDPTransport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def resolve(self, host: str, port: int) -> List[Endpoint]:
        """
        Brief: Resolve host/port to UDP endpoints in resolver order.

        Inputs:
          - host: hostname or literal address
          - port: UDP port

        Outputs:
          - list[Endpoint]; raises ResolutionFailure when nothing resolves
        """
        try:
            infos = socket.getaddrinfo(
                host, int(port), type=socket.SOCK_DGRAM, proto=socket.IPPROTO_UDP
            )
        except (OSError, UnicodeError) as e:
            raise ResolutionFailure(f"Invalid or unresolvable endpoint {host}:{port}: {e}")
        endpoints: List[Endpoint] = []
        for family, _type, _proto, _canon, sockaddr in infos:
            if family not in (socket.AF_INET, socket.AF_INET6):
                continue
            ep = Endpoint(family, tuple(sockaddr))
            if ep not in endpoints:
                endpoints.append(ep)
        if not endpoints:
            raise ResolutionFailure(f"Missing addresses in endpoint resolution: {host}:{port}")
        return endpoints

    def _socket_for(self, family: int) -> socket.socket:
        if self._sock is not None and self._sock.family == family:
            return self._sock
        self.close()
        s = socket.socket(family, socket.SOCK_DGRAM)
        try:
            if self.source_ip:
                s.bind((self.source_ip, 0))
        except OSError:
            s.close()
            raise
        self._sock = s
        return s

    def send(self, endpoint: Endpoint, data: bytes) -> None:
        """Send one datagram to endpoint; OS errors become TransportFailure."""
        try:
            s = self._socket_for(endpoint.family)
            s.sendto(data, endpoint.sockaddr)
        except OSError as e:
            raise TransportFailure(f"Failed to send to {endpoint}: {e}")
        self._target = endpoint

    def receive(self, timeout: float) -> Optional[bytes]:
        """
        Brief: Wait up to timeout seconds for a datagram from the last target.

        Inputs:
          - timeout: seconds, must be positive

        Outputs:
          - bytes, or None when the timeout expires

        Notes:
          - Datagrams from any other peer are dropped and the wait continues
            until the same deadline; the round is not cut short.
        """
        if self._sock is None or self._target is None:
            raise TransportFailure("receive called before send")
        deadline = time.monotonic() + max(0.0, float(timeout))
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            try:
                self._sock.settimeout(remaining)
                data, peer = self._sock.recvfrom(self.recv_buffer)
            except socket.timeout:
                return None
            except OSError as e:
                raise TransportFailure(f"Failed to receive STUN response: {e}")
            if tuple(peer[:2]) == tuple(self._target.sockaddr[:2]):
                return data
            logger.warning(
                "Response origin %s doesn't match request target %s", peer, self._target
            )

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None
