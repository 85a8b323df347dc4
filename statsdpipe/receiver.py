"""Reading datagrams from UDP sockets and passing them on in batches."""

from __future__ import annotations

import errno
import ipaddress
import logging
import queue
import socket
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from statsdpipe.core import UNKNOWN_IP, nano_now

logger = logging.getLogger(__name__)

# The IP packet size field is two bytes wide, so no datagram is larger.
PACKET_SIZE_UDP = 0xFFFF

_POLL_INTERVAL = 0.2
_DONTWAIT = getattr(socket, "MSG_DONTWAIT", 0)

SocketFactory = Callable[[], Any]


def _noop() -> None:
    return None


@dataclass
class Datagram:
    """A received datagram that has not been parsed yet."""

    ip: str
    msg: bytes
    timestamp: int
    done: Callable[[], None] = field(default=_noop)


def get_ip(addr: Any) -> str:
    """The source IP of a socket address, or the unknown IP if there is none."""
    if isinstance(addr, tuple) and addr and isinstance(addr[0], str):
        host = addr[0].split("%", 1)[0]
        try:
            ip = ipaddress.ip_address(host)
        except ValueError:
            ip = None
        if ip is not None:
            if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
                return str(ip.ipv4_mapped)
            return str(ip)
    logger.error("Cannot get source address %r of type %s", addr, type(addr).__name__)
    return UNKNOWN_IP


def _parse_address(address: str) -> Tuple[str, int]:
    host, sep, port_text = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"invalid port in address {address!r}")
    return host, port


def _bind_udp(host: str, port: int) -> socket.socket:
    if not host:
        sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            sock.bind(("::", port))
            return sock
        except OSError:
            sock.close()
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind(("", port))
        except OSError:
            sock.close()
            raise
        return sock

    family, kind, proto, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
    sock = socket.socket(family, kind, proto)
    try:
        sock.bind(sockaddr)
    except OSError:
        sock.close()
        raise
    return sock


def udp_socket_factory(metrics_addr: str) -> SocketFactory:
    """Bind one UDP socket now; the factory returns it, or raises the bind error."""
    try:
        host, port = _parse_address(metrics_addr)
        sock = _bind_udp(host, port)
        error = None
    except (OSError, ValueError) as exc:
        sock = None
        error = exc

    def factory() -> Any:
        if error is not None:
            raise error
        return sock

    return factory


class DatagramReceiver:
    """Reads datagrams from sockets and puts batches of them on a queue."""

    def __init__(
        self,
        out: "queue.Queue[List[Datagram]]",
        socket_factory: SocketFactory,
        num_readers: int,
        receive_batch_size: int,
    ) -> None:
        self._out = out
        self._socket_factory = socket_factory
        self._num_readers = num_readers
        self._batch_size = max(1, receive_batch_size)
        self._lock = threading.Lock()
        self._datagrams_received = 0
        self._batches_read = 0
        self._cumulative_datagrams = 0

    def take_metrics(self) -> Dict[str, float]:
        """Report receive statistics and reset the per-interval counters."""
        with self._lock:
            datagrams = self._datagrams_received
            batches = self._batches_read
            self._datagrams_received = 0
            self._batches_read = 0
            self._cumulative_datagrams += datagrams
            cumulative = self._cumulative_datagrams
        average = datagrams / batches if batches else 0.0
        return {
            "receiver.datagrams_received": float(cumulative),
            "receiver.avg_datagrams_in_batch": average,
        }

    def _read_batch(self, sock: Any) -> List[Tuple[bytes, Any]]:
        received = [sock.recvfrom(PACKET_SIZE_UDP)]
        if _DONTWAIT:
            while len(received) < self._batch_size:
                try:
                    received.append(sock.recvfrom(PACKET_SIZE_UDP, _DONTWAIT))
                except OSError:
                    break
        return received

    def receive(self, stop: threading.Event, sock: Any) -> None:
        """Read from ``sock`` and queue batches of datagrams until ``stop`` is set."""
        while not stop.is_set():
            try:
                received = self._read_batch(sock)
            except socket.timeout:
                continue
            except OSError as exc:
                if stop.is_set():
                    return
                if exc.errno != errno.EBADF:
                    logger.warning("Error reading from socket: %s", exc)
                continue

            now = nano_now()
            with self._lock:
                self._datagrams_received += len(received)
                self._batches_read += 1

            batch = [Datagram(ip=get_ip(addr), msg=data, timestamp=now) for data, addr in received]
            while True:
                if stop.is_set():
                    return
                try:
                    self._out.put(batch, timeout=_POLL_INTERVAL)
                    break
                except queue.Full:
                    continue

    def run(self, stop: threading.Event) -> None:
        """Start the readers, wait for ``stop``, then close the sockets and wait for the readers."""
        sockets = []
        threads = []
        for _ in range(self._num_readers):
            sock = self._socket_factory()
            sock.settimeout(_POLL_INTERVAL)
            sockets.append(sock)
            thread = threading.Thread(target=self.receive, args=(stop, sock), daemon=True)
            thread.start()
            threads.append(thread)

        stop.wait()

        closed = set()
        for sock in sockets:
            if id(sock) in closed:
                continue
            closed.add(id(sock))
            try:
                sock.close()
            except OSError as exc:
                logger.warning("Error closing socket: %s", exc)

        for thread in threads:
            thread.join()