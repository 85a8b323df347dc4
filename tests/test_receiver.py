import errno
import queue
import socket
import threading
import time
from collections import deque

import pytest

from statsdpipe.receiver import (
    PACKET_SIZE_UDP,
    DatagramReceiver,
    get_ip,
    udp_socket_factory,
)

FAKE_ADDR = ("127.0.0.1", 8181)
FAKE_METRIC = b"foo.bar.baz:2|c"


class FakeSocket:
    def __init__(self, packets):
        self._packets = deque(packets)
        self._lock = threading.Lock()
        self.closed = False
        self.timeout = None
        self.sizes = []

    def settimeout(self, value):
        self.timeout = value

    def recvfrom(self, bufsize, flags=0):
        self.sizes.append(bufsize)
        if self.closed:
            raise OSError(errno.EBADF, "Bad file descriptor")
        with self._lock:
            if self._packets:
                return self._packets.popleft()
        if flags:
            raise BlockingIOError()
        time.sleep(0.01)
        raise socket.timeout()

    def close(self):
        self.closed = True


def run_receive(receiver, sock, out, expected_total):
    stop = threading.Event()
    thread = threading.Thread(target=receiver.receive, args=(stop, sock))
    thread.start()
    batches = []
    total = 0
    deadline = time.monotonic() + 2
    while total < expected_total and time.monotonic() < deadline:
        try:
            batch = out.get(timeout=0.1)
        except queue.Empty:
            continue
        batches.append(batch)
        total += len(batch)
    stop.set()
    thread.join(timeout=2)
    assert not thread.is_alive()
    return batches


def test_receive_single_datagram():
    out = queue.Queue(1)
    receiver = DatagramReceiver(out, None, 0, 2)
    sock = FakeSocket([(FAKE_METRIC, FAKE_ADDR)])
    batches = run_receive(receiver, sock, out, 1)
    assert len(batches) == 1
    assert len(batches[0]) == 1
    datagram = batches[0][0]
    assert datagram.ip == FAKE_ADDR[0]
    assert datagram.msg == FAKE_METRIC
    assert datagram.timestamp > 0
    assert all(size == PACKET_SIZE_UDP for size in sock.sizes)


def test_receive_respects_batch_size_and_order():
    out = queue.Queue()
    receiver = DatagramReceiver(out, None, 0, 2)
    messages = [f"m{i}:1|c".encode() for i in range(5)]
    sock = FakeSocket([(m, FAKE_ADDR) for m in messages])
    batches = run_receive(receiver, sock, out, len(messages))
    assert all(1 <= len(batch) <= 2 for batch in batches)
    assert [d.msg for batch in batches for d in batch] == messages


def test_take_metrics_reports_and_resets():
    out = queue.Queue()
    receiver = DatagramReceiver(out, None, 0, 2)
    sock = FakeSocket([(FAKE_METRIC, FAKE_ADDR)])
    run_receive(receiver, sock, out, 1)
    first = receiver.take_metrics()
    assert first["receiver.datagrams_received"] == 1.0
    assert first["receiver.avg_datagrams_in_batch"] == 1.0
    second = receiver.take_metrics()
    assert second["receiver.datagrams_received"] == 1.0
    assert second["receiver.avg_datagrams_in_batch"] == 0.0


def test_run_reads_and_closes_sockets():
    out = queue.Queue()
    sock = FakeSocket([(FAKE_METRIC, FAKE_ADDR)])
    receiver = DatagramReceiver(out, lambda: sock, 2, 4)
    stop = threading.Event()
    thread = threading.Thread(target=receiver.run, args=(stop,))
    thread.start()
    batch = out.get(timeout=2)
    stop.set()
    thread.join(timeout=3)
    assert not thread.is_alive()
    assert [d.msg for d in batch] == [FAKE_METRIC]
    assert sock.closed
    assert sock.timeout is not None


def test_run_raises_when_socket_cannot_be_created():
    def factory():
        raise OSError("no socket")

    receiver = DatagramReceiver(queue.Queue(), factory, 1, 1)
    with pytest.raises(OSError):
        receiver.run(threading.Event())


def test_get_ip_ipv4():
    assert get_ip(("10.0.0.1", 80)) == "10.0.0.1"


def test_get_ip_ipv4_mapped_ipv6():
    assert get_ip(("::ffff:10.0.0.1", 80, 0, 0)) == "10.0.0.1"


def test_get_ip_unknown():
    assert get_ip("not an address") == ""
    assert get_ip(("not-an-ip", 80)) == ""


def test_udp_socket_factory_shares_socket_and_receives():
    factory = udp_socket_factory("127.0.0.1:0")
    sock = factory()
    try:
        assert factory() is sock
        port = sock.getsockname()[1]
        sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sender.sendto(FAKE_METRIC, ("127.0.0.1", port))
        finally:
            sender.close()
        sock.settimeout(2)
        data, addr = sock.recvfrom(PACKET_SIZE_UDP)
        assert data == FAKE_METRIC
        assert get_ip(addr) == "127.0.0.1"
    finally:
        sock.close()


def test_udp_socket_factory_reports_bad_address_on_call():
    factory = udp_socket_factory("no-port")
    with pytest.raises(ValueError):
        factory()
    with pytest.raises(ValueError):
        factory()