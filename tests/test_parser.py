import logging
import queue
import threading
import time

import pytest

from statsdpipe.core import Tags
from statsdpipe.lexer import Event, Metric, MetricType
from statsdpipe.parser import DatagramParser
from statsdpipe.receiver import Datagram

FAKE_IP = "127.0.0.1"


class CountingHandler:
    def __init__(self):
        self.metrics = []
        self.events = []
        self._lock = threading.Lock()

    def dispatch_metrics(self, metrics):
        with self._lock:
            self.metrics.extend(metrics)

    def dispatch_event(self, event):
        with self._lock:
            self.events.append(event)


def new_test_parser(ignore_host):
    handler = CountingHandler()
    return DatagramParser(handler, "", ignore_host, 0), handler


def counter(name, value, **kwargs):
    return Metric(name=name, value=value, type=MetricType.COUNTER, rate=1.0, **kwargs)


@pytest.mark.parametrize("datagram", [b"", b"\n", b"\n\n"])
def test_parse_empty_datagram(datagram):
    parser, handler = new_test_parser(False)
    metrics, events, _ = parser.handle_datagram(0, "", datagram)
    assert metrics == []
    assert events == 0
    assert handler.events == []
    assert handler.metrics == []


PARSE_CASES = {
    "f:2|c": ([counter("f", 2, source_ip=FAKE_IP)], []),
    "f:2|c\n": ([counter("f", 2, source_ip=FAKE_IP)], []),
    "f:2|c|#t": ([counter("f", 2, source_ip=FAKE_IP, tags=Tags(["t"]))], []),
    "f:2|c|#host:h": ([counter("f", 2, source_ip=FAKE_IP, tags=Tags(["host:h"]))], []),
    "f:2|c\nx:3|c": ([counter("f", 2, source_ip=FAKE_IP), counter("x", 3, source_ip=FAKE_IP)], []),
    "f:2|c\nx:3|c\n": ([counter("f", 2, source_ip=FAKE_IP), counter("x", 3, source_ip=FAKE_IP)], []),
    "_e{1,1}:a|b\nf:6|c": (
        [counter("f", 6, source_ip=FAKE_IP)],
        [Event(title="a", text="b", source_ip=FAKE_IP)],
    ),
}


@pytest.mark.parametrize("datagram", sorted(PARSE_CASES))
def test_parse_datagram(datagram):
    expected_metrics, expected_events = PARSE_CASES[datagram]
    parser, handler = new_test_parser(False)
    metrics, _, _ = parser.handle_datagram(0, FAKE_IP, datagram.encode())
    handler.dispatch_metrics(metrics)
    for event in handler.events:
        assert event.date_happened > 0
        event.date_happened = 0
    assert handler.events == expected_events
    assert handler.metrics == expected_metrics


IGNORE_HOST_CASES = {
    "f:2|c": ([counter("f", 2)], []),
    "f:2|c\n": ([counter("f", 2)], []),
    "f:2|c|#t": ([counter("f", 2, tags=Tags(["t"]))], []),
    "f:2|c|#host:h": ([counter("f", 2, hostname="h")], []),
    "f:2|c|#host:h1,host:h2": ([counter("f", 2, hostname="h1", tags=Tags(["host:h2"]))], []),
    "f:2|c\nx:3|c": ([counter("f", 2), counter("x", 3)], []),
    "f:2|c\nx:3|c\n": ([counter("f", 2), counter("x", 3)], []),
    "_e{1,1}:a|b\nf:6|c": (
        [counter("f", 6)],
        [Event(title="a", text="b", source_ip=FAKE_IP)],
    ),
}


@pytest.mark.parametrize("datagram", sorted(IGNORE_HOST_CASES))
def test_parse_datagram_ignore_host(datagram):
    expected_metrics, expected_events = IGNORE_HOST_CASES[datagram]
    parser, handler = new_test_parser(True)
    metrics, _, _ = parser.handle_datagram(0, FAKE_IP, datagram.encode())
    for event in handler.events:
        assert event.date_happened > 0
        event.date_happened = 0
    handler.dispatch_metrics(metrics)
    assert handler.events == expected_events
    assert handler.metrics == expected_metrics


def test_handle_datagram_counts_bad_lines_and_events():
    parser, handler = new_test_parser(False)
    metrics, events, bad = parser.handle_datagram(
        5, FAKE_IP, b"garbage\n_e{1,1}:a|b\nf:1|g\n\n_x{1,1}:a|b"
    )
    assert [m.name for m in metrics] == ["f"]
    assert metrics[0].timestamp == 5
    assert events == 1
    assert bad == 3
    assert len(handler.events) == 1


def test_event_date_kept_when_given():
    parser, handler = new_test_parser(False)
    parser.handle_datagram(0, FAKE_IP, b"_e{1,1}:a|b|d:123123")
    assert handler.events[0].date_happened == 123123


def test_namespace_applied():
    handler = CountingHandler()
    parser = DatagramParser(handler, "stats")
    metric, event = parser.parse_line(b"foo.bar.baz:2|c")
    assert event is None
    assert metric.name == "stats.foo.bar.baz"


def test_process_batch_dispatches_and_counts():
    parser, handler = new_test_parser(False)
    done_calls = []
    batch = [
        Datagram(ip=FAKE_IP, msg=b"f:2|c\nbad", timestamp=7, done=lambda: done_calls.append(1)),
        Datagram(ip=FAKE_IP, msg=b"_e{1,1}:a|b\nx:3|c", timestamp=7, done=lambda: done_calls.append(2)),
    ]
    result = parser.process_batch(batch)
    assert done_calls == [1, 2]
    assert [m.name for m in result] == ["f", "x"]
    assert handler.metrics == result
    assert parser.counters() == {
        "parser.metrics_received": 2,
        "parser.events_received": 1,
        "parser.bad_lines_seen": 1,
    }


def test_process_batch_without_metrics_does_not_dispatch():
    parser, handler = new_test_parser(False)
    parser.process_batch([Datagram(ip=FAKE_IP, msg=b"bad", timestamp=0)])
    assert handler.metrics == []
    assert parser.counters()["parser.bad_lines_seen"] == 1


def test_run_processes_queue_until_stopped():
    parser, handler = new_test_parser(False)
    source = queue.Queue()
    stop = threading.Event()
    source.put([Datagram(ip=FAKE_IP, msg=b"f:2|c", timestamp=0)])
    thread = threading.Thread(target=parser.run, args=(source, stop))
    thread.start()
    deadline = time.monotonic() + 2
    while not handler.metrics and time.monotonic() < deadline:
        time.sleep(0.01)
    stop.set()
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert handler.metrics == [counter("f", 2, source_ip=FAKE_IP)]


def test_bad_lines_not_logged_without_rate(caplog):
    parser, _ = new_test_parser(False)
    with caplog.at_level(logging.INFO, logger="statsdpipe.parser"):
        parser.handle_datagram(0, FAKE_IP, b"bad")
    assert [r for r in caplog.records if r.name == "statsdpipe.parser"] == []


def test_bad_lines_logged_with_rate(caplog):
    parser = DatagramParser(CountingHandler(), "", False, 1000.0)
    with caplog.at_level(logging.INFO, logger="statsdpipe.parser"):
        parser.handle_datagram(0, FAKE_IP, b"bad")
    records = [r for r in caplog.records if r.name == "statsdpipe.parser"]
    assert len(records) == 1
    assert FAKE_IP in records[0].getMessage()