"""Splitting datagrams into lines and parsing them into metrics and events."""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from statsdpipe.core import Tags
from statsdpipe.lexer import Event, LexError, Metric, parse_line
from statsdpipe.receiver import Datagram

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class PipelineHandler(Protocol):
    """The next step of the pipeline that parsed metrics and events go to."""

    def dispatch_metrics(self, metrics: List[Metric]) -> None: ...

    def dispatch_event(self, event: Event) -> None: ...


class _RateLimiter:
    """Token bucket with a burst of one; a non-positive rate allows nothing."""

    def __init__(self, per_second: float) -> None:
        self._rate = float(per_second)
        self._tokens = 1.0
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def allow(self) -> bool:
        if self._rate <= 0:
            return False
        with self._lock:
            now = time.monotonic()
            self._tokens = min(1.0, self._tokens + (now - self._last) * self._rate)
            self._last = now
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False


class DatagramParser:
    """Parses batches of datagrams and hands metrics and events to a handler."""

    def __init__(
        self,
        handler: PipelineHandler,
        namespace: str = "",
        ignore_host: bool = False,
        bad_line_rate_limit_per_second: float = 0.0,
    ) -> None:
        self.handler = handler
        self.namespace = namespace
        self.ignore_host = ignore_host
        self._bad_line_limiter = _RateLimiter(bad_line_rate_limit_per_second)
        self._lock = threading.Lock()
        self._metrics_received = 0
        self._events_received = 0
        self._bad_lines = 0

    def counters(self) -> Dict[str, int]:
        """Totals of metrics, events and bad lines seen so far."""
        with self._lock:
            return {
                "parser.metrics_received": self._metrics_received,
                "parser.events_received": self._events_received,
                "parser.bad_lines_seen": self._bad_lines,
            }

    def parse_line(self, line: bytes) -> Tuple[Optional[Metric], Optional[Event]]:
        """Parse one line using the parser's namespace."""
        return parse_line(line, self.namespace)

    def _log_bad_line(self, line: bytes, ip: str, error: Exception) -> None:
        if self._bad_line_limiter.allow():
            logger.info("Error parsing line %r from %s: %s", line, ip, error)

    def _take_host_tag(self, metric: Metric) -> None:
        for idx, tag in enumerate(metric.tags):
            if tag.startswith("host:"):
                metric.hostname = tag[5:]
                if len(metric.tags) > 1:
                    del metric.tags[idx]
                else:
                    metric.tags = Tags()
                return

    def handle_datagram(self, now: int, ip: str, msg: bytes) -> Tuple[List[Metric], int, int]:
        """Parse every line of a datagram.

        Metrics are returned; events are dispatched to the handler straight away.
        Returns ``(metrics, event_count, bad_line_count)``.
        """
        lines = bytes(msg).split(b"\n")
        # A trailing newline is optional and does not start another line.
        if lines[-1] == b"":
            lines.pop()

        metrics: List[Metric] = []
        events = 0
        bad = 0
        for line in lines:
            try:
                metric, event = self.parse_line(line)
            except LexError as exc:
                self._log_bad_line(line, ip, exc)
                bad += 1
                continue
            if metric is not None:
                if self.ignore_host:
                    self._take_host_tag(metric)
                else:
                    metric.source_ip = ip
                metric.timestamp = now
                metrics.append(metric)
            elif event is not None:
                events += 1
                event.source_ip = ip
                if event.date_happened == 0:
                    event.date_happened = int(time.time())
                self.handler.dispatch_event(event)
        return metrics, events, bad

    def process_batch(self, datagrams: Iterable[Datagram]) -> List[Metric]:
        """Parse a batch of datagrams, dispatch its metrics and return them."""
        metrics: List[Metric] = []
        events = 0
        bad = 0
        for datagram in datagrams:
            parsed, event_count, bad_count = self.handle_datagram(
                datagram.timestamp, datagram.ip, datagram.msg
            )
            datagram.done()
            metrics.extend(parsed)
            events += event_count
            bad += bad_count
        if metrics:
            self.handler.dispatch_metrics(metrics)
        with self._lock:
            self._metrics_received += len(metrics)
            self._events_received += events
            self._bad_lines += bad
        return metrics

    def run(self, source: "queue.Queue[List[Datagram]]", stop: threading.Event) -> None:
        """Process batches from ``source`` until ``stop`` is set."""
        while not stop.is_set():
            try:
                batch = source.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            self.process_batch(batch)