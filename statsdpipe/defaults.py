"""Default settings, parameter names and command-line flags of the server."""

from __future__ import annotations

import argparse
import decimal
import logging
import math
import os
import re
import socket
from datetime import timedelta
from typing import Iterable, List

from statsdpipe.core import Tags

logger = logging.getLogger(__name__)

_CPU_COUNT = os.cpu_count() or 1

# Names of the default backends.
DEFAULT_BACKENDS = ["graphite"]
# Default number of socket reading workers.
DEFAULT_MAX_READERS = min(8, _CPU_COUNT)
# Default number of workers that aggregate metrics.
DEFAULT_MAX_WORKERS = _CPU_COUNT
# Default number of workers that parse datagrams into metrics.
DEFAULT_MAX_PARSERS = _CPU_COUNT
# Default list of applied percentiles.
DEFAULT_PERCENT_THRESHOLD = [90.0]
# Default list of additional tags.
DEFAULT_TAGS = Tags()
# Default list of additional tags on internal metrics.
DEFAULT_INTERNAL_TAGS = Tags()

STATSER_INTERNAL = "internal"
STATSER_LOGGING = "logging"
STATSER_NULL = "null"
STATSER_TAGGED = "tagged"

DEFAULT_MAX_CLOUD_REQUESTS = 10
DEFAULT_BURST_CLOUD_REQUESTS = DEFAULT_MAX_CLOUD_REQUESTS + 5
DEFAULT_EXPIRY_INTERVAL = timedelta(minutes=5)
DEFAULT_FLUSH_INTERVAL = timedelta(seconds=1)
DEFAULT_IGNORE_HOST = False
DEFAULT_METRICS_ADDR = ":8125"
DEFAULT_MAX_QUEUE_SIZE = 10000
DEFAULT_MAX_CONCURRENT_EVENTS = 1024
DEFAULT_CACHE_REFRESH_PERIOD = timedelta(minutes=1)
DEFAULT_CACHE_EVICT_AFTER_IDLE_PERIOD = timedelta(minutes=10)
DEFAULT_CACHE_TTL = timedelta(minutes=30)
DEFAULT_CACHE_NEGATIVE_TTL = timedelta(minutes=1)
DEFAULT_INTERNAL_NAMESPACE = "statsd"
DEFAULT_HEARTBEAT_ENABLED = False
DEFAULT_RECEIVE_BATCH_SIZE = 50
DEFAULT_ESTIMATED_TAGS = 4
DEFAULT_CONN_PER_READER = False
DEFAULT_STATSER_TYPE = STATSER_INTERNAL
DEFAULT_BAD_LINES_PER_MINUTE = 0
DEFAULT_SERVER_MODE = "standalone"

PARAM_BACKENDS = "backends"
PARAM_CLOUD_PROVIDER = "cloud-provider"
PARAM_MAX_CLOUD_REQUESTS = "max-cloud-requests"
PARAM_BURST_CLOUD_REQUESTS = "burst-cloud-requests"
PARAM_DEFAULT_TAGS = "default-tags"
PARAM_INTERNAL_TAGS = "internal-tags"
PARAM_INTERNAL_NAMESPACE = "internal-namespace"
PARAM_EXPIRY_INTERVAL = "expiry-interval"
PARAM_FLUSH_INTERVAL = "flush-interval"
PARAM_IGNORE_HOST = "ignore-host"
PARAM_MAX_READERS = "max-readers"
PARAM_MAX_PARSERS = "max-parsers"
PARAM_MAX_WORKERS = "max-workers"
PARAM_MAX_QUEUE_SIZE = "max-queue-size"
PARAM_MAX_CONCURRENT_EVENTS = "max-concurrent-events"
PARAM_ESTIMATED_TAGS = "estimated-tags"
PARAM_CACHE_REFRESH_PERIOD = "cloud-cache-refresh-period"
PARAM_CACHE_EVICT_AFTER_IDLE_PERIOD = "cloud-cache-evict-after-idle-period"
PARAM_CACHE_TTL = "cloud-cache-ttl"
PARAM_CACHE_NEGATIVE_TTL = "cloud-cache-negative-ttl"
PARAM_METRICS_ADDR = "metrics-addr"
PARAM_NAMESPACE = "namespace"
PARAM_STATSER_TYPE = "statser-type"
PARAM_PERCENT_THRESHOLD = "percent-threshold"
PARAM_HEARTBEAT_ENABLED = "heartbeat-enabled"
PARAM_RECEIVE_BATCH_SIZE = "receive-batch-size"
PARAM_CONN_PER_READER = "conn-per-reader"
PARAM_BAD_LINES_PER_MINUTE = "bad-lines-per-minute"
PARAM_SERVER_MODE = "server-mode"
PARAM_HOSTNAME = "hostname"

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART = re.compile(r"(\d*(?:\.\d*)?)(ns|us|\u00b5s|\u03bcs|ms|s|m|h)")


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


def _parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``300ms``, ``1h30m`` or ``-2.5s``."""
    body = text
    negative = False
    if body[:1] in ("+", "-"):
        negative = body[0] == "-"
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body:
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")

    total = decimal.Decimal(0)
    pos = 0
    for match in _DURATION_PART.finditer(body):
        number, unit = match.groups()
        if match.start() != pos or not any(ch.isdigit() for ch in number):
            raise argparse.ArgumentTypeError(f"invalid duration {text!r}")
        total += decimal.Decimal(number.rstrip(".") or "0") * _UNIT_NANOS[unit]
        pos = match.end()
    if pos != len(body):
        raise argparse.ArgumentTypeError(f"invalid duration {text!r}")

    nanos = int(total)
    if negative:
        nanos = -nanos
    return timedelta(microseconds=nanos / 1000)


def _format_duration(value: timedelta) -> str:
    seconds = value.total_seconds()
    return f"{seconds:g}s"


def get_host() -> str:
    """The host name of this machine, or an empty string if it is unavailable."""
    try:
        return socket.gethostname()
    except OSError as exc:
        logger.warning("Cannot get hostname: %s", exc)
        return ""


def to_string_slice(values: Iterable[float]) -> List[str]:
    """Format floats in plain decimal notation with the fewest digits that round-trip."""
    result = []
    for value in values:
        value = float(value)
        if math.isnan(value):
            result.append("NaN")
            continue
        if math.isinf(value):
            result.append("+Inf" if value > 0 else "-Inf")
            continue
        text = format(decimal.Decimal(repr(value)), "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        result.append(text)
    return result


def add_flags(parser: argparse.ArgumentParser) -> None:
    """Add the server's flags to an argument parser."""

    def string(name: str, default: str, help_text: str) -> None:
        parser.add_argument(f"--{name}", type=str, default=default, help=help_text)

    def integer(name: str, default: int, help_text: str) -> None:
        parser.add_argument(f"--{name}", type=int, default=default, help=help_text)

    def boolean(name: str, default: bool, help_text: str) -> None:
        parser.add_argument(
            f"--{name}", type=_parse_bool, nargs="?", const=True, default=default, help=help_text
        )

    def duration(name: str, default: timedelta, help_text: str) -> None:
        parser.add_argument(
            f"--{name}",
            type=_parse_duration,
            default=default,
            metavar="DURATION",
            help=f"{help_text} (default {_format_duration(default)})",
        )

    string(PARAM_CLOUD_PROVIDER, "", "If set, use the cloud provider to retrieve metadata about the sender")
    duration(PARAM_EXPIRY_INTERVAL, DEFAULT_EXPIRY_INTERVAL, "After how long do we expire metrics (0 to disable)")
    duration(PARAM_FLUSH_INTERVAL, DEFAULT_FLUSH_INTERVAL, "How often to flush metrics to the backends")
    boolean(PARAM_IGNORE_HOST, DEFAULT_IGNORE_HOST, "Ignore the source for populating the hostname field of metrics")
    integer(PARAM_MAX_READERS, DEFAULT_MAX_READERS, "Maximum number of socket readers")
    integer(PARAM_MAX_PARSERS, DEFAULT_MAX_PARSERS, "Maximum number of workers to parse datagrams into metrics")
    integer(PARAM_MAX_WORKERS, DEFAULT_MAX_WORKERS, "Maximum number of workers to process metrics")
    integer(PARAM_MAX_QUEUE_SIZE, DEFAULT_MAX_QUEUE_SIZE, "Maximum number of buffered metrics per worker")
    integer(PARAM_MAX_CONCURRENT_EVENTS, DEFAULT_MAX_CONCURRENT_EVENTS, "Maximum number of events sent concurrently")
    integer(
        PARAM_ESTIMATED_TAGS,
        DEFAULT_ESTIMATED_TAGS,
        "Estimated number of expected tags on an individual metric submitted externally",
    )
    duration(PARAM_CACHE_REFRESH_PERIOD, DEFAULT_CACHE_REFRESH_PERIOD, "Cloud cache refresh period")
    duration(PARAM_CACHE_EVICT_AFTER_IDLE_PERIOD, DEFAULT_CACHE_EVICT_AFTER_IDLE_PERIOD, "Idle cloud cache eviction period")
    duration(PARAM_CACHE_TTL, DEFAULT_CACHE_TTL, "Cloud cache TTL for successful lookups")
    duration(PARAM_CACHE_NEGATIVE_TTL, DEFAULT_CACHE_NEGATIVE_TTL, "Cloud cache TTL for failed lookups")
    string(PARAM_METRICS_ADDR, DEFAULT_METRICS_ADDR, "Address on which to listen for metrics")
    string(PARAM_NAMESPACE, "", "Namespace all metrics")
    string(PARAM_BACKENDS, " ".join(DEFAULT_BACKENDS), "Space separated list of backends")
    integer(PARAM_MAX_CLOUD_REQUESTS, DEFAULT_MAX_CLOUD_REQUESTS, "Maximum number of cloud provider requests per second")
    integer(PARAM_BURST_CLOUD_REQUESTS, DEFAULT_BURST_CLOUD_REQUESTS, "Burst number of cloud provider requests per second")
    string(PARAM_DEFAULT_TAGS, " ".join(DEFAULT_TAGS), "Space separated list of tags to add to all metrics")
    string(PARAM_INTERNAL_TAGS, " ".join(DEFAULT_INTERNAL_TAGS), "Space separated list of tags to add to internal metrics")
    string(PARAM_INTERNAL_NAMESPACE, DEFAULT_INTERNAL_NAMESPACE, 'Namespace for internal metrics, may be ""')
    string(PARAM_STATSER_TYPE, DEFAULT_STATSER_TYPE, "Statser type to be used for sending metrics")
    string(
        PARAM_PERCENT_THRESHOLD,
        " ".join(to_string_slice(DEFAULT_PERCENT_THRESHOLD)),
        "Space separated list of percentiles",
    )
    boolean(PARAM_HEARTBEAT_ENABLED, DEFAULT_HEARTBEAT_ENABLED, "Enables heartbeat")
    integer(PARAM_RECEIVE_BATCH_SIZE, DEFAULT_RECEIVE_BATCH_SIZE, "The number of datagrams to read in each receive batch")
    boolean(
        PARAM_CONN_PER_READER,
        DEFAULT_CONN_PER_READER,
        "Create a separate connection per reader (requires system support for reusing addresses)",
    )
    string(PARAM_SERVER_MODE, DEFAULT_SERVER_MODE, "The server mode to run in")
    string(PARAM_HOSTNAME, get_host(), "overrides the hostname of the server")