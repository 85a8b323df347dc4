"""Lexer for statsd metric lines and Datadog-style event lines."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from statsdpipe.core import UNKNOWN_IP, Tags


class MetricType(enum.Enum):
    """Kind of a statsd metric."""

    COUNTER = "counter"
    TIMER = "timer"
    GAUGE = "gauge"
    SET = "set"


class Priority(enum.Enum):
    """Priority of an event."""

    NORMAL = "normal"
    LOW = "low"


class AlertType(enum.Enum):
    """Alert type of an event."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


@dataclass
class Metric:
    """A single raw metric, before aggregation."""

    name: str = ""
    value: float = 0.0
    string_value: str = ""
    type: MetricType = MetricType.COUNTER
    rate: float = 1.0
    tags: Tags = field(default_factory=Tags)
    hostname: str = ""
    source_ip: str = UNKNOWN_IP
    timestamp: int = 0


@dataclass
class Event:
    """A single event."""

    title: str = ""
    text: str = ""
    date_happened: int = 0
    hostname: str = ""
    aggregation_key: str = ""
    source_type_name: str = ""
    tags: Tags = field(default_factory=Tags)
    source_ip: str = UNKNOWN_IP
    priority: Priority = Priority.NORMAL
    alert_type: AlertType = AlertType.INFO


class LexError(ValueError):
    """A line could not be parsed."""


class MissingKeySeparator(LexError):
    def __init__(self, message: str = "missing key separator") -> None:
        super().__init__(message)


class EmptyKey(LexError):
    def __init__(self, message: str = "key zero len") -> None:
        super().__init__(message)


class MissingValueSeparator(LexError):
    def __init__(self, message: str = "missing value separator") -> None:
        super().__init__(message)


class InvalidType(LexError):
    def __init__(self, message: str = "invalid type") -> None:
        super().__init__(message)


class InvalidFormat(LexError):
    def __init__(self, message: str = "invalid format") -> None:
        super().__init__(message)


class InvalidSamplingOrTags(LexError):
    def __init__(self, message: str = "invalid sampling or tags") -> None:
        super().__init__(message)


class InvalidAttributes(LexError):
    def __init__(self, message: str = "invalid event attributes") -> None:
        super().__init__(message)


class Overflow(LexError):
    def __init__(self, message: str = "overflow") -> None:
        super().__init__(message)


class NotEnoughData(LexError):
    def __init__(self, message: str = "not enough data") -> None:
        super().__init__(message)


class NaNValue(LexError):
    def __init__(self, message: str = "invalid value NaN") -> None:
        super().__init__(message)


# Input is assumed to hold no NUL bytes; a NUL reads like the end of input.
_EOF = 0

_MAX_UINT32 = 2**32 - 1
_MAX_UINT64 = 2**64 - 1
_MAX_INT64 = 2**63 - 1

_KEY_CHARS = frozenset(b"abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.-_")

_METRIC_TYPES = {
    ord("c"): MetricType.COUNTER,
    ord("g"): MetricType.GAUGE,
    ord("h"): MetricType.TIMER,
    ord("s"): MetricType.SET,
}

_PRIORITIES = {b"low": Priority.LOW, b"normal": Priority.NORMAL}

_ALERT_TYPES = {
    b"error": AlertType.ERROR,
    b"warning": AlertType.WARNING,
    b"success": AlertType.SUCCESS,
    b"info": AlertType.INFO,
}

_INF_SPELLINGS = {"inf", "+inf", "-inf", "infinity", "+infinity", "-infinity"}


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _parse_float(raw: bytes) -> float:
    """Parse a float strictly: no surrounding spaces, no digit separators."""
    text = _decode(raw)
    if not text or text != text.strip() or "_" in text:
        raise LexError(f"invalid float syntax: {text!r}")
    try:
        value = float(text)
    except ValueError:
        unsigned = text.lstrip("+-").lower()
        if unsigned.startswith("0x") and "p" in unsigned:
            try:
                value = float.fromhex(text)
            except (ValueError, OverflowError) as exc:
                raise LexError(f"invalid float syntax: {text!r}") from exc
        else:
            raise LexError(f"invalid float syntax: {text!r}") from None
    if math.isinf(value) and text.lower() not in _INF_SPELLINGS:
        raise LexError(f"float value out of range: {text!r}")
    return value


class _Lexer:
    def __init__(self, data: bytes, namespace: str) -> None:
        self.data = data
        self.length = len(data)
        self.pos = 0
        self.namespace = namespace
        self.tags = Tags()
        self.sampling = 1.0

    def next(self) -> int:
        if self.pos >= self.length:
            return _EOF
        b = self.data[self.pos]
        self.pos += 1
        return b

    def expect(self, wanted: str) -> None:
        if self.next() != ord(wanted):
            raise InvalidFormat()

    def run(self) -> Tuple[Optional[Metric], Optional[Event]]:
        first = self.next()
        if first == ord("_"):
            return None, self.event()
        if first == _EOF:
            raise InvalidType()
        self.pos -= 1
        return self.metric(), None

    # metrics

    def metric(self) -> Metric:
        name = self.key()
        if self.namespace:
            name = f"{self.namespace}.{name}"

        value_start = self.pos
        while True:
            b = self.next()
            if b == ord("|"):
                break
            if b == _EOF:
                raise MissingValueSeparator()
        raw_value = self.data[value_start:self.pos - 1]

        metric_type = self.metric_type()

        b = self.next()
        if b == ord("|"):
            self.sample_rate_or_tags()
        elif b != _EOF:
            raise InvalidType()

        metric = Metric(name=name, type=metric_type, rate=self.sampling, tags=self.tags)
        if metric_type is MetricType.SET:
            metric.string_value = _decode(raw_value)
        else:
            value = _parse_float(raw_value)
            if math.isnan(value):
                raise NaNValue()
            metric.value = value
        return metric

    def key(self) -> str:
        name = bytearray()
        while True:
            b = self.next()
            if b == ord(":"):
                break
            if b == _EOF:
                raise MissingKeySeparator()
            if b == ord("/"):
                name.append(ord("-"))
            elif b in (ord(" "), ord("\t")):
                name.append(ord("_"))
            elif b in _KEY_CHARS:
                name.append(b)
        if not name:
            raise EmptyKey()
        return name.decode("ascii")

    def metric_type(self) -> MetricType:
        b = self.next()
        if b == ord("m"):
            if self.next() != ord("s"):
                raise InvalidType()
            return MetricType.TIMER
        try:
            return _METRIC_TYPES[b]
        except KeyError:
            raise InvalidType() from None

    def sample_rate_or_tags(self) -> None:
        b = self.next()
        if b == ord("#"):
            self.read_tags()
            return
        if b != ord("@"):
            raise InvalidSamplingOrTags()

        start = self.pos
        while True:
            b = self.next()
            if b == ord("|"):
                break
            if b == _EOF:
                self.pos += 1
                break
        self.sampling = _parse_float(self.data[start:self.pos - 1])
        if self.pos >= self.length:
            return
        self.expect("#")
        self.read_tags()

    def read_tags(self) -> None:
        rest = self.data[self.pos:]
        self.tags.extend(_decode(tag) for tag in rest.split(b",") if tag)
        self.pos = self.length

    # events

    def uint(self) -> int:
        start = self.pos
        value = 0
        while True:
            b = self.next()
            if ord("0") <= b <= ord("9"):
                value = value * 10 + (b - ord("0"))
                if value > _MAX_UINT64:
                    raise Overflow()
            elif b == _EOF:
                break
            else:
                self.pos -= 1
                break
        if start == self.pos:
            raise InvalidFormat()
        return value

    def uint32(self) -> int:
        value = self.uint()
        if value > _MAX_UINT32:
            raise Overflow()
        return value

    def until_pipe(self) -> bytes:
        idx = self.data.find(b"|", self.pos)
        end = self.length if idx == -1 else idx
        value = self.data[self.pos:end]
        self.pos = end
        return value

    def event(self) -> Event:
        if self.next() != ord("e"):
            raise InvalidType()
        self.expect("{")
        title_len = self.uint32()
        self.expect(",")
        text_len = self.uint32()
        self.expect("}")
        self.expect(":")

        event = Event(tags=self.tags)
        if self.length - self.pos < title_len + 1 + text_len:
            raise NotEnoughData()
        if self.data[self.pos + title_len] != ord("|"):
            raise InvalidFormat()
        event.title = _decode(self.data[self.pos:self.pos + title_len])
        self.pos += title_len + 1
        text = self.data[self.pos:self.pos + text_len].replace(b"\\n", b"\n")
        event.text = _decode(text)
        self.pos += text_len

        self.event_attributes(event)
        return event

    def event_attributes(self, event: Event) -> None:
        while True:
            b = self.next()
            if b == _EOF:
                return
            if b != ord("|"):
                raise InvalidAttributes()

            attr = self.next()
            if attr == ord("d"):
                self.expect(":")
                value = self.uint()
                if value > _MAX_INT64:
                    raise Overflow()
                event.date_happened = value
            elif attr == ord("h"):
                self.expect(":")
                event.hostname = _decode(self.until_pipe())
            elif attr == ord("k"):
                self.expect(":")
                event.aggregation_key = _decode(self.until_pipe())
            elif attr == ord("s"):
                self.expect(":")
                event.source_type_name = _decode(self.until_pipe())
            elif attr == ord("p"):
                self.expect(":")
                priority = _PRIORITIES.get(self.until_pipe())
                if priority is None:
                    raise InvalidAttributes()
                if priority is Priority.LOW:
                    event.priority = priority
            elif attr == ord("t"):
                self.expect(":")
                alert = _ALERT_TYPES.get(self.until_pipe())
                if alert is None:
                    raise InvalidAttributes()
                if alert is not AlertType.INFO:
                    event.alert_type = alert
            elif attr == ord("#"):
                self.read_tags()
                return
            elif attr == _EOF:
                return
            else:
                raise InvalidAttributes()


def parse_line(
    line: Union[bytes, bytearray, memoryview, str], namespace: str = ""
) -> Tuple[Optional[Metric], Optional[Event]]:
    """Parse one line into ``(metric, None)`` or ``(None, event)``.

    Raises a ``LexError`` subclass when the line is malformed.
    """
    data = line.encode("utf-8") if isinstance(line, str) else bytes(line)
    return _Lexer(data, namespace).run()