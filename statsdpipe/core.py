"""Core value types: tags, timestamps, sets, timers and timer sub-metric switches."""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

# Key used to tag metrics with the origin IP address.
STATSD_SOURCE_ID = "s"

# IP of an unknown source.
UNKNOWN_IP = ""


class Tags(list):
    """A list of tags, each either ``key:value`` or a bare ``tag``."""

    def __str__(self) -> str:
        return ",".join(self)

    def sorted_string(self) -> str:
        """Sort the tags in place and return them comma-separated."""
        self.sort()
        return str(self)

    def concat(self, additional: Iterable[str]) -> "Tags":
        """Return new tags holding these followed by ``additional``."""
        result = Tags(self)
        result.extend(additional)
        return result

    def copy(self) -> "Tags":
        """Return an independent copy of the tags."""
        return Tags(self)


def normalize_tag_key(key: str) -> str:
    """Clean up the key of a tag."""
    return key.replace(":", "_")


def nano_now() -> int:
    """Nanoseconds elapsed since the Unix epoch."""
    return time.time_ns()


def nano_max(t1: int, t2: int) -> int:
    """The later of two nanosecond timestamps."""
    return t1 if t1 > t2 else t2


def _copy_tags(tags: Optional[Iterable[str]]) -> Optional[Tags]:
    return None if tags is None else Tags(tags)


@dataclass
class TimerSubtypes:
    """Switches for disabling individual timer sub-metrics."""

    lower: bool = False
    lower_pct: bool = False
    upper: bool = False
    upper_pct: bool = False
    count: bool = False
    count_pct: bool = False
    count_per_second: bool = False
    mean: bool = False
    mean_pct: bool = False
    median: bool = False
    std_dev: bool = False
    sum: bool = False
    sum_pct: bool = False
    sum_squares: bool = False
    sum_squares_pct: bool = False


@dataclass
class Set:
    """Aggregated values of a set metric."""

    values: set = field(default_factory=set)
    timestamp: int = 0
    hostname: str = ""
    tags: Optional[Tags] = None


def new_set(timestamp: int, values: set, hostname: str, tags: Optional[Iterable[str]]) -> Set:
    """Create a set, copying its tags."""
    return Set(values=values, timestamp=timestamp, hostname=hostname, tags=_copy_tags(tags))


def _delete_child(metrics: dict, key: str, tags_key: str) -> None:
    children = metrics.get(key)
    if children is not None:
        children.pop(tags_key, None)


def _each(metrics: dict) -> Iterator[tuple]:
    for name, children in metrics.items():
        for tags_key, value in children.items():
            yield name, tags_key, value


class Sets(dict):
    """Sets keyed by metric name and tags key."""

    def metrics_name(self) -> str:
        """Name of the aggregated metrics collection."""
        return "Sets"

    def delete(self, key: str) -> None:
        """Remove a metric name and everything under it."""
        self.pop(key, None)

    def delete_child(self, key: str, tags_key: str) -> None:
        """Remove the entry for ``tags_key`` under metric ``key``."""
        _delete_child(self, key, tags_key)

    def has_children(self, key: str) -> bool:
        """Whether any entries remain under metric ``key``."""
        return bool(self.get(key))

    def each(self) -> Iterator[tuple]:
        """Yield ``(metric_name, tags_key, set)`` for every entry."""
        return _each(self)


@dataclass
class Timer:
    """Aggregated values of a timer metric."""

    count: int = 0
    sampled_count: float = 0.0
    per_second: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0
    std_dev: float = 0.0
    sum: float = 0.0
    sum_squares: float = 0.0
    values: list = field(default_factory=list)
    percentiles: list = field(default_factory=list)
    timestamp: int = 0
    hostname: str = ""
    tags: Optional[Tags] = None


def new_timer(timestamp: int, values: list, hostname: str, tags: Optional[Iterable[str]]) -> Timer:
    """Create a timer, copying its tags; the sampled count is the number of values."""
    return Timer(
        values=values,
        timestamp=timestamp,
        hostname=hostname,
        tags=_copy_tags(tags),
        sampled_count=float(len(values)),
    )


def new_timer_values(values: list) -> Timer:
    """Create a timer from values alone."""
    return new_timer(0, values, "", None)


class Timers(dict):
    """Timers keyed by metric name and tags key."""

    def metrics_name(self) -> str:
        """Name of the aggregated metrics collection."""
        return "Timers"

    def delete(self, key: str) -> None:
        """Remove a metric name and everything under it."""
        self.pop(key, None)

    def delete_child(self, key: str, tags_key: str) -> None:
        """Remove the entry for ``tags_key`` under metric ``key``."""
        _delete_child(self, key, tags_key)

    def has_children(self, key: str) -> bool:
        """Whether any entries remain under metric ``key``."""
        return bool(self.get(key))

    def each(self) -> Iterator[tuple]:
        """Yield ``(metric_name, tags_key, timer)`` for every entry."""
        return _each(self)


_TRUE_STRINGS = {"1", "t", "T", "TRUE", "true", "True"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip() in _TRUE_STRINGS
    return False


def disabled_sub_metrics(config: Mapping) -> TimerSubtypes:
    """Read the ``disabled-sub-metrics`` section of a configuration mapping."""
    section = None
    for key, value in config.items():
        if str(key).lower() == "disabled-sub-metrics":
            section = value
            break
    if not isinstance(section, Mapping):
        return TimerSubtypes()

    sub = {str(k).lower(): v for k, v in section.items()}

    def flag(name: str) -> bool:
        return _as_bool(sub.get(name, False))

    return TimerSubtypes(
        lower=flag("lower"),
        lower_pct=flag("lower-pct"),
        upper=flag("upper"),
        upper_pct=flag("upper-pct"),
        count=flag("count"),
        count_pct=flag("count-pct"),
        count_per_second=flag("count-per-second"),
        mean=flag("mean"),
        mean_pct=flag("mean-pct"),
        median=flag("median"),
        std_dev=flag("stddev"),
        sum=flag("sum"),
        sum_pct=flag("sum-pct"),
        sum_squares=flag("sum-squares"),
        sum_squares_pct=flag("sum-squares-pct"),
    )