import argparse
import math
from datetime import timedelta
from unittest import mock

import pytest

from statsdpipe import defaults
from statsdpipe.defaults import add_flags, get_host, to_string_slice


def make_parser():
    parser = argparse.ArgumentParser(prog="statsdpipe")
    add_flags(parser)
    return parser


def test_defaults_when_no_arguments():
    args = make_parser().parse_args([])
    assert args.metrics_addr == defaults.DEFAULT_METRICS_ADDR
    assert args.backends == " ".join(defaults.DEFAULT_BACKENDS)
    assert args.server_mode == defaults.DEFAULT_SERVER_MODE
    assert args.internal_namespace == defaults.DEFAULT_INTERNAL_NAMESPACE
    assert args.statser_type == defaults.DEFAULT_STATSER_TYPE
    assert args.expiry_interval == defaults.DEFAULT_EXPIRY_INTERVAL
    assert args.flush_interval == defaults.DEFAULT_FLUSH_INTERVAL
    assert args.ignore_host is False
    assert args.receive_batch_size == defaults.DEFAULT_RECEIVE_BATCH_SIZE
    assert args.burst_cloud_requests == defaults.DEFAULT_MAX_CLOUD_REQUESTS + 5


def test_percent_threshold_default_is_formatted():
    args = make_parser().parse_args([])
    assert args.percent_threshold == "90"


def test_max_readers_default_capped():
    args = make_parser().parse_args([])
    assert args.max_readers == defaults.DEFAULT_MAX_READERS
    assert 1 <= args.max_readers <= 8
    assert args.max_readers <= args.max_workers


def test_integer_and_string_flags():
    args = make_parser().parse_args(
        ["--max-readers", "3", "--namespace", "stats", "--metrics-addr", "127.0.0.1:9125"]
    )
    assert args.max_readers == 3
    assert args.namespace == "stats"
    assert args.metrics_addr == "127.0.0.1:9125"


def test_invalid_integer_rejected():
    with pytest.raises(SystemExit):
        make_parser().parse_args(["--max-workers", "many"])


@pytest.mark.parametrize("text", ["", "5", "s", "3x", "1h m", "abc"])
def test_invalid_duration_rejected(text):
    with pytest.raises(SystemExit):
        make_parser().parse_args(["--expiry-interval", text])


@pytest.mark.parametrize(
    "argv, expected",
    [
        (["--ignore-host"], True),
        (["--ignore-host=true"], True),
        (["--ignore-host=1"], True),
        (["--ignore-host=false"], False),
        (["--ignore-host=F"], False),
    ],
)
def test_bool_flags(argv, expected):
    args = make_parser().parse_args(argv)
    assert args.ignore_host is expected


def test_invalid_bool_rejected():
    with pytest.raises(SystemExit):
        make_parser().parse_args(["--heartbeat-enabled=maybe"])


def test_get_host_matches_socket():
    with mock.patch("socket.gethostname", return_value="box.example.com"):
        assert get_host() == "box.example.com"


def test_get_host_failure_gives_empty():
    with mock.patch("socket.gethostname", side_effect=OSError("no host")):
        assert get_host() == ""


def test_hostname_flag_default_uses_host():
    with mock.patch("socket.gethostname", return_value="node.example.com"):
        args = make_parser().parse_args([])
    assert args.hostname == "node.example.com"


@pytest.mark.parametrize("value", [90.0, 0.5, 99.9, 12.25, 1e-7, 123456789.0, 0.1])
def test_to_string_slice_round_trips(value):
    (text,) = to_string_slice([value])
    assert float(text) == value
    assert "e" not in text.lower()
    assert not text.endswith(".")


def test_to_string_slice_integer_values_have_no_point():
    assert to_string_slice([90.0, 50.0]) == ["90", "50"]


def test_to_string_slice_large_value_no_exponent():
    assert to_string_slice([1e21]) == ["1" + "0" * 21]


def test_to_string_slice_special_values():
    result = to_string_slice([math.inf, -math.inf, math.nan])
    assert result == ["+Inf", "-Inf", "NaN"]


def test_to_string_slice_preserves_order_and_length():
    values = [0.25, 75.0, 99.5]
    result = to_string_slice(values)
    assert len(result) == len(values)
    assert [float(s) for s in result] == values