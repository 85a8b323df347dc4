# statsdpipe

`statsdpipe` is the ingestion side of a StatsD server: it parses StatsD and
DogStatsD lines, splits UDP datagrams into metrics and events, reads
datagrams from sockets, and provides the aggregated metric types a pipeline
works with. It has no third-party dependencies.

## Modules

- `statsdpipe.core`: shared data types. `Tags` is a list of tags with
  `sorted_string()` (sorts in place), `concat()` and `copy()`;
  `normalize_tag_key()` replaces `:` with `_` in a tag key. `Timer`/`Timers`
  and `Set`/`Sets` hold aggregated values keyed by metric name and tags key,
  with `metrics_name()`, `each()`, `delete()`, `delete_child()` and
  `has_children()`; `new_timer()`, `new_timer_values()` and `new_set()` build
  them. `TimerSubtypes` records which timer sub-metrics are disabled, and
  `disabled_sub_metrics()` reads one from the `disabled-sub-metrics` section
  of a configuration mapping. `nano_now()` and `nano_max()` work with
  nanosecond timestamps.
- `statsdpipe.lexer`: `parse_line(line, namespace="")` returns
  `(Metric, None)` or `(None, Event)`. Counters (`c`), gauges (`g`), timers
  (`ms` and `h`), sets (`s`), sample rates (`@0.1`) and tags (`#a:b,c`) are
  understood, as are events (`_e{title_len,text_len}:title|text|...`).
  Malformed input raises a subclass of `LexError` (itself a `ValueError`):
  `MissingKeySeparator`, `EmptyKey`, `MissingValueSeparator`, `InvalidType`,
  `InvalidFormat`, `InvalidSamplingOrTags`, `InvalidAttributes`, `Overflow`,
  `NotEnoughData` or `NaNValue`. A non-empty namespace is prefixed to every
  metric name with a dot.
- `statsdpipe.parser`: `DatagramParser` takes a handler with
  `dispatch_metrics(metrics)` and `dispatch_event(event)`.
  `handle_datagram()` splits a datagram on newlines and parses each line,
  returning the metrics and dispatching events at once (events without a
  date get the current time). `process_batch()` handles a list of
  `Datagram`s, calls each one's `done()`, dispatches the metrics and updates
  the totals that `counters()` reports; `run(source, stop)` does this for
  batches taken from a `queue.Queue` until a `threading.Event` is set. Bad
  lines are counted and logged, at most at the configured rate per second.
  With `ignore_host=True`, the first `host:` tag becomes the metric's
  hostname and is removed from its tags; otherwise the source IP is set.
- `statsdpipe.receiver`: `DatagramReceiver` reads datagrams from sockets
  made by a socket factory and puts batches of `Datagram` on a queue;
  `receive()` serves one socket, `run()` starts a reader thread per socket
  and closes them when stopped, and `take_metrics()` reports and resets the
  receive statistics. `udp_socket_factory()` binds a UDP socket for an
  address such as `":8125"`, and `get_ip()` extracts the source IP from a
  socket address.
- `statsdpipe.defaults`: default settings and parameter names, `add_flags()`
  to register them on an `argparse.ArgumentParser` (durations such as
  `300ms` or `1h30m` are accepted), `get_host()` and `to_string_slice()`.
- `statsdpipe.web`: `HttpServer` answers `GET /healthcheck` and
  `GET /deepcheck` with `OK`, replies 405 to other methods on those paths and
  404 `not found` elsewhere. `handle()` serves one request directly;
  `run(stop)` serves over HTTP until the event is set.
  `new_http_server()` and `new_http_servers_from_config()` (reading
  `http-servers` and `http.<name>.address` / `enable-healthcheck`) build
  servers, and `decompress()` inflates zlib data, raising `ValueError` on bad
  input.

## Line format

```
<name>:<value>|<type>[|@<sample rate>][|#<tag>,<tag>...]
_e{<title length>,<text length>}:<title>|<text>[|d:<date>][|h:<host>][|k:<key>][|p:low|normal][|s:<source type>][|t:info|warning|error|success][|#<tag>,...]
```

Inside a metric name, `/` becomes `-`, spaces and tabs become `_`, and any
character other than letters, digits, `.`, `-` and `_` is dropped, so
`smp gge:1|g` is the gauge `smp_gge`. Empty tags are skipped. In event text
the two characters `\n` stand for a newline.

## What it does not do

The package stops at parsing and receiving. It does not aggregate metrics,
flush them to backends, look up cloud metadata or accept metrics over HTTP,
and it has no command to start a complete server: the flags that
`add_flags()` registers are not wired to anything. Those stages are left to
the handler passed to `DatagramParser`.

## Running the tests

Install the package with its `test` extra and run `pytest` from the project
directory.