"""HTTP servers exposing health checks, plus the body decompression helper."""

from __future__ import annotations

import logging
import threading
import time
import urllib.parse
import zlib
from collections.abc import Mapping
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "127.0.0.1:8080"

_SHUTDOWN_TIMEOUT = 6.0

Response = Tuple[int, bytes]


def decompress(data: bytes) -> bytes:
    """Inflate a zlib-compressed body; raises ``ValueError`` if it is not valid."""
    try:
        inflater = zlib.decompressobj()
        out = inflater.decompress(bytes(data))
        out += inflater.flush()
    except zlib.error as exc:
        raise ValueError(f"invalid zlib data: {exc}") from exc
    if not inflater.eof:
        raise ValueError("invalid zlib data: unexpected end of stream")
    return out


@dataclass(frozen=True)
class _Route:
    path: str
    method: str
    name: str
    handler: Callable[[], Response]


def _parse_address(address: str) -> Tuple[str, int]:
    host, sep, port_text = address.rpartition(":")
    if not sep:
        host, port_text = address, ""
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not port_text:
        return host, 80
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in address {address!r}") from None
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"invalid port in address {address!r}")
    return host, port


class HttpServer:
    """An HTTP server with a fixed set of routes."""

    def __init__(self, server_name: str, address: str, routes: List[_Route]) -> None:
        self.server_name = server_name
        self.address = address
        self._routes = routes
        self.listening = threading.Event()
        self.bound_address: Optional[Tuple[str, int]] = None

    # handlers

    def _health_check(self) -> Response:
        logger.info("healthCheck")
        return 200, b"OK"

    def _deep_check(self) -> Response:
        logger.info("deepCheck")
        return 200, b"OK"

    def _not_found(self) -> Response:
        return 404, b"not found"

    # dispatch

    def handle(
        self,
        method: str,
        path: str,
        remote_addr: str = "",
        headers: Optional[Mapping] = None,
    ) -> Response:
        """Serve one request and return ``(status, body)``."""
        fields: Dict[str, Any] = {
            "route": "",
            "srcip": remote_addr.split(":")[0],
            "path": path,
        }
        route = next(
            (r for r in self._routes if r.path == path and r.method == method.upper()),
            None,
        )
        path_known = any(r.path == path for r in self._routes)
        if route is None:
            fields["method"] = method
        else:
            fields["route"] = route.name
        for key, value in (headers or {}).items():
            if str(key).lower() == "x-forwarded-for" and value:
                fields["forwarded_for"] = value
                break

        start = time.perf_counter()
        if route is not None:
            response = route.handler()
        elif path_known:
            response = (405, b"")
        else:
            response = self._not_found()
        fields["duration"] = (time.perf_counter() - start) * 1000.0
        logger.info("request %s", fields)
        return response

    # serving

    def _make_request_handler(self) -> type:
        server = self

        class _Handler(BaseHTTPRequestHandler):
            def _dispatch(self) -> None:
                path = urllib.parse.urlsplit(self.path).path
                remote = f"{self.client_address[0]}:{self.client_address[1]}"
                status, body = server.handle(self.command, path, remote, dict(self.headers.items()))
                self.send_response(status)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(body)

            do_GET = _dispatch
            do_POST = _dispatch
            do_PUT = _dispatch
            do_DELETE = _dispatch
            do_PATCH = _dispatch
            do_HEAD = _dispatch
            do_OPTIONS = _dispatch

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("%s - %s", self.address_string(), format % args)

        return _Handler

    def run(self, stop: threading.Event) -> None:
        """Serve until ``stop`` is set, then shut down gracefully."""
        try:
            host, port = _parse_address(self.address)
            httpd = ThreadingHTTPServer((host, port), self._make_request_handler())
        except (OSError, ValueError) as exc:
            logger.error("web server failed: %s", exc)
            return
        httpd.daemon_threads = True
        self.bound_address = httpd.server_address[:2]
        logger.info("listening on %s", self.address)

        serving = threading.Thread(target=httpd.serve_forever, daemon=True)
        serving.start()
        self.listening.set()

        stop.wait()
        logger.info("shutting down web server")
        stopped = threading.Thread(target=httpd.shutdown, daemon=True)
        stopped.start()
        stopped.join(_SHUTDOWN_TIMEOUT)
        if stopped.is_alive():
            logger.info("timeout waiting for webserver to stop")
        else:
            serving.join(_SHUTDOWN_TIMEOUT)
        httpd.server_close()
        self.listening.clear()


def new_http_server(server_name: str, address: str, enable_healthcheck: bool = True) -> HttpServer:
    """Create a server; at least one feature must be enabled."""
    routes: List[_Route] = []
    server = HttpServer(server_name, address, routes)
    if enable_healthcheck:
        routes.append(_Route("/healthcheck", "GET", "healthcheck_get", server._health_check))
        routes.append(_Route("/deepcheck", "GET", "deepcheck_get", server._deep_check))
    if not routes:
        raise ValueError("must enable at least one of prof, expvar, ingestion, or healthcheck")
    logger.info(
        "Created server %s",
        {"http-server": server_name, "address": address, "enable-healthcheck": enable_healthcheck},
    )
    return server


_TRUE_STRINGS = {"1", "t", "T", "TRUE", "true", "True"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip() in _TRUE_STRINGS
    return False


def _lookup(mapping: Any, key: str) -> Any:
    if not isinstance(mapping, Mapping):
        return None
    wanted = key.lower()
    for k, v in mapping.items():
        if str(k).lower() == wanted:
            return v
    return None


def _sub_section(config: Mapping, *keys: str) -> Mapping:
    section: Any = config
    for key in keys:
        section = _lookup(section, key)
    return section if isinstance(section, Mapping) else {}


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    return [str(v) for v in value]


def new_http_servers_from_config(config: Mapping) -> List[HttpServer]:
    """Create the servers named in ``http-servers``, each set up from ``http.<name>``."""
    servers = []
    for name in _string_list(_lookup(config, "http-servers")):
        section = _sub_section(config, "http", name)
        address = _lookup(section, "address")
        healthcheck = _lookup(section, "enable-healthcheck")
        try:
            server = new_http_server(
                name,
                DEFAULT_ADDRESS if address is None else str(address),
                True if healthcheck is None else _as_bool(healthcheck),
            )
        except ValueError as exc:
            raise ValueError(f"failed to make http-server {name}: {exc}") from exc
        servers.append(server)
    return servers