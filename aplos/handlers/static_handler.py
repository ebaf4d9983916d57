"""Request handler serving the configured directory and the health check."""

import io
import logging
import ssl
import time
from http.server import SimpleHTTPRequestHandler
from typing import Optional

from aplos.domain.correlation_id import (
    CorrelationLoggerAdapter,
    bind_correlation_id,
    new_correlation_id,
    reset_correlation_id,
)
from aplos.handlers.system_handlers import handle_healthcheck
from aplos.pipeline.router import Route, resolve_route
from aplos.transport.deadline_io import DeadlineReader, DeadlineWriter, remaining_time

HANDLER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("aplos.handlers"), {})


class AplosRequestHandler(SimpleHTTPRequestHandler):
    """Static file handler with a health check route and per-phase deadlines.

    Files, directory listings and conditional requests are delegated to
    SimpleHTTPRequestHandler. The connection streams enforce absolute
    deadlines: read-header from the start of a request (and for the TLS
    handshake), idle while a kept-alive connection waits for its next request,
    read for the whole request once it starts, and write from the moment the
    request head has been parsed.
    """

    protocol_version = "HTTP/1.1"
    server_version = "aplos"

    def setup(self) -> None:
        self._correlation_token = bind_correlation_id(new_correlation_id())
        self._requests_served = 0
        self._read_deadline: Optional[float] = None
        self._request_deadline: Optional[float] = None
        self._write_deadline: Optional[float] = None
        self.connection = self.request
        self.rfile = io.BufferedReader(
            DeadlineReader(self.connection, lambda: self._read_deadline)
        )
        self.wfile = DeadlineWriter(self.connection, lambda: self._write_deadline)
        self.server.lifecycle.register_connection(self.connection)

    def finish(self) -> None:
        try:
            super().finish()
        finally:
            self.server.lifecycle.cleanup_connection(self.connection)
            reset_correlation_id(self._correlation_token)

    def handle(self) -> None:
        if isinstance(self.connection, ssl.SSLSocket):
            self._read_deadline = time.monotonic() + self.server.timeouts.read_header
            self.connection.settimeout(remaining_time(self._read_deadline))
            self.connection.do_handshake()
        super().handle()

    def _begin_request(self) -> None:
        timeouts = self.server.timeouts
        started = time.monotonic()
        self._read_deadline = started + min(timeouts.read_header, timeouts.read)
        self._request_deadline = started + timeouts.read
        self._write_deadline = started + timeouts.write

    def _request_pending(self) -> bool:
        """Wait for the first byte of a request under the current read deadline."""
        try:
            if self.rfile.peek(1):
                return True
        except OSError:
            pass
        self.close_connection = True
        return False

    def handle_one_request(self) -> None:
        lifecycle = self.server.lifecycle
        if self._requests_served:
            self._read_deadline = time.monotonic() + self.server.timeouts.idle
            if not self._request_pending():
                return
            self._begin_request()
        else:
            self._begin_request()
            if not self._request_pending():
                return

        lifecycle.mark_busy(self.connection)
        try:
            super().handle_one_request()
        finally:
            self._requests_served += 1
            lifecycle.mark_idle(self.connection)
            if lifecycle.is_shutting_down():
                self.close_connection = True

    def parse_request(self) -> bool:
        if not super().parse_request():
            return False
        self._read_deadline = self._request_deadline
        self._write_deadline = time.monotonic() + self.server.timeouts.write
        return True

    def end_headers(self) -> None:
        if self.server.lifecycle.is_shutting_down() and not self.close_connection:
            self.send_header("Connection", "close")
        super().end_headers()

    @property
    def route(self) -> Route:
        """The logical route of the request currently being handled."""
        return resolve_route(self.path, self.server.healthcheck_endpoint)

    def serve_healthcheck(self) -> None:
        """Answer the health check, dropping the connection if a body was sent."""
        if self.headers.get("Content-Length", "0") != "0" or self.headers.get(
            "Transfer-Encoding"
        ):
            self.close_connection = True
        handle_healthcheck(self)

    def do_GET(self) -> None:
        if self.route is Route.HEALTHCHECK:
            self.serve_healthcheck()
            return
        super().do_GET()

    def do_HEAD(self) -> None:
        if self.route is Route.HEALTHCHECK:
            self.serve_healthcheck()
            return
        super().do_HEAD()

    def __getattr__(self, name: str):
        # Any other method is dispatched as do_<METHOD>; only the health check answers it.
        if name.startswith("do_") and self.route is Route.HEALTHCHECK:
            return self.serve_healthcheck
        raise AttributeError(name)

    def log_message(self, format, *args) -> None:  # pylint: disable=redefined-builtin
        if HANDLER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            HANDLER_LOGGER.debug(
                format % args,
                extra={"event": "handler_message", "client": self.address_string()},
            )
