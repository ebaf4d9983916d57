"""Threaded HTTP server construction, serve loop and graceful shutdown."""

import functools
import logging
import ssl
import sys
import threading
import time
from dataclasses import dataclass
from http.server import ThreadingHTTPServer
from typing import Optional

from aplos.bootstrap.config import SHUTDOWN_TIMEOUT_SEC, AplosConfig
from aplos.bootstrap.tls import CertificateSupplier
from aplos.domain.address import ListenAddress, parse_listen_address
from aplos.domain.correlation_id import CorrelationLoggerAdapter
from aplos.domain.errors import ListenError
from aplos.handlers.static_handler import AplosRequestHandler
from aplos.lifecycle.shutdown import ShutdownCoordinator
from aplos.lifecycle.state import ServerLifecycle

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("aplos.transport.server"), {})

EXPECTED_CONNECTION_ERRORS = (ConnectionError, TimeoutError, ssl.SSLError)


@dataclass(frozen=True)
class ServerTimeouts:
    """Lengths of the per-phase connection deadlines, in seconds."""

    idle: float
    read: float
    write: float
    read_header: float

    @classmethod
    def from_config(cls, config: AplosConfig) -> "ServerTimeouts":
        """Convert the configured whole seconds into phase lengths."""
        return cls(
            idle=float(config.idle_timeout_sec),
            read=float(config.read_timeout_sec),
            write=float(config.write_timeout_sec),
            read_header=float(config.read_header_timeout_sec),
        )


class AplosHTTPServer(ThreadingHTTPServer):
    """HTTP server handling each connection on its own daemon thread."""

    daemon_threads = True
    block_on_close = False

    def __init__(
        self,
        listen_address: ListenAddress,
        directory: str,
        healthcheck_endpoint: str,
        timeouts: ServerTimeouts,
        certificate_supplier: Optional[CertificateSupplier] = None,
        lifecycle: Optional[ServerLifecycle] = None,
    ) -> None:
        # pylint: disable=too-many-arguments, too-many-positional-arguments
        self.address_family = listen_address.family
        self.directory = directory
        self.healthcheck_endpoint = healthcheck_endpoint
        self.timeouts = timeouts
        self.certificate_supplier = certificate_supplier
        self.lifecycle = lifecycle if lifecycle is not None else ServerLifecycle()
        self.serve_requested = threading.Event()
        handler = functools.partial(AplosRequestHandler, directory=directory)
        super().__init__(listen_address.as_tuple(), handler)

    @property
    def use_tls(self) -> bool:
        """Return True when connections are wrapped with TLS."""
        return self.certificate_supplier is not None

    def get_request(self):
        connection, client_address = super().get_request()
        if self.certificate_supplier is not None:
            connection = self.certificate_supplier.wrap(connection)
        return connection, client_address

    def serve_forever(self, poll_interval: float = 0.5) -> None:
        self.serve_requested.set()
        super().serve_forever(poll_interval)

    def handle_error(self, request, client_address) -> None:
        error = sys.exc_info()[1]
        client = f"{client_address[0]}:{client_address[1]}"
        if isinstance(error, EXPECTED_CONNECTION_ERRORS):
            SERVER_LOGGER.warning(
                "Client connection failed",
                extra={
                    "event": "connection_error",
                    "client": client,
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
            )
            return
        SERVER_LOGGER.exception(
            "Unhandled error while serving client",
            extra={"event": "handler_error", "client": client},
        )

    def graceful_shutdown(self, timeout: float = SHUTDOWN_TIMEOUT_SEC) -> bool:
        """Stop accepting, drain in-flight requests, then force-close the rest.

        Returns True when every connection finished within ``timeout``.
        """
        deadline = time.monotonic() + timeout
        if not self.lifecycle.begin_shutdown():
            return True
        if self.serve_requested.is_set():
            self.shutdown()
        self.server_close()
        SERVER_LOGGER.info(
            "Waiting for active connections to complete",
            extra={"event": "shutdown_waiting", "grace_seconds": timeout},
        )
        drained = self.lifecycle.wait_for_connections(
            max(0.0, deadline - time.monotonic())
        )
        if not drained:
            closed = self.lifecycle.close_connections()
            SERVER_LOGGER.warning(
                "Forcibly closed remaining connections",
                extra={"event": "connections_killed", "remaining_connections": closed},
            )
        SERVER_LOGGER.info("Server shutdown complete", extra={"event": "server_stopped"})
        return drained


def create_server(
    config: AplosConfig,
    certificate_supplier: Optional[CertificateSupplier] = None,
    lifecycle: Optional[ServerLifecycle] = None,
) -> AplosHTTPServer:
    """Bind a server to the configured address; raise ListenError on failure."""
    listen_address = parse_listen_address(config.address)
    try:
        return AplosHTTPServer(
            listen_address,
            config.directory,
            config.healthcheck_endpoint,
            ServerTimeouts.from_config(config),
            certificate_supplier,
            lifecycle,
        )
    except OSError as error:
        raise ListenError(f"can not start server: {error}") from error


def start_server(
    server: AplosHTTPServer, coordinator: Optional[ShutdownCoordinator] = None
) -> threading.Thread:
    """Run the serve loop on a background thread.

    The coordinator, if given, is notified when the loop returns; an exception
    escaping the loop is reported as a ListenError.
    """

    def _serve() -> None:
        failure: Optional[ListenError] = None
        try:
            server.serve_forever()
        except Exception as error:  # pylint: disable=broad-exception-caught
            if coordinator is None:
                raise
            failure = ListenError(f"can not serve: {error}")
            failure.__cause__ = error
        if coordinator is not None:
            coordinator.notify_server_stopped(failure)

    host, port = server.server_address[:2]
    SERVER_LOGGER.info(
        "Starting TLS server" if server.use_tls else "Starting server",
        extra={
            "event": "server_listening",
            "host": host,
            "port": port,
            "directory": server.directory,
            "tls": server.use_tls,
            "healthcheck_endpoint": server.healthcheck_endpoint,
        },
    )
    server.serve_requested.set()
    thread = threading.Thread(target=_serve, name="aplos-serve", daemon=True)
    thread.start()
    return thread
