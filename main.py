"""Static file server with optional TLS and a health check endpoint."""

import logging
import sys
from typing import Optional

from aplos.bootstrap.build_info import BuildInfo, resolve_build_info
from aplos.bootstrap.config import SHUTDOWN_TIMEOUT_SEC, resolve_config
from aplos.bootstrap.logging_setup import configure_logging
from aplos.bootstrap.tls import build_tls_config
from aplos.bootstrap.validation import validate_config
from aplos.domain.correlation_id import CorrelationLoggerAdapter
from aplos.domain.errors import (
    AplosError,
    ConfigurationError,
    ListenError,
    TlsLoadError,
)
from aplos.lifecycle.shutdown import ShutdownCoordinator, StopReason
from aplos.transport.http_server import create_server, start_server

MAIN_LOGGER = CorrelationLoggerAdapter(logging.getLogger("aplos.main"), {})

FATAL_MESSAGES = {
    ConfigurationError: "Invalid configuration",
    TlsLoadError: "Invalid TLS config",
    ListenError: "Can not start server",
}


def _log_fatal(error: AplosError) -> None:
    message = next(
        (text for kind, text in FATAL_MESSAGES.items() if isinstance(error, kind)),
        "Fatal error",
    )
    MAIN_LOGGER.critical(
        message,
        extra={
            "event": error.event,
            "error_type": type(error).__name__,
            "error": str(error),
        },
    )


def main(argv: Optional[list[str]] = None, build_info: Optional[BuildInfo] = None) -> int:
    """Run the server until a termination signal arrives; return the exit code."""
    if argv is None:
        argv = sys.argv[1:]
    if build_info is None:
        build_info = resolve_build_info()

    config = resolve_config(argv, build_info=build_info)
    configure_logging(config.log_level, config.log_destination, config.log_format)
    MAIN_LOGGER.info(
        "Starting aplos",
        extra={
            "event": "startup",
            "version": build_info.version,
            "commit": build_info.commit,
        },
    )

    coordinator = ShutdownCoordinator()
    coordinator.install()
    try:
        try:
            validate_config(config)
            certificate_supplier = build_tls_config(config)
            server = create_server(config, certificate_supplier)
        except AplosError as error:
            _log_fatal(error)
            return 1

        start_server(server, coordinator)
        notice = coordinator.wait()
        if notice.reason is StopReason.SERVER_STOPPED:
            server.server_close()
            _log_fatal(notice.error or ListenError("server stopped unexpectedly"))
            return 1
        server.graceful_shutdown(SHUTDOWN_TIMEOUT_SEC)
    finally:
        coordinator.restore()
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
