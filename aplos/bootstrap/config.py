"""Server configuration resolved from defaults, environment and CLI flags."""

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from aplos.bootstrap.build_info import BuildInfo
from aplos.domain.correlation_id import CorrelationLoggerAdapter

CONFIG_LOGGER = CorrelationLoggerAdapter(logging.getLogger("aplos.config"), {})

DEFAULT_ADDR = "127.0.0.1:8080"
DEFAULT_DIRECTORY = "/pub"
DEFAULT_HEALTHCHECK_ENDPOINT = "/_health"
DEFAULT_IDLE_TIMEOUT_SEC = 120
DEFAULT_READ_TIMEOUT_SEC = 60
DEFAULT_WRITE_TIMEOUT_SEC = 1800
DEFAULT_READ_HEADER_TIMEOUT_SEC = 30
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DESTINATION = "stdout"
DEFAULT_LOG_FORMAT = "json"

SHUTDOWN_TIMEOUT_SEC = 10.0

ENV_ADDR = "APLOS_ADDR"
ENV_DIRECTORY = "APLOS_DIRECTORY"
ENV_TLS_CRT_FILE = "APLOS_TLS_CRT_FILE"
ENV_TLS_KEY_FILE = "APLOS_TLS_KEY_FILE"
ENV_HEALTHCHECK_ENDPOINT = "APLOS_HEALTHCHECK_ENDPOINT"
ENV_TIMEOUT_IDLE = "APLOS_TIMEOUT_IDLE"
ENV_TIMEOUT_READ_HEADER = "APLOS_TIMEOUT_READ_HEADER"
ENV_TIMEOUT_READ = "APLOS_TIMEOUT_READ"
ENV_TIMEOUT_WRITE = "APLOS_TIMEOUT_WRITE"
ENV_LOG_LEVEL = "APLOS_LOG_LEVEL"
ENV_LOG_DESTINATION = "APLOS_LOG_DESTINATION"
ENV_LOG_FORMAT = "APLOS_LOG_FORMAT"

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LOG_FORMATS = ["json", "text"]


@dataclass(frozen=True)
class AplosConfig:
    """Immutable server configuration."""

    address: str = DEFAULT_ADDR
    directory: str = DEFAULT_DIRECTORY
    tls_cert_file: str = ""
    tls_key_file: str = ""
    healthcheck_endpoint: str = DEFAULT_HEALTHCHECK_ENDPOINT
    idle_timeout_sec: int = DEFAULT_IDLE_TIMEOUT_SEC
    read_timeout_sec: int = DEFAULT_READ_TIMEOUT_SEC
    write_timeout_sec: int = DEFAULT_WRITE_TIMEOUT_SEC
    read_header_timeout_sec: int = DEFAULT_READ_HEADER_TIMEOUT_SEC
    log_level: str = DEFAULT_LOG_LEVEL
    log_destination: str = DEFAULT_LOG_DESTINATION
    log_format: str = DEFAULT_LOG_FORMAT

    @property
    def use_tls(self) -> bool:
        """Return True when both the TLS certificate and key are configured."""
        return bool(self.tls_cert_file) and bool(self.tls_key_file)


def _env_str(environ: Mapping[str, str], name: str, default: str) -> str:
    value = environ.get(name, "")
    return value if value else default


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        CONFIG_LOGGER.warning(
            "Could not convert environment variable to integer",
            extra={"event": "env_parse_failed", "var": name, "value": value},
        )
        return default


def build_parser(
    environ: Mapping[str, str], build_info: Optional[BuildInfo] = None
) -> argparse.ArgumentParser:
    """Return the CLI parser seeded with environment-derived defaults."""
    parser = argparse.ArgumentParser(
        prog="aplos",
        description="Serve a directory over HTTP or HTTPS",
        allow_abbrev=False,
    )
    parser.add_argument(
        "-a",
        "--address",
        dest="address",
        default=_env_str(environ, ENV_ADDR, DEFAULT_ADDR),
        help="The address to run the server on",
    )
    parser.add_argument(
        "-d",
        "--directory",
        dest="directory",
        default=_env_str(environ, ENV_DIRECTORY, DEFAULT_DIRECTORY),
        help="The directory to serve",
    )
    parser.add_argument(
        "-c",
        "--tls-cert-file",
        dest="tls_cert_file",
        default=_env_str(environ, ENV_TLS_CRT_FILE, ""),
        help="File that contains the TLS certificate",
    )
    parser.add_argument(
        "-k",
        "--tls-key-file",
        dest="tls_key_file",
        default=_env_str(environ, ENV_TLS_KEY_FILE, ""),
        help="File that contains the TLS private key",
    )
    parser.add_argument(
        "-p",
        "--healthcheck-endpoint",
        dest="healthcheck_endpoint",
        default=_env_str(
            environ, ENV_HEALTHCHECK_ENDPOINT, DEFAULT_HEALTHCHECK_ENDPOINT
        ),
        help='Endpoint where to expose the healthcheck handler. Set to "" to disable it.',
    )
    parser.add_argument(
        "-idle-timeout",
        "--idle-timeout",
        dest="idle_timeout_sec",
        type=int,
        default=_env_int(environ, ENV_TIMEOUT_IDLE, DEFAULT_IDLE_TIMEOUT_SEC),
        help="Set the idle timeout in seconds",
    )
    parser.add_argument(
        "-read-header-timeout",
        "--read-header-timeout",
        dest="read_header_timeout_sec",
        type=int,
        default=_env_int(
            environ, ENV_TIMEOUT_READ_HEADER, DEFAULT_READ_HEADER_TIMEOUT_SEC
        ),
        help="Set the read-header timeout in seconds",
    )
    parser.add_argument(
        "-read-timeout",
        "--read-timeout",
        dest="read_timeout_sec",
        type=int,
        default=_env_int(environ, ENV_TIMEOUT_READ, DEFAULT_READ_TIMEOUT_SEC),
        help="Set the read timeout in seconds",
    )
    parser.add_argument(
        "-write-timeout",
        "--write-timeout",
        dest="write_timeout_sec",
        type=int,
        default=_env_int(environ, ENV_TIMEOUT_WRITE, DEFAULT_WRITE_TIMEOUT_SEC),
        help="Set the write timeout in seconds",
    )
    parser.add_argument(
        "-log-level",
        "--log-level",
        dest="log_level",
        default=_env_str(environ, ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper(),
        choices=LOG_LEVELS,
        type=str.upper,
    )
    parser.add_argument(
        "-log-destination",
        "--log-destination",
        dest="log_destination",
        default=_env_str(environ, ENV_LOG_DESTINATION, DEFAULT_LOG_DESTINATION),
        help="stdout or a file path",
    )
    parser.add_argument(
        "-log-format",
        "--log-format",
        dest="log_format",
        default=_env_str(environ, ENV_LOG_FORMAT, DEFAULT_LOG_FORMAT).lower(),
        choices=LOG_FORMATS,
        type=str.lower,
    )
    if build_info is not None:
        parser.add_argument(
            "-version",
            "--version",
            action="version",
            version=f"%(prog)s {build_info.version} ({build_info.commit})",
        )
    return parser


def resolve_config(
    argv: list[str],
    environ: Optional[Mapping[str, str]] = None,
    build_info: Optional[BuildInfo] = None,
) -> AplosConfig:
    """Merge defaults, environment variables and CLI flags into a configuration.

    Flags take precedence over the environment, which takes precedence over the
    built-in defaults. An empty environment variable counts as unset.
    """
    if environ is None:
        environ = os.environ
    args = build_parser(environ, build_info).parse_args(argv)
    return AplosConfig(
        address=args.address,
        directory=args.directory,
        tls_cert_file=args.tls_cert_file,
        tls_key_file=args.tls_key_file,
        healthcheck_endpoint=args.healthcheck_endpoint,
        idle_timeout_sec=args.idle_timeout_sec,
        read_timeout_sec=args.read_timeout_sec,
        write_timeout_sec=args.write_timeout_sec,
        read_header_timeout_sec=args.read_header_timeout_sec,
        log_level=args.log_level,
        log_destination=args.log_destination,
        log_format=args.log_format,
    )
