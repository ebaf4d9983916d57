"""Configuration validation run once before the server starts."""

from pathlib import Path

from aplos.bootstrap.config import AplosConfig
from aplos.domain.address import parse_listen_address
from aplos.domain.errors import (
    DirectoryNotFound,
    IncompleteTlsConfig,
    InvalidAddress,
    InvalidHealthPattern,
    InvalidTimeout,
)


def validate_config(config: AplosConfig) -> None:
    """Raise a ConfigurationError describing the first inconsistency found."""
    try:
        parse_listen_address(config.address)
    except InvalidAddress as error:
        raise InvalidAddress(f"invalid listen address provided: {error}") from error

    if not Path(config.directory).exists():
        raise DirectoryNotFound(f"directory {config.directory!r} does not exist")

    if config.healthcheck_endpoint and not config.healthcheck_endpoint.startswith("/"):
        raise InvalidHealthPattern('health check endpoint must start with "/"')
    if config.healthcheck_endpoint == "/":
        raise InvalidHealthPattern('health check endpoint must not be "/"')

    if bool(config.tls_cert_file) != bool(config.tls_key_file):
        raise IncompleteTlsConfig(
            "either both tls cert and key must be provided or none at all"
        )

    timeouts = (
        config.idle_timeout_sec,
        config.read_timeout_sec,
        config.write_timeout_sec,
        config.read_header_timeout_sec,
    )
    if any(timeout <= 0 for timeout in timeouts):
        raise InvalidTimeout("timeout must be > 0")
