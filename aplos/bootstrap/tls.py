"""TLS certificate loading and the per-connection certificate supplier."""

import logging
import socket
import ssl
from typing import Optional

from aplos.bootstrap.config import AplosConfig
from aplos.domain.correlation_id import CorrelationLoggerAdapter
from aplos.domain.errors import TlsLoadError

TLS_LOGGER = CorrelationLoggerAdapter(logging.getLogger("aplos.tls"), {})

MINIMUM_TLS_VERSION = ssl.TLSVersion.TLSv1_3


class CertificateSupplier:
    """Holds the statically loaded certificate/key pair for TLS handshakes.

    The pair is loaded when the supplier is constructed, so unreadable or
    malformed material fails startup instead of the first client handshake.
    Calling the supplier returns the context every accepted connection is
    wrapped with.
    """

    def __init__(self, cert_file: str, key_file: str) -> None:
        self.cert_file = cert_file
        self.key_file = key_file
        self._context = self._load()

    def _load(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = MINIMUM_TLS_VERSION
        try:
            context.load_cert_chain(self.cert_file, self.key_file)
        except (OSError, ssl.SSLError) as error:
            TLS_LOGGER.error(
                "User-defined certificates could not be loaded",
                extra={
                    "event": "tls_load_failed",
                    "tls_cert_file": self.cert_file,
                    "tls_key_file": self.key_file,
                    "error": str(error),
                },
            )
            raise TlsLoadError(
                f"could not load tls key pair ({self.cert_file}, {self.key_file}): {error}"
            ) from error
        TLS_LOGGER.info(
            "TLS key pair loaded",
            extra={
                "event": "tls_loaded",
                "tls_cert_file": self.cert_file,
                "tls_key_file": self.key_file,
            },
        )
        return context

    @property
    def context(self) -> ssl.SSLContext:
        """The server-side context holding the loaded key pair."""
        return self._context

    def __call__(self) -> ssl.SSLContext:
        return self._context

    def wrap(self, connection: socket.socket) -> ssl.SSLSocket:
        """Wrap an accepted connection, deferring the handshake to its worker."""
        return self().wrap_socket(
            connection, server_side=True, do_handshake_on_connect=False
        )


def build_tls_config(config: AplosConfig) -> Optional[CertificateSupplier]:
    """Return a certificate supplier when TLS is requested, otherwise None."""
    if not config.use_tls:
        return None
    return CertificateSupplier(config.tls_cert_file, config.tls_key_file)
