"""Unit tests for TLS material loading."""

import logging
import socket
import ssl
from pathlib import Path

import pytest

from aplos.bootstrap.config import AplosConfig
from aplos.bootstrap.tls import CertificateSupplier, build_tls_config
from aplos.domain.errors import TlsLoadError
from tests.utils.tls import write_self_signed_pair


def test_no_tls_requested_returns_none() -> None:
    """Without certificate and key no supplier is built."""
    assert build_tls_config(AplosConfig()) is None


def test_valid_pair_is_loaded_eagerly(tls_pair: tuple[Path, Path]) -> None:
    """The supplier holds a TLS 1.3-only server context right after construction."""
    cert, key = tls_pair
    supplier = build_tls_config(
        AplosConfig(tls_cert_file=str(cert), tls_key_file=str(key))
    )

    assert isinstance(supplier, CertificateSupplier)
    context = supplier()
    assert isinstance(context, ssl.SSLContext)
    assert context.minimum_version == ssl.TLSVersion.TLSv1_3
    assert supplier() is supplier.context


def test_missing_files_fail_at_construction(tmp_path: Path, caplog) -> None:
    """Unreadable material raises TlsLoadError and logs the failure."""
    caplog.set_level(logging.ERROR, logger="aplos")
    config = AplosConfig(
        tls_cert_file=str(tmp_path / "missing.crt"),
        tls_key_file=str(tmp_path / "missing.key"),
    )

    with pytest.raises(TlsLoadError) as excinfo:
        build_tls_config(config)

    assert isinstance(excinfo.value.__cause__, OSError)
    record = next(r for r in caplog.records if r.levelno == logging.ERROR)
    assert getattr(record, "event") == "tls_load_failed"


def test_malformed_pem_fails_at_construction(tmp_path: Path) -> None:
    """Garbage in the certificate file is reported as TlsLoadError."""
    cert = tmp_path / "tls.crt"
    key = tmp_path / "tls.key"
    cert.write_text("not a certificate")
    key.write_text("not a key")

    with pytest.raises(TlsLoadError):
        CertificateSupplier(str(cert), str(key))


def test_mismatched_key_fails_at_construction(
    tls_pair: tuple[Path, Path], tmp_path: Path
) -> None:
    """A key that does not belong to the certificate is rejected."""
    cert, _ = tls_pair
    _, other_key = write_self_signed_pair(tmp_path)

    with pytest.raises(TlsLoadError):
        CertificateSupplier(str(cert), str(other_key))


def test_wrap_defers_handshake(tls_pair: tuple[Path, Path]) -> None:
    """Wrapped connections are server-side and have not shaken hands yet."""
    cert, key = tls_pair
    supplier = CertificateSupplier(str(cert), str(key))
    left, right = socket.socketpair()
    try:
        wrapped = supplier.wrap(left)
        assert isinstance(wrapped, ssl.SSLSocket)
        assert wrapped.server_side is True
        assert wrapped.version() is None
        wrapped.close()
    finally:
        right.close()
        left.close()
