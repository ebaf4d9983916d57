"""Integration tests for graceful shutdown and fatal startup errors."""

# pylint: disable=redefined-outer-name

import signal
import socket
import subprocess
import sys
import time
from pathlib import Path

import pytest

from tests.conftest import (
    HOST,
    SERVER_ENTRYPOINT,
    ServerProcessInfo,
    server_environment,
)
from tests.utils.http import read_http_response, reserve_port, send_signal_to_process
from tests.utils.logs import read_log_events

pytestmark = pytest.mark.integration


def _run_to_exit(*args: str) -> subprocess.CompletedProcess:
    """Run main.py with the given flags and wait for it to exit on its own."""
    return subprocess.run(
        [sys.executable, str(SERVER_ENTRYPOINT), *args],
        cwd=SERVER_ENTRYPOINT.parent,
        env=server_environment(),
        capture_output=True,
        text=True,
        timeout=15,
        check=False,
    )


def _event_names(info: ServerProcessInfo) -> list:
    return [record.get("event") for record in read_log_events(info["log_file"])]


@pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
def test_signal_exits_cleanly(server_process: ServerProcessInfo, signum: int) -> None:
    """SIGTERM and SIGINT both stop the server with exit status 0."""
    process = server_process["process"]
    send_signal_to_process(process.pid, signum)

    assert process.wait(timeout=15) == 0
    events = _event_names(server_process)
    assert "signal_received" in events
    assert "shutdown_started" in events
    assert events[-1] == "server_stopped"


def test_idle_keep_alive_does_not_delay_exit(server_process: ServerProcessInfo) -> None:
    """Kept-alive connections waiting for a request are closed right away."""
    process = server_process["process"]
    with socket.create_connection(
        (server_process["host"], server_process["port"]), timeout=5
    ) as sock:
        sock.sendall(b"GET /_health HTTP/1.1\r\nHost: x\r\n\r\n")
        assert read_http_response(sock).status_code == 200

        start = time.monotonic()
        send_signal_to_process(process.pid, signal.SIGTERM)
        assert process.wait(timeout=15) == 0
        assert time.monotonic() - start < 5
        assert sock.recv(1) == b""


def test_in_flight_request_completes_during_shutdown(
    server_process: ServerProcessInfo,
) -> None:
    """A request already being read is answered before the process exits."""
    process = server_process["process"]
    with socket.create_connection(
        (server_process["host"], server_process["port"]), timeout=5
    ) as sock:
        sock.sendall(b"GET /hello.txt HTTP/1.1\r\n")
        time.sleep(0.3)
        send_signal_to_process(process.pid, signal.SIGTERM)
        time.sleep(0.3)
        sock.sendall(b"Host: x\r\n\r\n")
        response = read_http_response(sock)

    assert response.status_code == 200
    assert response.body == b"hello world\n"
    assert response.headers["connection"] == "close"
    assert process.wait(timeout=15) == 0


def test_new_connections_refused_after_shutdown(server_process: ServerProcessInfo) -> None:
    """Once the process has exited the port no longer accepts connections."""
    process = server_process["process"]
    send_signal_to_process(process.pid, signal.SIGTERM)
    assert process.wait(timeout=15) == 0

    with pytest.raises(OSError):
        socket.create_connection((server_process["host"], server_process["port"]), timeout=1)


def test_missing_directory_is_fatal(tmp_path: Path) -> None:
    """A directory that does not exist stops startup with status 1."""
    result = _run_to_exit(
        "-a", f"{HOST}:{reserve_port(HOST)}", "-d", str(tmp_path / "missing")
    )

    assert result.returncode == 1
    assert "invalid_configuration" in result.stdout


def test_invalid_address_is_fatal(served_directory: Path) -> None:
    """An unparseable listen address stops startup with status 1."""
    result = _run_to_exit("-a", "no-port-here", "-d", str(served_directory))

    assert result.returncode == 1
    assert "invalid listen address provided" in result.stdout


def test_port_in_use_is_fatal(served_directory: Path) -> None:
    """A listen address that is already bound stops startup with status 1."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind((HOST, 0))
        blocker.listen()
        port = blocker.getsockname()[1]
        result = _run_to_exit("-a", f"{HOST}:{port}", "-d", str(served_directory))

    assert result.returncode == 1
    assert "listen_failed" in result.stdout


def test_unreadable_tls_files_are_fatal(served_directory: Path, tmp_path: Path) -> None:
    """Certificate files that cannot be read stop startup with status 1."""
    result = _run_to_exit(
        "-a",
        f"{HOST}:{reserve_port(HOST)}",
        "-d",
        str(served_directory),
        "-c",
        str(tmp_path / "cert.pem"),
        "-k",
        str(tmp_path / "key.pem"),
    )

    assert result.returncode == 1
    assert "invalid_tls_config" in result.stdout


def test_bad_flag_value_is_usage_error(served_directory: Path) -> None:
    """A non-integer timeout flag exits with the usage status."""
    result = _run_to_exit("-d", str(served_directory), "-idle-timeout", "soon")

    assert result.returncode == 2
    assert "idle-timeout" in result.stderr
