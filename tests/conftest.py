"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, Optional, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port
from tests.utils.logs import wait_for_log_event

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"
HOST = "127.0.0.1"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    process: subprocess.Popen[str]
    log_file: Path


def server_environment(extra_env: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Return the parent environment stripped of APLOS_* variables."""

    env = {key: value for key, value in os.environ.items() if not key.startswith("APLOS_")}
    env.update(extra_env or {})
    return env


def launch_server(
    directory: Path,
    extra_args: Optional[list[str]] = None,
    extra_env: Optional[dict[str, str]] = None,
    scheme: str = "http",
) -> Generator[ServerProcessInfo, None, None]:
    """Start main.py on a free port and stop it once the generator resumes."""

    port = reserve_port(HOST)
    log_file = directory.parent / f"{directory.name}-server.log"
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "-a",
        f"{HOST}:{port}",
        "-d",
        str(directory),
        "-log-destination",
        str(log_file),
    ]
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        env=server_environment(extra_env),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(HOST, port)
            wait_for_log_event(log_file, "server_listening")
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"{scheme}://{HOST}:{port}",
            "host": HOST,
            "port": port,
            "directory": directory,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=15)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture()
def served_directory(tmp_path: Path) -> Path:
    """Provide a small tree to serve: an index-less root, a file and a subdirectory."""

    root = tmp_path / "pub"
    root.mkdir()
    (root / "hello.txt").write_text("hello world\n")
    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_text("<h1>docs</h1>")
    return root


@pytest.fixture(name="server_process")
def _server_process(served_directory: Path) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server in a background process for integration tests."""

    yield from launch_server(served_directory)


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]


@pytest.fixture(scope="session")
def tls_pair(tmp_path_factory: "TempPathFactory") -> tuple[Path, Path]:
    """Generate a self-signed localhost certificate and key once per session."""

    from tests.utils.tls import write_self_signed_pair

    return write_self_signed_pair(tmp_path_factory.mktemp("tls"))
