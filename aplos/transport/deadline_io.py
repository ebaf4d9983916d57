"""Socket streams whose reads and writes stop at an absolute deadline."""

import io
import socket
import time
from typing import Callable, Optional

DeadlineSource = Callable[[], Optional[float]]


def remaining_time(deadline: Optional[float]) -> Optional[float]:
    """Seconds left until a monotonic deadline; raise TimeoutError once it passed."""
    if deadline is None:
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TimeoutError("deadline exceeded")
    return remaining


class DeadlineReader(io.RawIOBase):
    """Raw reader that re-arms the socket timeout with the time left on every read.

    A client trickling bytes cannot stretch a phase past its deadline, since
    each ``recv`` only gets whatever is left of it.
    """

    def __init__(self, connection: socket.socket, deadline: DeadlineSource) -> None:
        super().__init__()
        self._connection = connection
        self._deadline = deadline

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        self._connection.settimeout(remaining_time(self._deadline()))
        return self._connection.recv_into(buffer)


class DeadlineWriter(io.BufferedIOBase):
    """Unbuffered writer that sends in a loop bounded by the write deadline."""

    def __init__(self, connection: socket.socket, deadline: DeadlineSource) -> None:
        super().__init__()
        self._connection = connection
        self._deadline = deadline

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        pending = memoryview(data).cast("B")
        total = len(pending)
        while pending:
            self._connection.settimeout(remaining_time(self._deadline()))
            sent = self._connection.send(pending)
            pending = pending[sent:]
        return total

    def fileno(self) -> int:
        return self._connection.fileno()
