"""Server lifecycle state and in-flight connection tracking."""

import enum
import logging
import socket
import threading
import time

from aplos.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("aplos.lifecycle"), {})


class LifecycleState(enum.Enum):
    """Server states; SHUTTING_DOWN is terminal."""

    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


def _force_close(connection: socket.socket) -> None:
    try:
        connection.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    connection.close()


class ServerLifecycle:
    """Manages server lifecycle state and tracks open client connections.

    Each tracked connection is flagged busy while a request is being served
    and idle while it waits for the next request on a kept-alive connection.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._connections: dict[socket.socket, bool] = {}

    @property
    def state(self) -> LifecycleState:
        """Return the current lifecycle state."""
        if self._stop_event.is_set():
            return LifecycleState.SHUTTING_DOWN
        return LifecycleState.RUNNING

    def is_shutting_down(self) -> bool:
        """Check if graceful shutdown has begun."""
        return self._stop_event.is_set()

    def register_connection(self, connection: socket.socket) -> None:
        """Register a new, idle client connection for tracking."""
        with self._lock:
            self._connections[connection] = False

    def cleanup_connection(self, connection: socket.socket) -> None:
        """Remove a client connection from tracking."""
        with self._lock:
            self._connections.pop(connection, None)

    def mark_busy(self, connection: socket.socket) -> None:
        """Flag a connection as serving a request."""
        with self._lock:
            if connection in self._connections:
                self._connections[connection] = True

    def mark_idle(self, connection: socket.socket) -> None:
        """Flag a connection as waiting for its next request."""
        with self._lock:
            if connection in self._connections:
                self._connections[connection] = False

    def has_connection(self, connection: socket.socket) -> bool:
        """Return True when the connection is currently tracked."""
        with self._lock:
            return connection in self._connections

    def active_connection_count(self) -> int:
        """Return the number of currently tracked connections."""
        with self._lock:
            return len(self._connections)

    def begin_shutdown(self) -> bool:
        """Transition to SHUTTING_DOWN; return False if already there."""
        with self._lock:
            if self._stop_event.is_set():
                return False
            self._stop_event.set()
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={
                "event": "shutdown_started",
                "state": LifecycleState.SHUTTING_DOWN.value,
            },
        )
        return True

    def close_idle_connections(self) -> int:
        """Close connections that are not serving a request."""
        with self._lock:
            idle = [conn for conn, busy in self._connections.items() if not busy]
            for connection in idle:
                del self._connections[connection]
        for connection in idle:
            _force_close(connection)
        return len(idle)

    def wait_for_connections(self, timeout: float) -> bool:
        """Wait for all tracked connections to close within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            self.close_idle_connections()
            with self._lock:
                remaining_connections = len(self._connections)
            if not remaining_connections:
                return True
            if time.monotonic() >= deadline:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_connections": remaining_connections,
                    },
                )
                return False
            time.sleep(0.05)

    def close_connections(self) -> int:
        """Forcibly close every tracked connection and return how many were closed."""
        with self._lock:
            connections = list(self._connections)
            self._connections.clear()
        for connection in connections:
            _force_close(connection)
        return len(connections)
