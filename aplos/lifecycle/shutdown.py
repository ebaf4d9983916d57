"""Signal-driven shutdown coordination."""

import enum
import logging
import queue
import signal
from dataclasses import dataclass
from typing import Iterable, Optional

from aplos.domain.correlation_id import CorrelationLoggerAdapter

SHUTDOWN_LOGGER = CorrelationLoggerAdapter(logging.getLogger("aplos.shutdown"), {})

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class StopReason(enum.Enum):
    """Why the main thread was woken up."""

    SIGNAL = "signal"
    SERVER_STOPPED = "server_stopped"


@dataclass(frozen=True)
class StopNotice:
    """A single notification posted to the coordinator."""

    reason: StopReason
    signal_number: Optional[int] = None
    error: Optional[BaseException] = None


class ShutdownCoordinator:
    """Blocks the main thread until a termination signal or serve-loop exit.

    Signal handlers and the serve thread only post a StopNotice to a
    SimpleQueue, which is safe to call from a signal handler; the main thread
    reacts to the first notice it receives.
    """

    def __init__(self, signals: Iterable[int] = SHUTDOWN_SIGNALS) -> None:
        self._signals = tuple(signals)
        self._notices: "queue.SimpleQueue[StopNotice]" = queue.SimpleQueue()
        self._previous_handlers: dict[int, object] = {}

    def install(self) -> None:
        """Register the signal handlers; must be called from the main thread."""
        for signum in self._signals:
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)

    def restore(self) -> None:
        """Reinstate the handlers that were active before install()."""
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _on_signal(self, signum: int, _frame) -> None:
        self._notices.put(StopNotice(StopReason.SIGNAL, signal_number=signum))

    def notify_server_stopped(self, error: Optional[BaseException] = None) -> None:
        """Report that the serve loop has returned, optionally with its failure."""
        self._notices.put(StopNotice(StopReason.SERVER_STOPPED, error=error))

    def wait(self, timeout: Optional[float] = None) -> Optional[StopNotice]:
        """Block until the first notice arrives; return None on timeout."""
        try:
            notice = self._notices.get(timeout=timeout)
        except queue.Empty:
            return None
        if notice.reason is StopReason.SIGNAL:
            SHUTDOWN_LOGGER.info(
                "Caught signal, shutting down",
                extra={
                    "event": "signal_received",
                    "signal": signal.Signals(notice.signal_number).name,
                },
            )
        return notice
