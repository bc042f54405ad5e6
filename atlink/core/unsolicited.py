"""Fan-out of unsolicited modem events.

Lines that do not belong to the active command (network registration
changes, incoming message indications, ring notifications) are queued by
the read loop and delivered to subscribers from a dedicated consumer thread,
so a slow subscriber never stalls line classification.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
import logging
import queue
import threading
import time

from atlink.core.at_errors import AtError, try_parse_error

logger = logging.getLogger(__name__)


DEFAULT_QUEUE_SIZE = 256

_STOP = object()


@dataclass(frozen=True)
class UnsolicitedEvent:
    """One unsolicited line, or a header line plus its payload line.

    Two-line events come from message indications such as ``+CMT:`` where
    the second line carries the message PDU or text.

    Attributes:
        line1: First (or only) line
        line2: Payload line of a two-line event
        timestamp: Unix timestamp when the event was read
    """
    line1: str
    line2: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_two_line(self) -> bool:
        return self.line2 is not None

    @property
    def lines(self) -> Tuple[str, ...]:
        if self.line2 is None:
            return (self.line1,)
        return (self.line1, self.line2)

    @property
    def error(self) -> Optional[AtError]:
        """Structured error when the event is a stray CME/CMS error line."""
        return try_parse_error(self.line1)


UnsolicitedCallback = Callable[[UnsolicitedEvent], None]


class UnsolicitedDispatcher:
    """Delivers unsolicited events to subscribers on a consumer thread.

    ``dispatch`` never blocks: when the bounded queue is full the event is
    dropped and counted in ``dropped_count``.

    Example:
        >>> dispatcher = UnsolicitedDispatcher()
        >>> dispatcher.subscribe(lambda event: print(event.line1))
        >>> dispatcher.start()
        >>> dispatcher.dispatch(UnsolicitedEvent('+CREG: 1'))
        >>> dispatcher.stop()
    """

    def __init__(self, max_queue_size: int = DEFAULT_QUEUE_SIZE):
        self.max_queue_size = max_queue_size
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._subscribers: List[UnsolicitedCallback] = []
        self._subscribers_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    @property
    def dropped_count(self) -> int:
        return self._dropped

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def subscribe(self, callback: UnsolicitedCallback) -> Callable[[], None]:
        """Register a callback for every subsequent event.

        Returns:
            Function that removes the subscription when called
        """
        with self._subscribers_lock:
            self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: UnsolicitedCallback) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        with self._subscribers_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def dispatch(self, event: UnsolicitedEvent) -> bool:
        """Queue an event for delivery without blocking.

        Returns:
            False when the queue was full and the event was dropped
        """
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self._dropped += 1
            logger.warning(
                f"Unsolicited queue full ({self.max_queue_size}), dropped: {event.line1!r}"
            )
            return False

    def start(self) -> None:
        """Start the consumer thread. Does nothing if already running."""
        if self.is_running:
            return
        self._thread = threading.Thread(
            target=self._run,
            name="atlink-unsolicited",
            daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 2.0) -> None:
        """Deliver queued events, then stop the consumer thread."""
        thread = self._thread
        if thread is None:
            return
        if thread is threading.current_thread():
            # Called from a subscriber; the consumer exits after this event
            try:
                self._queue.put_nowait(_STOP)
            except queue.Full:
                logger.warning("Unsolicited queue full, consumer not stopped")
                return
            self._thread = None
            return

        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Unsolicited queue still full, consumer not stopped")
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Unsolicited consumer did not stop in time")
        self._thread = None

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            if event is _STOP:
                break
            self._deliver(event)

    def _deliver(self, event: UnsolicitedEvent) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Unsolicited subscriber {callback!r} failed")
