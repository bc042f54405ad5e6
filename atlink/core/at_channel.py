"""AT command channel engine.

AtChannel runs one reader thread per serial line. The thread classifies
every incoming line as a final response, an intermediate response of the
active command, a data prompt, or an unsolicited event, and hands finished
responses back to the blocked caller.

Only one command is ever in flight. Callers are serialized by a channel
lock; each call posts a fresh request to the reader thread's mailbox and
waits on that request's own completion signal, so a timed-out request can
never be completed on behalf of the next one.
"""

from enum import Enum
from typing import Callable, Optional, Sequence, Union, TYPE_CHECKING
import logging
import queue
import threading
import time

from atlink.core.at_reader import AtReader, ReadStatus, PROMPT_LINE
from atlink.core.at_writer import AtWriter
from atlink.core.command_response import (
    AtCommand,
    AtResponse,
    CommandType,
    ResponseBuilder
)
from atlink.core.exceptions import ChannelStateError, SerialPortError
from atlink.core.serial_handler import (
    SerialHandler,
    DEFAULT_BAUD_RATE,
    DEFAULT_POLL_INTERVAL
)
from atlink.core.unsolicited import (
    UnsolicitedDispatcher,
    UnsolicitedEvent,
    UnsolicitedCallback,
    DEFAULT_QUEUE_SIZE
)

if TYPE_CHECKING:
    from atlink.config.config_models import Config
    from atlink.logging.communication_logger import CommunicationLogger

logger = logging.getLogger(__name__)


DEFAULT_COMMAND_TIMEOUT = 5.0  # seconds

FINAL_RESPONSE_SUCCESSES = (
    "OK",
    "CONNECT",
)

FINAL_RESPONSE_ERRORS = (
    "ERROR",
    "+CMS ERROR:",
    "+CME ERROR:",
    "NO CARRIER",
    "NO ANSWER",
    "NO DIALTONE",
)

# Unsolicited message indications followed by a payload line (TS 27.005)
TWO_LINE_UNSOLICITEDS = (
    "+CMT:",
    "+CDS:",
    "+CBM:",
)


def is_final_success(line: str) -> bool:
    """True for OK or CONNECT (with or without a rate suffix)."""
    return line.startswith(FINAL_RESPONSE_SUCCESSES)


def is_final_error(line: str) -> bool:
    """True for ERROR, CME/CMS errors and the call-failure finals."""
    return line.startswith(FINAL_RESPONSE_ERRORS)


def is_two_line_unsolicited(line: str) -> bool:
    """True for indications whose payload arrives on the next line."""
    return line.startswith(TWO_LINE_UNSOLICITEDS)


class ChannelState(Enum):
    """Command state of a channel."""
    IDLE = "idle"
    AWAITING = "awaiting"
    COMPLETING = "completing"


class _PendingRequest:
    """One send() call: the command, its accumulator and completion signal.

    Completion and abandonment race (reader thread against a timed-out
    caller); whichever runs first wins and the other becomes a no-op.
    """

    def __init__(self, command: AtCommand):
        self.command = command
        self.builder = ResponseBuilder(command)
        self.pending_payload = command.payload
        self.started = time.monotonic()
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._finished = False
        self._response: Optional[AtResponse] = None

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def response(self) -> Optional[AtResponse]:
        return self._response

    def complete(self, response: AtResponse) -> bool:
        with self._lock:
            if self._finished:
                return False
            self._finished = True
            self._response = response
        self._done.set()
        return True

    def abandon(self) -> bool:
        with self._lock:
            if self._finished:
                return False
            self._finished = True
        return True

    def wait(self, timeout: float) -> bool:
        return self._done.wait(timeout)


class AtChannel:
    """Half-duplex AT command channel over a line reader and writer.

    Example:
        >>> with AtChannel.create('/dev/ttyUSB0') as channel:
        ...     channel.subscribe(lambda event: print(event.lines))
        ...     response = channel.send_expect_single_line('AT+CSQ', '+CSQ:')
        ...     if response.success:
        ...         print(response.first_intermediate)
        +CSQ: 10,99
    """

    def __init__(self,
                 reader: AtReader,
                 writer: AtWriter,
                 transport=None,
                 default_timeout: float = DEFAULT_COMMAND_TIMEOUT,
                 debug_enabled: bool = False,
                 logger: Optional['CommunicationLogger'] = None,
                 dispatcher: Optional[UnsolicitedDispatcher] = None):
        """Initialize the channel.

        Args:
            reader: Line reader for incoming data
            writer: Writer for commands and payloads
            transport: Object with open()/close()/is_connected(), opened by
                open() and closed by close(); usually a SerialHandler
            default_timeout: Seconds to wait when a call gives no timeout
            debug_enabled: Trace every line in and out at DEBUG level
            logger: Optional CommunicationLogger for traffic records
            dispatcher: Unsolicited event sink (a new one by default)
        """
        self.reader = reader
        self.writer = writer
        self.transport = transport
        self.default_timeout = default_timeout
        self.debug_enabled = debug_enabled
        self.logger = logger
        self.dispatcher = dispatcher or UnsolicitedDispatcher()
        self.port_name: Optional[str] = getattr(transport, 'port', None)

        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = ChannelState.IDLE
        self._inflight: Optional[_PendingRequest] = None

        # Owned by the reader thread
        self._mailbox: queue.Queue = queue.Queue()
        self._active: Optional[_PendingRequest] = None

        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._is_open = False
        self._is_closed = False

    @classmethod
    def create(cls,
               port: str,
               baud_rate: int = DEFAULT_BAUD_RATE,
               poll_interval: float = DEFAULT_POLL_INTERVAL,
               default_timeout: float = DEFAULT_COMMAND_TIMEOUT,
               debug_enabled: bool = False,
               logger: Optional['CommunicationLogger'] = None,
               unsolicited_queue_size: int = DEFAULT_QUEUE_SIZE,
               **serial_kwargs) -> 'AtChannel':
        """Build a channel on a pyserial port. The port is opened by open()."""
        handler = SerialHandler(
            port,
            baud_rate=baud_rate,
            poll_interval=poll_interval,
            logger=logger,
            **serial_kwargs
        )
        return cls(
            AtReader(handler),
            AtWriter(handler),
            transport=handler,
            default_timeout=default_timeout,
            debug_enabled=debug_enabled,
            logger=logger,
            dispatcher=UnsolicitedDispatcher(unsolicited_queue_size)
        )

    @classmethod
    def from_config(cls,
                    config: 'Config',
                    port: Optional[str] = None,
                    logger: Optional['CommunicationLogger'] = None) -> 'AtChannel':
        """Build a channel from the serial and channel config sections.

        Raises:
            ValueError: If neither ``port`` nor the config names a port
        """
        port = port or config.serial.port
        if not port:
            raise ValueError("No serial port given and none configured")

        return cls.create(
            port,
            baud_rate=config.serial.baud_rate,
            poll_interval=config.serial.poll_interval,
            default_timeout=config.channel.default_timeout,
            debug_enabled=config.channel.debug,
            logger=logger,
            unsolicited_queue_size=config.channel.unsolicited_queue_size
        )

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def state(self) -> ChannelState:
        with self._state_lock:
            return self._state

    # Lifecycle

    def open(self) -> None:
        """Open the transport, discard stale input and start the reader thread.

        Raises:
            ChannelStateError: Channel already closed
            SerialPortError: Transport could not be opened
        """
        if self._is_closed:
            raise ChannelStateError("Cannot reopen a closed channel", "closed")

        if self.transport is not None and not self.transport.is_connected():
            self.transport.open()
        self._is_open = True
        self.clear()
        if not self.is_running:
            self.start()

    def close(self) -> None:
        """Release waiting callers, stop all threads and close the transport.

        Safe to call multiple times.
        """
        if self._is_closed:
            return
        self._is_closed = True

        with self._state_lock:
            inflight = self._inflight
        if inflight is not None:
            inflight.complete(AtResponse.closed(
                inflight.command.command,
                time.monotonic() - inflight.started
            ))

        self.stop()
        self.dispatcher.stop()

        if self.transport is not None:
            self.transport.close()
        self._is_open = False
        logger.info(f"Channel {self.port_name or ''} closed")

    def start(self) -> None:
        """Start the reader thread and the unsolicited consumer.

        Raises:
            ChannelStateError: Channel closed or already running
        """
        if self._is_closed:
            raise ChannelStateError("Cannot start a closed channel", "closed")
        if self.is_running:
            raise ChannelStateError("Reader thread already running", "running")

        self.dispatcher.start()
        self._cancel = threading.Event()
        self._thread = threading.Thread(
            target=self._reader_loop,
            name=f"atlink-reader-{self.port_name or 'channel'}",
            daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the reader thread and wait for it to exit.

        A caller still waiting for a response is released with a CLOSED
        response once the thread exits.
        """
        thread = self._thread
        if thread is None:
            return
        if thread is threading.current_thread():
            raise ChannelStateError("stop() called from the reader thread", "running")

        self._cancel.set()
        thread.join()
        self._thread = None

    def clear(self) -> int:
        """Discard bytes currently buffered in the transport (best effort).

        Returns:
            Number of bytes discarded
        """
        return self.reader.drain()

    def __enter__(self) -> 'AtChannel':
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # Unsolicited events

    def subscribe(self, callback: UnsolicitedCallback) -> Callable[[], None]:
        """Register a callback for unsolicited events.

        Callbacks run on the dispatcher thread, never on the reader thread.

        Returns:
            Function that removes the subscription
        """
        return self.dispatcher.subscribe(callback)

    def unsubscribe(self, callback: UnsolicitedCallback) -> None:
        """Remove a callback registered with subscribe(); unknown callbacks are ignored."""
        self.dispatcher.unsubscribe(callback)

    # Commands

    def send(self, command: AtCommand) -> AtResponse:
        """Send a command and wait for its final response.

        Args:
            command: Command descriptor

        Returns:
            AtResponse. On timeout: success False, status TIMEOUT and the
            timeout sentinel as final response. Lines of a timed-out command
            that arrive later are classified against the next command.

        Raises:
            ChannelStateError: Channel closed or reader thread not running
            SerialPortError: Command could not be written
        """
        self._ensure_running()

        with self._send_lock:
            # Closed or stopped while queued behind another caller
            if self._is_closed or not self.is_running:
                return AtResponse.closed(command.command)

            request = _PendingRequest(command)
            with self._state_lock:
                self._inflight = request
                self._state = ChannelState.AWAITING

            try:
                self._mailbox.put(request)
                if self._is_closed or not self.is_running:
                    request.complete(AtResponse.closed(command.command))

                if not request.is_finished:
                    self._trace_out(command.command)
                    if self.logger:
                        self.logger.log_command(self.port_name, command.command)
                    try:
                        self.writer.write_command(command.command)
                    except SerialPortError:
                        # close() took the transport away mid-send
                        if not request.is_finished:
                            raise

                if (request.is_finished or request.wait(command.timeout)
                        or not request.abandon()):
                    response = request.response
                else:
                    with self._state_lock:
                        self._state = ChannelState.COMPLETING
                    response = AtResponse.timed_out(
                        command.command,
                        time.monotonic() - request.started
                    )
                    logger.warning(
                        f"{command.command} timed out after {command.timeout}s "
                        f"({len(request.builder.intermediates)} intermediates received)"
                    )
            finally:
                request.abandon()
                with self._state_lock:
                    self._inflight = None
                    self._state = ChannelState.IDLE

        if self.logger:
            self.logger.log_response(
                self.port_name,
                command.command,
                response.get_response_text(),
                response.status.value,
                response.execution_time
            )
        return response

    def send_command(self, command: str, timeout: Optional[float] = None) -> AtResponse:
        """Send a command that returns no intermediate lines."""
        return self.send(AtCommand(
            CommandType.NO_RESULT,
            command,
            timeout=self._timeout(timeout)
        ))

    def send_expect_single_line(self,
                                command: str,
                                response_prefix: str,
                                timeout: Optional[float] = None) -> AtResponse:
        """Send a command whose result is one line starting with ``response_prefix``.

        A success final line without that intermediate is reported as a
        failure.
        """
        return self._require_intermediate(self.send(AtCommand(
            CommandType.SINGLE_LINE,
            command,
            response_prefix,
            timeout=self._timeout(timeout)
        )))

    def send_expect_numeric(self, command: str, timeout: Optional[float] = None) -> AtResponse:
        """Send a command whose result is one line starting with a digit (e.g. AT+CGSN)."""
        return self._require_intermediate(self.send(AtCommand(
            CommandType.NUMERIC,
            command,
            timeout=self._timeout(timeout)
        )))

    def send_expect_multi_line(self,
                               command: str,
                               response_prefix: Optional[str] = None,
                               timeout: Optional[float] = None) -> AtResponse:
        """Send a command returning any number of lines.

        With a prefix only lines starting with it are collected; without one
        every line up to the final response is.
        """
        command_type = CommandType.MULTI_LINE if response_prefix else CommandType.MULTI_LINE_NO_PREFIX
        return self.send(AtCommand(
            command_type,
            command,
            response_prefix,
            timeout=self._timeout(timeout)
        ))

    def send_with_payload(self,
                          command: str,
                          payload: Union[str, bytes],
                          response_prefix: str,
                          timeout: Optional[float] = None) -> AtResponse:
        """Send a command that prompts for a payload, e.g. AT+CMGS.

        The payload and a 0x1A terminator are written when the modem sends
        the "> " prompt. The result line must start with ``response_prefix``.
        """
        return self._require_intermediate(self.send(AtCommand(
            CommandType.SINGLE_LINE,
            command,
            response_prefix,
            payload,
            timeout=self._timeout(timeout)
        )))

    def send_raw_no_ack(self, data: bytes) -> None:
        """Write bytes verbatim and return without waiting for anything.

        Raises:
            ChannelStateError: Channel closed
        """
        if self._is_closed:
            raise ChannelStateError("Cannot write to a closed channel", "closed")
        self._trace_out(data)
        self.writer.write_raw(data)

    def read_raw_bytes(self, count: int, timeout: Optional[float] = None) -> bytes:
        """Read ``count`` bytes ignoring line framing (data-mode transfers).

        Returns:
            Bytes read before the timeout; may be shorter than ``count``
        """
        deadline = time.monotonic() + self._timeout(timeout)
        return self.reader.read_bytes(count, deadline)

    def read_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """Read one CRLF-terminated line, outside the command machinery.

        Intended for probing while the reader thread is stopped; with the
        thread running both compete for the same bytes.

        Returns:
            The line, or None if no complete line arrived in time
        """
        deadline = time.monotonic() + self._timeout(timeout)
        result = self.reader.read_single_line(deadline=deadline)
        if not result.is_line:
            return None
        self._trace_in(result.text)
        return result.text

    def _timeout(self, timeout: Optional[float]) -> float:
        return timeout if timeout is not None else self.default_timeout

    def _ensure_running(self) -> None:
        if self._is_closed:
            raise ChannelStateError("Cannot send on a closed channel", "closed")
        if not self.is_running:
            raise ChannelStateError("Reader thread not started", "stopped")

    @staticmethod
    def _require_intermediate(response: AtResponse) -> AtResponse:
        if response.success and not response.intermediates:
            logger.debug(f"{response.command} returned OK without a result line")
            return response.with_success(False)
        return response

    # Reader thread

    def _reader_loop(self) -> None:
        logger.debug(f"Reader thread started on {self.port_name or 'channel'}")
        try:
            while not self._cancel.is_set():
                result = self.reader.read_line(self._cancel)

                if result.status == ReadStatus.CANCELLED:
                    break
                if result.status == ReadStatus.END_OF_STREAM:
                    logger.info("Transport closed, reader thread exiting")
                    break
                if result.status == ReadStatus.MALFORMED:
                    logger.warning(f"Skipping undecodable line: {result.raw!r}")
                    continue

                line = result.text
                self._trace_in(line)
                if not line:
                    continue

                if not self._process_line(line):
                    break
        except SerialPortError as e:
            logger.error(f"Reader thread stopped by transport error: {e}")
        finally:
            self._release_pending()
            logger.debug("Reader thread exited")

    def _process_line(self, line: str) -> bool:
        """Classify one line. Returns False when the stream ended mid-event."""
        request = self._current_request()

        if request is not None and request.pending_payload is not None and line == PROMPT_LINE:
            # TS 27.005 3.5.1: AT+CMGS and friends prompt with "> "
            payload = request.pending_payload
            request.pending_payload = None
            self._trace_out(payload)
            self.writer.write_payload_and_terminator(payload)
        elif request is not None and is_final_success(line):
            self._finalize(request, line, True)
        elif request is not None and is_final_error(line):
            self._finalize(request, line, False)
        elif is_two_line_unsolicited(line):
            second = self.reader.read_line(self._cancel)
            if not second.is_line:
                return False
            self._trace_in(second.text)
            self._dispatch_unsolicited(line, second.text)
        elif request is not None and request.builder.accepts(line):
            request.builder.add_intermediate(line)
        else:
            self._dispatch_unsolicited(line)

        return True

    def _current_request(self) -> Optional[_PendingRequest]:
        while True:
            try:
                self._active = self._mailbox.get_nowait()
            except queue.Empty:
                break

        if self._active is not None and self._active.is_finished:
            self._active = None
        return self._active

    def _finalize(self, request: _PendingRequest, line: str, success: bool) -> None:
        with self._state_lock:
            if self._inflight is request:
                self._state = ChannelState.COMPLETING
        request.complete(request.builder.finalize(line, success))
        self._active = None

    def _release_pending(self) -> None:
        requests = [self._active] if self._active is not None else []
        while True:
            try:
                requests.append(self._mailbox.get_nowait())
            except queue.Empty:
                break
        self._active = None

        for request in requests:
            request.complete(AtResponse.closed(
                request.command.command,
                time.monotonic() - request.started
            ))

    def _dispatch_unsolicited(self, line1: str, line2: Optional[str] = None) -> None:
        event = UnsolicitedEvent(line1, line2)
        if self.logger:
            self.logger.log_unsolicited(self.port_name, event.lines)
        self.dispatcher.dispatch(event)

    def _trace_in(self, line: str) -> None:
        if self.debug_enabled:
            logger.debug(f"In: {line!r}")
            if self.logger:
                self.logger.log_line(self.port_name, "In", line)

    def _trace_out(self, data: Union[str, bytes, Sequence[int]]) -> None:
        if self.debug_enabled:
            logger.debug(f"Out: {data!r}")
            if self.logger:
                self.logger.log_line(self.port_name, "Out", repr(data))

    def __repr__(self) -> str:
        status = "running" if self.is_running else ("closed" if self._is_closed else "stopped")
        return (f"AtChannel(port={self.port_name!r}, state={self.state.value}, "
                f"{status}, timeout={self.default_timeout}s)")
