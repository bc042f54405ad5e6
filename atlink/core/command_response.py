"""AT command and response data model.

This module defines the immutable AtCommand descriptor, the CommandType
classification modes, and the immutable AtResponse handed back to callers.
The mutable accumulator used while a command is in flight is private to the
channel's read loop (see ResponseBuilder).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union
import time

from atlink.core.at_errors import AtError, try_parse_error
from atlink.core.exceptions import ATCommandError


TIMEOUT_FINAL_RESPONSE = "Command timed out"
CLOSED_FINAL_RESPONSE = "Channel closed"


class CommandType(Enum):
    """How intermediate lines are accepted while a command is outstanding.

    - NO_RESULT: no intermediates; other lines are unsolicited
    - NUMERIC: one intermediate starting with a decimal digit
    - SINGLE_LINE: one intermediate starting with the response prefix
    - MULTI_LINE: any number of intermediates starting with the prefix
    - MULTI_LINE_NO_PREFIX: every line until the final response
    - CUSTOM_END_OF_LINE: extension point, classified like NO_RESULT
    """
    NO_RESULT = "no_result"
    NUMERIC = "numeric"
    SINGLE_LINE = "single_line"
    MULTI_LINE = "multi_line"
    MULTI_LINE_NO_PREFIX = "multi_line_no_prefix"
    CUSTOM_END_OF_LINE = "custom_end_of_line"


_PREFIXED_TYPES = (CommandType.SINGLE_LINE, CommandType.MULTI_LINE)


class ResponseStatus(Enum):
    """AT command response status.

    - SUCCESS: final line was OK or CONNECT
    - ERROR: final line was an error marker, or a required intermediate was missing
    - TIMEOUT: no final line within the command timeout
    - CLOSED: the channel closed while the caller was waiting
    """
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    CLOSED = "closed"


@dataclass(frozen=True)
class AtCommand:
    """Immutable AT command descriptor.

    Attributes:
        command_type: Classification mode for intermediate lines
        command: Command text without terminator (e.g., "AT+CSQ")
        response_prefix: Expected intermediate prefix (e.g., "+CSQ:")
        payload: Raw payload written after a "> " prompt, if any
        timeout: Seconds to wait for the final response
    """

    command_type: CommandType
    command: str
    response_prefix: Optional[str] = None
    payload: Optional[Union[str, bytes]] = None
    timeout: float = 5.0

    def __post_init__(self):
        if self.command_type in _PREFIXED_TYPES and not self.response_prefix:
            raise ValueError(
                f"{self.command_type.value} commands require a response prefix"
            )
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout}")


@dataclass(frozen=True)
class AtResponse:
    """Immutable AT command response.

    Attributes:
        command: AT command string sent
        intermediates: Intermediate lines in arrival order
        final_response: Final line (or a timeout/closed sentinel)
        success: True when the command completed successfully
        status: Outcome classification
        execution_time: Seconds from send to completion
        timestamp: Unix timestamp when the response was created
    """

    command: str
    intermediates: Tuple[str, ...]
    final_response: Optional[str]
    success: bool
    status: ResponseStatus
    execution_time: float = 0.0
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def timed_out(cls, command: str, execution_time: float) -> 'AtResponse':
        """Response returned to a caller whose command got no final line in time."""
        return cls(
            command=command,
            intermediates=(),
            final_response=TIMEOUT_FINAL_RESPONSE,
            success=False,
            status=ResponseStatus.TIMEOUT,
            execution_time=execution_time
        )

    @classmethod
    def closed(cls, command: str, execution_time: float = 0.0) -> 'AtResponse':
        """Response returned to a caller released by close() or end of stream."""
        return cls(
            command=command,
            intermediates=(),
            final_response=CLOSED_FINAL_RESPONSE,
            success=False,
            status=ResponseStatus.CLOSED,
            execution_time=execution_time
        )

    @property
    def first_intermediate(self) -> Optional[str]:
        """First intermediate line, the result of SINGLE_LINE/NUMERIC commands."""
        return self.intermediates[0] if self.intermediates else None

    @property
    def error(self) -> Optional[AtError]:
        """Structured CME/CMS error, if the final line carries one."""
        if self.success:
            return None
        return try_parse_error(self.final_response)

    def is_successful(self) -> bool:
        return self.success

    def get_response_text(self) -> str:
        """Join intermediates and final line into a single string.

        Example:
            >>> response.get_response_text()
            '+CSQ: 10,99\\nOK'
        """
        lines: List[str] = list(self.intermediates)
        if self.final_response is not None:
            lines.append(self.final_response)
        return '\n'.join(lines)

    def raise_for_error(self) -> 'AtResponse':
        """Raise ATCommandError unless the response is successful.

        Returns:
            self, so calls can be chained

        Raises:
            ATCommandError: Response status is not SUCCESS
        """
        if not self.success:
            raise ATCommandError(
                f"Command failed: {self.final_response}",
                self.command,
                self
            )
        return self

    def with_success(self, success: bool) -> 'AtResponse':
        """Return a copy with a different outcome.

        Used for the post-condition downgrade of commands that must return
        an intermediate line.
        """
        return AtResponse(
            command=self.command,
            intermediates=self.intermediates,
            final_response=self.final_response,
            success=success,
            status=ResponseStatus.SUCCESS if success else ResponseStatus.ERROR,
            execution_time=self.execution_time,
            timestamp=self.timestamp
        )

    def __str__(self) -> str:
        """Format response for display."""
        if self.status == ResponseStatus.SUCCESS:
            return (f"[{self.status.value}] {self.command} -> "
                    f"{len(self.intermediates)} lines ({self.execution_time:.3f}s)")
        elif self.status == ResponseStatus.ERROR:
            error_info = f" ({self.error})" if self.error else f" ({self.final_response})"
            return f"[{self.status.value}] {self.command}{error_info} ({self.execution_time:.3f}s)"
        else:
            return f"[{self.status.value}] {self.command} ({self.execution_time:.3f}s)"


class ResponseBuilder:
    """Mutable accumulator for the response of the active command.

    Owned by the channel's read loop for the duration of one request.
    """

    def __init__(self, command: AtCommand):
        self.command = command
        self.intermediates: List[str] = []
        self.final_response: Optional[str] = None
        self.success = False
        self._started = time.monotonic()

    def add_intermediate(self, line: str) -> None:
        self.intermediates.append(line)

    def accepts(self, line: str) -> bool:
        """Check whether the line is an intermediate for this command."""
        command_type = self.command.command_type

        if command_type == CommandType.NUMERIC:
            return not self.intermediates and line[:1].isdigit() and line[:1].isascii()
        elif command_type == CommandType.SINGLE_LINE:
            return not self.intermediates and line.startswith(self.command.response_prefix)
        elif command_type == CommandType.MULTI_LINE:
            return line.startswith(self.command.response_prefix)
        elif command_type == CommandType.MULTI_LINE_NO_PREFIX:
            return True

        # NO_RESULT and CUSTOM_END_OF_LINE
        return False

    def finalize(self, final_line: str, success: bool) -> AtResponse:
        self.final_response = final_line
        self.success = success
        return AtResponse(
            command=self.command.command,
            intermediates=tuple(self.intermediates),
            final_response=final_line,
            success=success,
            status=ResponseStatus.SUCCESS if success else ResponseStatus.ERROR,
            execution_time=time.monotonic() - self._started
        )
