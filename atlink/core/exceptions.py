"""Custom exception hierarchy for atlink.

Only transport faults and programming misuse are raised. Ordinary protocol
failures (ERROR final lines, timeouts, a channel closing under a waiting
caller) are reported through AtResponse values instead.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from atlink.core.command_response import AtResponse


class AtLinkError(Exception):
    """Base exception for all atlink errors."""
    pass


class SerialPortError(AtLinkError):
    """Serial port communication error.

    Raised when serial port operations fail (open, read, write).
    Captures port identifier and underlying OS error for diagnostics.

    Attributes:
        port: Serial port identifier (e.g., '/dev/ttyUSB0', 'COM3')
        os_error: Original exception from pyserial or OS (if available)
    """

    def __init__(self, message: str, port: str, os_error: Optional[Exception] = None):
        super().__init__(message)
        self.port = port
        self.os_error = os_error

    def __str__(self) -> str:
        """Format error message with port context."""
        base_msg = super().__str__()
        if self.os_error:
            return f"{base_msg} (port: {self.port}, cause: {self.os_error})"
        return f"{base_msg} (port: {self.port})"


class SerialPortBusyError(SerialPortError):
    """Port is already in use by another process."""
    pass


class ConnectionTimeoutError(SerialPortError):
    """Opening the port did not complete in time."""
    pass


class ChannelStateError(AtLinkError):
    """Channel used in a state that does not allow the operation.

    Raised for misuse such as sending on a closed channel, sending before
    the read loop is started, or starting a channel twice.

    Attributes:
        state: Short description of the channel state at the time of the call
    """

    def __init__(self, message: str, state: str):
        super().__init__(message)
        self.state = state

    def __str__(self) -> str:
        return f"{super().__str__()} (channel: {self.state})"


class ATCommandError(AtLinkError):
    """AT command finished unsuccessfully.

    Never raised by the channel itself; AtResponse.raise_for_error() raises
    it for callers that prefer exceptions over status checks.

    Attributes:
        command: AT command string that failed
        response: AtResponse with the final line and status
    """

    def __init__(self, message: str, command: str, response: 'AtResponse'):
        super().__init__(message)
        self.command = command
        self.response = response

    def __str__(self) -> str:
        """Format error message with command context."""
        base_msg = super().__str__()
        return f"{base_msg} (command: {self.command}, status: {self.response.status.value})"
