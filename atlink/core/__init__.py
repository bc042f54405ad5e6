"""Core AT channel components.

Serial transport, line framing, command/response model, the channel engine
and the unsolicited event sink.
"""

from atlink.core.at_channel import AtChannel, ChannelState
from atlink.core.at_errors import AtError, AtErrorKind, try_parse_error
from atlink.core.at_reader import AtReader, ReadResult, ReadStatus
from atlink.core.at_writer import AtWriter
from atlink.core.command_response import (
    AtCommand,
    AtResponse,
    CommandType,
    ResponseStatus,
    TIMEOUT_FINAL_RESPONSE,
    CLOSED_FINAL_RESPONSE
)
from atlink.core.exceptions import (
    AtLinkError,
    SerialPortError,
    SerialPortBusyError,
    ConnectionTimeoutError,
    ChannelStateError,
    ATCommandError
)
from atlink.core.serial_handler import SerialHandler, PortInfo
from atlink.core.unsolicited import UnsolicitedDispatcher, UnsolicitedEvent

__all__ = [
    'AtChannel',
    'ChannelState',
    'AtError',
    'AtErrorKind',
    'try_parse_error',
    'AtReader',
    'ReadResult',
    'ReadStatus',
    'AtWriter',
    'AtCommand',
    'AtResponse',
    'CommandType',
    'ResponseStatus',
    'TIMEOUT_FINAL_RESPONSE',
    'CLOSED_FINAL_RESPONSE',
    'SerialHandler',
    'PortInfo',
    'UnsolicitedDispatcher',
    'UnsolicitedEvent',
    'AtLinkError',
    'SerialPortError',
    'SerialPortBusyError',
    'ConnectionTimeoutError',
    'ChannelStateError',
    'ATCommandError',
]
