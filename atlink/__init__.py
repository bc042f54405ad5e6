"""atlink - half-duplex AT command channel for cellular modems.

This package provides:
- Line reader and writer for the AT wire format (CRLF lines, "> " prompt)
- A channel engine that serializes commands and classifies responses
- Unsolicited result code delivery on a background consumer
- Traffic logging and YAML configuration
"""

from atlink.core import (
    AtChannel,
    AtCommand,
    AtResponse,
    AtError,
    AtErrorKind,
    CommandType,
    ResponseStatus,
    SerialHandler,
    PortInfo,
    UnsolicitedEvent,
    try_parse_error,
    AtLinkError,
    SerialPortError,
    ChannelStateError,
    ATCommandError,
)

__version__ = "0.1.0"

__all__ = [
    # Channel
    "AtChannel",
    "AtCommand",
    "AtResponse",
    "CommandType",
    "ResponseStatus",
    "UnsolicitedEvent",
    # Errors reported by the modem
    "AtError",
    "AtErrorKind",
    "try_parse_error",
    # Transport
    "SerialHandler",
    "PortInfo",
    # Exceptions
    "AtLinkError",
    "SerialPortError",
    "ChannelStateError",
    "ATCommandError",
]
