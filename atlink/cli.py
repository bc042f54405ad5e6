"""atlink command line interface.

Sends single AT commands, watches unsolicited events and lists serial
ports; useful for bring-up of a modem before writing a driver for it.
"""

from pathlib import Path
from typing import List, Optional
import argparse
import logging
import sys
import time

from atlink.config import ConfigManager, Config, LogLevel
from atlink.core import AtChannel, AtResponse, SerialHandler, UnsolicitedEvent
from atlink.core.exceptions import AtLinkError
from atlink.logging import CommunicationLogger

logger = logging.getLogger(__name__)


DEFAULT_LOG_FILE = "~/.atlink/logs/trace.log"

MODES = ('none', 'numeric', 'single', 'multi')


def discover_ports() -> int:
    """Print available serial ports."""
    ports = SerialHandler.discover_ports()

    if not ports:
        print("No serial ports found.")
        return 0

    print(f"Found {len(ports)} port(s):")
    for port in ports:
        print(f"  {port.device}")
        print(f"    Description: {port.description}")
        print(f"    Hardware ID: {port.hwid}")
    return 0


def print_event(event: UnsolicitedEvent) -> None:
    print(f"[unsolicited] {' | '.join(event.lines)}")


def print_response(response: AtResponse) -> None:
    print(f"\n{'=' * 60}")
    print(f"Command: {response.command}")
    print(f"Status: {response.status.value}")
    print(f"Execution time: {response.execution_time:.3f}s")
    if response.error:
        print(f"Error: {response.error}")
    print("\nResponse:")
    print(response.get_response_text())
    print(f"{'=' * 60}\n")


def execute_command(channel: AtChannel,
                    command: str,
                    mode: str,
                    prefix: Optional[str],
                    payload: Optional[str],
                    timeout: Optional[float]) -> AtResponse:
    """Send one command using the classification selected on the command line."""
    if payload is not None:
        if not prefix:
            raise ValueError("--payload requires --prefix")
        return channel.send_with_payload(command, payload, prefix, timeout)
    if mode == 'numeric':
        return channel.send_expect_numeric(command, timeout)
    if mode == 'single':
        if not prefix:
            raise ValueError("--mode single requires --prefix")
        return channel.send_expect_single_line(command, prefix, timeout)
    if mode == 'multi':
        return channel.send_expect_multi_line(command, prefix, timeout)
    return channel.send_command(command, timeout)


def build_logger(args: argparse.Namespace, config: Config) -> Optional[CommunicationLogger]:
    """Create the traffic logger from flags, falling back to the config file."""
    enabled = args.log or config.logging.enabled
    if not enabled:
        return None

    log_file = args.log_file or config.logging.log_file_path
    log_to_file = bool(args.log_file) or config.logging.log_to_file
    if log_to_file and not log_file:
        log_file = str(Path(DEFAULT_LOG_FILE).expanduser())

    return CommunicationLogger(
        log_level=args.log_level or config.logging.level,
        enable_file=log_to_file,
        enable_console=args.log_to_console or config.logging.log_to_console,
        log_file_path=log_file,
        max_file_size_mb=config.logging.max_file_size_mb,
        backup_count=config.logging.backup_count
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="atlink",
        description="Send AT commands to a modem and watch unsolicited events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --discover-ports
  %(prog)s --port /dev/ttyUSB2 --command AT
  %(prog)s --port /dev/ttyUSB2 --command AT+CSQ --mode single --prefix +CSQ:
  %(prog)s --port COM3 --command AT+COPS=? --mode multi --timeout 120
  %(prog)s --port /dev/ttyUSB2 --monitor 60 --debug
        """
    )

    parser.add_argument('--discover-ports', action='store_true',
                        help='List available serial ports')
    parser.add_argument('--config', type=str, metavar='PATH',
                        help='Configuration file (default: ./atlink.yaml or ~/.atlink/config.yaml)')
    parser.add_argument('--show-config', action='store_true',
                        help='Print the effective configuration and exit')

    parser.add_argument('--port', type=str,
                        help='Serial port device (e.g., COM3, /dev/ttyUSB2)')
    parser.add_argument('--baud', type=int,
                        help='Baud rate (default from config: 115200)')
    parser.add_argument('--command', type=str,
                        help='AT command to send (e.g., "AT+CSQ")')
    parser.add_argument('--mode', choices=MODES, default='none',
                        help='How result lines are collected (default: none)')
    parser.add_argument('--prefix', type=str,
                        help='Result line prefix for single/multi modes (e.g., "+CSQ:")')
    parser.add_argument('--payload', type=str,
                        help='Payload to send after the "> " prompt (implies single mode)')
    parser.add_argument('--timeout', type=float,
                        help='Command timeout in seconds (default from config: 5)')
    parser.add_argument('--monitor', type=float, metavar='SECONDS',
                        help='Print unsolicited events for this many seconds')
    parser.add_argument('--debug', action='store_true',
                        help='Trace every line sent and received')

    parser.add_argument('--log', action='store_true',
                        help='Enable communication logging')
    parser.add_argument('--log-file', type=str, metavar='PATH',
                        help=f'Write the communication log to a file (default: {DEFAULT_LOG_FILE})')
    parser.add_argument('--log-level', choices=[level.value for level in LogLevel],
                        help='Communication log level (default: INFO)')
    parser.add_argument('--log-to-console', action='store_true',
                        help='Write the communication log to stderr')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s"
    )

    if args.discover_ports:
        return discover_ports()

    try:
        manager = ConfigManager.initialize(Path(args.config) if args.config else None)
        config = manager.get_config()
    except (ValueError, OSError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.show_config:
        for section, values in config.to_dict().items():
            print(f"{section}:")
            for key, value in values.items():
                source = manager.get_source(f"{section}.{key}")
                print(f"  {key}: {value}  [{source}]")
        return 0

    port = args.port or config.serial.port
    if not port:
        print("Error: no serial port given (use --port or serial.port in the config)",
              file=sys.stderr)
        return 2
    if not args.command and args.monitor is None:
        print("Error: nothing to do (use --command and/or --monitor)", file=sys.stderr)
        return 2

    comm_logger = build_logger(args, config)
    channel = AtChannel.create(
        port,
        baud_rate=args.baud or config.serial.baud_rate,
        poll_interval=config.serial.poll_interval,
        default_timeout=config.channel.default_timeout,
        debug_enabled=args.debug or config.channel.debug,
        logger=comm_logger,
        unsolicited_queue_size=config.channel.unsolicited_queue_size
    )
    channel.subscribe(print_event)

    exit_code = 0
    try:
        channel.open()

        if args.command:
            response = execute_command(
                channel, args.command, args.mode, args.prefix, args.payload, args.timeout
            )
            print_response(response)
            exit_code = 0 if response.is_successful() else 1

        if args.monitor is not None:
            print(f"Monitoring unsolicited events for {args.monitor:.0f}s (Ctrl+C to stop)")
            time.sleep(args.monitor)

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        exit_code = 1
    except (AtLinkError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1
    finally:
        channel.close()
        if comm_logger is not None:
            comm_logger.close()

    return exit_code
