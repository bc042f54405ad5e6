"""Communication logging for AT channel traffic.

Records commands, responses, unsolicited events and port events for
debugging and troubleshooting.
"""

from atlink.logging.log_models import LogEntry
from atlink.logging.file_handler import FileHandler
from atlink.logging.communication_logger import CommunicationLogger

__all__ = ['LogEntry', 'FileHandler', 'CommunicationLogger']
