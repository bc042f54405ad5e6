"""Structured error extraction from final-response error lines.

Modems report extended errors as ``+CME ERROR: <n>`` (equipment errors,
3GPP TS 27.007) or ``+CMS ERROR: <n>`` (message service errors, TS 27.005).
Plain ``ERROR``, ``NO CARRIER`` and verbose-mode text errors carry no code.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import re


class AtErrorKind(Enum):
    """Family of a structured AT error."""
    CME = "CME"
    CMS = "CMS"


_ERROR_PATTERNS = (
    (AtErrorKind.CME, re.compile(r'\+CME ERROR:[ \t]*([0-9]+)[ \t]*')),
    (AtErrorKind.CMS, re.compile(r'\+CMS ERROR:[ \t]*([0-9]+)[ \t]*')),
)


@dataclass(frozen=True)
class AtError:
    """Structured error parsed from a final-response line.

    Attributes:
        kind: Error family (CME or CMS)
        code: Numeric error code
    """
    kind: AtErrorKind
    code: int

    def __str__(self) -> str:
        return f"{self.kind.value} ERROR {self.code}"


def try_parse_error(final_line: Optional[str]) -> Optional[AtError]:
    """Parse a CME/CMS error line.

    Args:
        final_line: Final-response line, terminator already stripped

    Returns:
        AtError when the line is ``+CME ERROR: <digits>`` or
        ``+CMS ERROR: <digits>``, otherwise None

    Example:
        >>> try_parse_error("+CME ERROR: 10")
        AtError(kind=<AtErrorKind.CME: 'CME'>, code=10)
        >>> try_parse_error("NO CARRIER") is None
        True
    """
    if not final_line:
        return None

    for kind, pattern in _ERROR_PATTERNS:
        match = pattern.fullmatch(final_line)
        if match:
            return AtError(kind=kind, code=int(match.group(1)))

    return None
