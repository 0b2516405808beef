"""Failure classification for queue acknowledgment decisions.

Maps an exception to RECOVERABLE (worth a redelivery) or TERMINAL (drop the
message). Classification reads the message text so that errors raised by
third-party SDKs, which never share our exception types, are still sorted.
Anything that matches neither list is treated as recoverable.
"""

from __future__ import annotations

import re
from enum import Enum

from quality_worker.utils.errors import TerminalError


class ErrorClass(str, Enum):
    RECOVERABLE = "recoverable"
    TERMINAL = "terminal"


TERMINAL_PATTERNS: tuple[str, ...] = (
    r"not found",
    r"não encontrad",
    r"no associated record",
    r"association",
    r"already processed",
    r"duplicate",
    r"validation",
    r"invalid",
    r"missing field",
)

RECOVERABLE_PATTERNS: tuple[str, ...] = (
    r"network",
    r"timeout",
    r"timed out",
    r"connection",
    r"temporar",
    r"unavailable",
    r"econnreset",
    r"\b503\b",
    r"\b429\b",
)

_TERMINAL_RE = re.compile("|".join(TERMINAL_PATTERNS), re.IGNORECASE)
_RECOVERABLE_RE = re.compile("|".join(RECOVERABLE_PATTERNS), re.IGNORECASE)


def classify_error(exc: BaseException) -> ErrorClass:
    """Decide whether a failed message should be retried.

    Terminal patterns win over recoverable ones when both match.

    Args:
        exc: The exception that aborted message processing.

    Returns:
        ErrorClass.TERMINAL or ErrorClass.RECOVERABLE.
    """
    if isinstance(exc, TerminalError):
        return ErrorClass.TERMINAL

    # args[0] skips the [file=...] prefix so file names cannot sway the match
    text = str(exc.args[0]) if exc.args else str(exc)
    if _TERMINAL_RE.search(text):
        return ErrorClass.TERMINAL
    if _RECOVERABLE_RE.search(text):
        return ErrorClass.RECOVERABLE
    # TODO: confirm with the quality team whether unmatched errors should
    # stay fail-open; today they burn the full retry budget.
    return ErrorClass.RECOVERABLE
