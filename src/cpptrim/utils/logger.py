"""Logging setup and terminal-safe text for the cpptrim CLI.

Module loggers are plain ``logging.getLogger(__name__)`` loggers; the CLI
routes them through rich's RichHandler. Non-UTF-8 terminals get ASCII
stand-ins for the few symbols the CLI prints.
"""
import locale
import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


# Unicode to ASCII mapping for terminals without UTF-8
ICON_MAP = {
    '✓': '[OK]',
    '✗': '[FAIL]',
    '⚠': '[WARN]',
    '→': '->',
    '←': '<-',
    '…': '...',
    '•': '*',
    '│': '|',
    '─': '-',
}

LOG_FORMAT = "%(name)s: %(message)s"


def detect_terminal_encoding() -> str:
    """Detect the terminal's encoding.

    Returns:
        str: Terminal encoding ('utf-8', 'cp1252', 'ascii', etc.)
    """
    if hasattr(sys.stdout, 'encoding') and sys.stdout.encoding:
        return sys.stdout.encoding.lower()

    encoding = locale.getpreferredencoding(False)
    return encoding.lower() if encoding else 'ascii'


def is_utf8_capable() -> bool:
    """Check if the terminal can handle UTF-8 Unicode characters."""
    return detect_terminal_encoding().replace('-', '').replace('_', '') == 'utf8'


def sanitize_for_terminal(text: str) -> str:
    """Replace Unicode symbols with ASCII equivalents if the terminal can't show them.

    Args:
        text: Text potentially containing Unicode symbols

    Returns:
        str: Text safe for the current terminal
    """
    if is_utf8_capable():
        return text

    sanitized = text
    for unicode_char, ascii_replacement in ICON_MAP.items():
        sanitized = sanitized.replace(unicode_char, ascii_replacement)
    return sanitized


def setup_logging(level: str | int = logging.WARNING,
                  console: Optional[Console] = None) -> logging.Logger:
    """Route the ``cpptrim`` logger hierarchy through a RichHandler.

    Calling it again replaces the handler, so the level can be changed
    between CLI invocations in one process (as tests do).

    Args:
        level: Logging level name or number
        console: Console to log to (defaults to stderr)

    Returns:
        The package root logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    root = logging.getLogger('cpptrim')
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    return root
