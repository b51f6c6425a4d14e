"""Console wrapper for Rich that degrades Unicode on non-UTF-8 terminals."""
from typing import Any
from rich.console import Console

from .logger import is_utf8_capable, sanitize_for_terminal


class SafeConsole(Console):
    """Console that sanitizes string output for terminals without UTF-8.

    Source text passed through print() untouched would be mangled by the
    sanitizer, so ``write_source`` bypasses it for optimized output.
    """

    def __init__(self, *args, **kwargs):
        self._needs_sanitization = not is_utf8_capable()
        if self._needs_sanitization:
            kwargs.setdefault('legacy_windows', True)
        super().__init__(*args, **kwargs)

    def print(self, *objects: Any, **kwargs) -> None:
        """Print with automatic Unicode sanitization.

        Args:
            *objects: Objects to print (same as Rich Console.print)
            **kwargs: Keyword arguments (same as Rich Console.print)
        """
        if self._needs_sanitization:
            objects = tuple(sanitize_for_terminal(obj) if isinstance(obj, str) else obj
                            for obj in objects)
        super().print(*objects, **kwargs)

    def write_source(self, text: str) -> None:
        """Write program text verbatim: no markup, highlighting or wrapping."""
        self.out(text, end='', highlight=False)
