"""Exception types raised by the optimizer pipeline.

OptimizerError (base)
├── CompilationError  - no parse context could be established for the input
│                       (unreadable file, bad arguments, syntax errors in
│                       active code). Aborts the file before any pruning.
└── RewriteError      - internal inconsistency while materializing edits.
                        Never escapes SmartRewriter.get_result().
"""


class OptimizerError(Exception):
    """Base class for all optimizer failures."""


class CompilationError(OptimizerError):
    """The input could not be parsed into a usable translation unit."""

    def __init__(self, message: str, diagnostics=None):
        super().__init__(message)
        self.diagnostics = list(diagnostics or [])


class RewriteError(OptimizerError):
    """An edit could not be applied to the original buffer."""
