"""cpptrim: removes unreachable code from a single merged C++ translation unit."""

__version__ = "0.3.0"

from .errors import CompilationError, OptimizerError, RewriteError
from .optimizer import Optimizer

__all__ = ['Optimizer', 'OptimizerError', 'CompilationError', 'RewriteError', '__version__']
