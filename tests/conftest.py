"""Shared fixtures for the cpptrim test suite."""
import pytest

from cpptrim.analyzer.collector import DependenciesCollector
from cpptrim.analyzer.parser import LanguageParser
from cpptrim.analyzer.preprocessor import PreprocessorScanner
from cpptrim.config import reset_config
from cpptrim.optimizer import Optimizer


@pytest.fixture
def parser():
    """Fresh C++ parser."""
    return LanguageParser()


@pytest.fixture
def scan(parser):
    """Run the preprocessor scanner over a buffer and return it."""
    def _scan(source: bytes, predefined=None, undefined=None):
        tree = parser.parse_source(source)
        scanner = PreprocessorScanner(source, parser, predefined, undefined)
        scanner.scan(tree.root_node)
        return scanner
    return _scan


@pytest.fixture
def collect(scan, parser):
    """Run scanner and collector; return the collector."""
    def _collect(source: bytes, entry_points=('main',)):
        scanner = scan(source)
        collector = DependenciesCollector(source, scanner, entry_points)
        collector.collect(parser.parse_source(source).root_node)
        return collector
    return _collect


@pytest.fixture
def optimize():
    """Optimize a source string and return the text."""
    def _optimize(source: str, **kwargs) -> str:
        return Optimizer(**kwargs).optimize_source(source)
    return _optimize


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Isolate tests from CPPTRIM_* variables and the config singleton."""
    for name in ('CPPTRIM_KEEP_MACROS', 'CPPTRIM_ENTRY_POINTS', 'CPPTRIM_STD', 'CPPTRIM_LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()
