"""Tests for compiler option parsing and configuration."""
import logging

import pytest
from rich.logging import RichHandler

from cpptrim.config import Config, get_config, reset_config
from cpptrim.errors import CompilationError
from cpptrim.optimizer import CompileOptions
from cpptrim.utils import logger as logger_module
from cpptrim.utils.logger import sanitize_for_terminal, setup_logging


class TestCompileOptions:
    """Only preprocessing-relevant options matter; others are ignored."""

    def test_defines_attached_and_separate(self):
        options = CompileOptions.parse(['-DFAST', '-D', 'LEVEL=3', '-DEMPTY='])
        assert options.defines == {'FAST': '1', 'LEVEL': '3', 'EMPTY': ''}

    def test_undefine_removes_define(self):
        options = CompileOptions.parse(['-DX=1', '-UX'])
        assert 'X' not in options.defines
        assert 'X' in options.undefines
        assert 'X' not in options.predefined_macros()

    def test_include_directories(self):
        options = CompileOptions.parse(['-Iinclude', '-I', 'other', '-isystem', '/usr/include'])
        assert options.include_dirs == ['include', 'other']
        assert options.system_include_dirs == ['/usr/include']

    def test_standard_sets_cplusplus(self):
        assert CompileOptions.parse(['-std=c++14']).predefined_macros()['__cplusplus'] == '201402L'
        assert CompileOptions.parse(['-std=gnu++2a']).cplusplus() == '202002L'
        assert CompileOptions.parse([]).cplusplus() == '201703L'

    def test_default_standard(self):
        assert CompileOptions.parse([], default_std='c++11').cplusplus() == '201103L'

    def test_other_flags_ignored(self):
        options = CompileOptions.parse(['-O2', '-Wall', '-fno-exceptions'])
        assert options.ignored == ['-O2', '-Wall', '-fno-exceptions']

    @pytest.mark.parametrize('args', [
        ['main.cpp'],
        ['-D'],
        ['-I'],
        ['-std=c++99'],
        ['-std=c17'],
        ['-D=1'],
    ])
    def test_invalid_arguments(self, args):
        with pytest.raises(CompilationError):
            CompileOptions.parse(args)


class TestConfig:
    """Environment variables and .env files."""

    def test_defaults(self):
        config = Config()
        assert config.entry_points == ['main']
        assert config.keep_macros == []
        assert config.std == 'c++17'
        assert config.log_level == 'WARNING'

    def test_environment(self, monkeypatch):
        monkeypatch.setenv('CPPTRIM_ENTRY_POINTS', 'main, app::run')
        monkeypatch.setenv('CPPTRIM_KEEP_MACROS', 'DEBUG,,VERBOSE')
        monkeypatch.setenv('CPPTRIM_LOG_LEVEL', 'debug')
        config = Config()
        assert config.entry_points == ['main', 'app::run']
        assert config.keep_macros == ['DEBUG', 'VERBOSE']
        assert config.log_level == 'DEBUG'

    def test_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / '.env'
        env_file.write_text('CPPTRIM_STD=c++20\n')
        monkeypatch.setenv('CPPTRIM_STD', 'c++17')
        # Existing environment wins over the file
        assert Config(env_file).std == 'c++17'
        monkeypatch.delenv('CPPTRIM_STD')
        assert Config(env_file).std == 'c++20'
        monkeypatch.delenv('CPPTRIM_STD')

    def test_singleton(self):
        assert get_config() is get_config()
        first = get_config()
        reset_config()
        assert get_config() is not first


class TestLogging:

    def test_setup_replaces_handler(self):
        root = setup_logging('INFO')
        setup_logging('DEBUG')
        handlers = [h for h in root.handlers if isinstance(h, RichHandler)]
        assert len(handlers) == 1
        assert root.level == logging.DEBUG
        assert root.name == 'cpptrim'

    def test_unknown_level_falls_back(self):
        assert setup_logging('LOUD').level == logging.WARNING

    def test_sanitize_on_ascii_terminal(self, monkeypatch):
        monkeypatch.setattr(logger_module, 'is_utf8_capable', lambda: False)
        assert sanitize_for_terminal('✓ a → b') == '[OK] a -> b'

    def test_sanitize_on_utf8_terminal(self, monkeypatch):
        monkeypatch.setattr(logger_module, 'is_utf8_capable', lambda: True)
        assert sanitize_for_terminal('✓ done') == '✓ done'
