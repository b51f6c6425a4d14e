"""Configuration management for cpptrim.

Loads environment variables (optionally from a ``.env`` file) and provides
centralized config access. Command-line options override these values.
"""
import os
from pathlib import Path
from typing import List, Optional
from dotenv import load_dotenv

DEFAULT_ENTRY_POINTS = ['main']
DEFAULT_STD = 'c++17'
DEFAULT_LOG_LEVEL = 'WARNING'


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Configuration loader with environment variable support."""

    def __init__(self, env_file: Optional[str | Path] = None):
        """Initialize config by loading a .env file.

        Args:
            env_file: Explicit .env path (default: ``.env`` in the working directory)
        """
        env_path = Path(env_file) if env_file is not None else Path.cwd() / ".env"
        # Variables already in the environment win over the file
        load_dotenv(env_path, override=False)

    @property
    def keep_macros(self) -> List[str]:
        """Macro names whose definitions are never removed.

        Returns:
            Names from CPPTRIM_KEEP_MACROS (comma separated)
        """
        return _split_list(os.getenv("CPPTRIM_KEEP_MACROS"))

    @property
    def entry_points(self) -> List[str]:
        """Qualified names that are always kept.

        Priority:
        1. CPPTRIM_ENTRY_POINTS environment variable (comma separated)
        2. Fallback to ``main``

        Returns:
            List of qualified names
        """
        return _split_list(os.getenv("CPPTRIM_ENTRY_POINTS")) or list(DEFAULT_ENTRY_POINTS)

    @property
    def std(self) -> str:
        """Language standard used to define ``__cplusplus``."""
        return os.getenv("CPPTRIM_STD", DEFAULT_STD)

    @property
    def log_level(self) -> str:
        return os.getenv("CPPTRIM_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()


# Singleton instance
_config = None


def get_config() -> Config:
    """Get or create singleton Config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config():
    """Forget the singleton so the next get_config() rereads the environment file."""
    global _config
    _config = None
