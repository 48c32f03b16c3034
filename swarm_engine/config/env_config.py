"""
Environment configuration - Load settings from .env files
"""

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv


class EnvConfig:
    """
    Load and read configuration from environment variables and .env files.

    Priority:
    1. Environment variables already set in the process (highest)
    2. .env file in the current directory or up to 3 parents
    """

    _loaded_path: Optional[Path] = None

    @classmethod
    def load_env_file(cls, path: Optional[str] = None) -> bool:
        """
        Load environment variables from a .env file.

        Args:
            path: Path to .env file (default: search current dir and parents)

        Returns:
            True if a file was loaded, False otherwise
        """
        if path:
            env_path: Optional[Path] = Path(path)
        else:
            env_path = None
            current = Path.cwd()
            for _ in range(4):
                candidate = current / ".env"
                if candidate.exists():
                    env_path = candidate
                    break
                if current.parent == current:
                    break
                current = current.parent

        if env_path and env_path.exists():
            load_dotenv(env_path, override=False)
            cls._loaded_path = env_path
            return True

        return False

    @staticmethod
    def get(key: str, default: Optional[str] = None) -> Optional[str]:
        """Get environment variable with optional default."""
        return os.getenv(key, default)

    @staticmethod
    def get_bool(key: str, default: bool = False) -> bool:
        """Get boolean environment variable."""
        value = os.getenv(key)
        if value is None:
            return default
        return value.strip().lower() in ('true', '1', 'yes', 'on')

    @staticmethod
    def get_int(key: str, default: int = 0) -> int:
        """Get integer environment variable."""
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default


def normalize_int(value: Any, fallback: int, minimum: int, maximum: int) -> int:
    """
    Coerce a settings value into a clamped integer.

    Accepts ints, floats and numeric strings; anything else yields ``fallback``.
    """
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = int(value.strip(), 10)
        except ValueError:
            return fallback
    else:
        return fallback
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return fallback
    return max(minimum, min(maximum, int(parsed)))
