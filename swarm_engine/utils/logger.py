"""
Logger module - Logging configuration and utilities

Every module calls get_logger(__name__). The first call initialises the
ComprehensiveLogger from .env / environment settings:

    ENGINE_LOG_FOLDER               (default ./logs)
    ENGINE_LOG_LEVEL                (default INFO)
    ENGINE_ENABLE_CONSOLE_LOGGING   (default true)
    ENGINE_ENABLE_FILE_LOGGING      (default true)
    ENGINE_LOG_MAX_BYTES            (default 10485760)
    ENGINE_LOG_BACKUP_COUNT         (default 5)
"""

import logging
import sys
import os
from typing import Optional, Any

_comprehensive_logger_initialized = False


def _ensure_comprehensive_logger_initialized():
    """
    Initialize ComprehensiveLogger with .env configuration on first use.
    """
    global _comprehensive_logger_initialized

    if _comprehensive_logger_initialized:
        return

    _comprehensive_logger_initialized = True

    try:
        from .comprehensive_logger import ComprehensiveLogger
        from swarm_engine.config.env_config import EnvConfig

        EnvConfig.load_env_file()

        ComprehensiveLogger.initialize(
            log_folder=EnvConfig.get("ENGINE_LOG_FOLDER", "./logs"),
            log_level=EnvConfig.get("ENGINE_LOG_LEVEL", "INFO"),
            enable_console=EnvConfig.get_bool("ENGINE_ENABLE_CONSOLE_LOGGING", True),
            enable_file=EnvConfig.get_bool("ENGINE_ENABLE_FILE_LOGGING", True),
            max_bytes=EnvConfig.get_int("ENGINE_LOG_MAX_BYTES", 10485760),
            backup_count=EnvConfig.get_int("ENGINE_LOG_BACKUP_COUNT", 5),
        )

    except Exception as e:
        # Fallback to basic logging if ComprehensiveLogger initialization fails
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        logging.getLogger(__name__).warning(
            f"Failed to initialize ComprehensiveLogger: {e}. Using basic logging."
        )


def get_logger(name: str, level: Optional[str] = None) -> Any:
    """
    Get or create a logger with standard formatting and .env configuration.

    Args:
        name: Logger name (typically __name__)
        level: Optional logging level override for the basic fallback logger

    Returns:
        TaskLogger, or a basic logging.Logger if the comprehensive system is unavailable
    """
    _ensure_comprehensive_logger_initialized()

    try:
        from .comprehensive_logger import ComprehensiveLogger as CL
        return CL.get_logger(name)
    except Exception:
        logger = logging.getLogger(name)

        if not logger.handlers:
            level = (level or os.getenv("ENGINE_LOG_LEVEL", "INFO")).upper()
            logger.setLevel(getattr(logging, level, logging.INFO))

            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            logger.addHandler(handler)

        return logger
