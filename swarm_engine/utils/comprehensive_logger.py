"""
Comprehensive Logging System with File and Console output

Features:
- Configurable log folder (via .env)
- Console and rotating file logging
- Structured context appended as JSON
- Performance metrics tracking
"""

import logging
import logging.handlers
import sys
import os
import json
import traceback
from pathlib import Path
from typing import Optional, Dict, Any


class SafeStreamHandler(logging.StreamHandler):
    """
    StreamHandler that never raises on characters the console cannot encode.
    """
    def emit(self, record):
        try:
            msg = self.format(record)
            stream = self.stream
            try:
                stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                encoding = getattr(stream, "encoding", None) or "utf-8"
                stream.write(msg.encode(encoding, errors="replace").decode(encoding) + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


class ComprehensiveLogger:
    """
    Centralized logging system with file and console support.

    Usage:
        ComprehensiveLogger.initialize(log_folder="./logs", log_level="DEBUG")
        logger = ComprehensiveLogger.get_logger("swarm_engine.core.queue")
        logger.info("Task queued", extra={"task_id": "ab12cd34"})
    """

    _loggers: Dict[str, "TaskLogger"] = {}
    _log_folder: Optional[str] = None
    _config: Dict[str, Any] = {}
    _file_handler: Optional[logging.Handler] = None
    _console_handler: Optional[logging.Handler] = None

    @classmethod
    def initialize(
        cls,
        log_folder: Optional[str] = None,
        log_level: str = "INFO",
        enable_console: bool = True,
        enable_file: bool = True,
        max_bytes: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
        log_file_name: str = "swarm_engine.log"
    ) -> None:
        """
        Initialize the comprehensive logging system.

        Args:
            log_folder: Folder for log files (default: ./logs)
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            enable_console: Enable console logging
            enable_file: Enable file logging
            max_bytes: Max file size before rotation (default: 10MB)
            backup_count: Number of backup files to keep
            log_file_name: Name of the shared rotating log file
        """
        cls._log_folder = log_folder or "./logs"
        cls._config = {
            "log_level": log_level.upper(),
            "enable_console": enable_console,
            "enable_file": enable_file,
            "max_bytes": max_bytes,
            "backup_count": backup_count,
        }

        cls._console_handler = None
        cls._file_handler = None

        if enable_console:
            handler = SafeStreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            cls._console_handler = handler

        if enable_file:
            Path(cls._log_folder).mkdir(parents=True, exist_ok=True)
            try:
                handler = logging.handlers.RotatingFileHandler(
                    os.path.join(cls._log_folder, log_file_name),
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding='utf-8'
                )
                handler.setFormatter(logging.Formatter(
                    '%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
                    datefmt='%Y-%m-%d %H:%M:%S'
                ))
                cls._file_handler = handler
            except OSError as e:
                logging.getLogger("ComprehensiveLogger").warning(f"Failed to add file handler: {e}")

        # Re-attach handlers for loggers created before a re-initialisation
        for task_logger in cls._loggers.values():
            task_logger.attach_handlers(cls._config, cls._handlers())

    @classmethod
    def _handlers(cls) -> list:
        return [h for h in (cls._console_handler, cls._file_handler) if h is not None]

    @classmethod
    def get_logger(cls, name: str) -> "TaskLogger":
        """
        Get or create a logger instance.

        Args:
            name: Logger name (typically __name__)

        Returns:
            TaskLogger instance
        """
        if name not in cls._loggers:
            task_logger = TaskLogger(name)
            task_logger.attach_handlers(cls._config, cls._handlers())
            cls._loggers[name] = task_logger
        return cls._loggers[name]

    @classmethod
    def flush(cls):
        """Flush all loggers."""
        for logger in cls._loggers.values():
            logger.flush()


class TaskLogger:
    """
    Individual logger instance writing to the shared console and file handlers.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def attach_handlers(self, config: Dict[str, Any], handlers: list) -> None:
        self.logger.setLevel(config.get("log_level", "INFO"))
        self.logger.handlers.clear()
        for handler in handlers:
            self.logger.addHandler(handler)

    def debug(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.ERROR, message, extra)

    def critical(self, message: str, extra: Optional[Dict] = None):
        self._log(logging.CRITICAL, message, extra)

    def _log(self, level: int, message: str, extra: Optional[Dict] = None) -> None:
        if extra:
            message = f"{message} | {json.dumps(extra, default=str)}"
        self.logger.log(level, message)

    def log_exception(self, message: str, exc: Optional[BaseException] = None) -> None:
        """
        Log exception with full traceback.

        Args:
            message: Error message
            exc: Exception object (uses current exception if None)
        """
        if exc is not None:
            tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
        else:
            tb = [traceback.format_exc()]
        self.logger.error(f"{message}\n{''.join(tb)}")

    def log_performance(
        self,
        operation: str,
        duration_seconds: float,
        success: bool = True,
        metadata: Optional[Dict] = None
    ) -> None:
        """
        Log how long an operation took.

        Args:
            operation: Operation name
            duration_seconds: Duration in seconds
            success: Whether operation succeeded
            metadata: Additional metadata
        """
        status = "ok" if success else "failed"
        extra = dict(metadata or {})
        extra.update({
            "operation": operation,
            "duration_seconds": round(duration_seconds, 3),
            "success": success
        })
        log_func = self.info if success else self.warning
        log_func(f"{operation} {status} in {duration_seconds:.2f}s", extra=extra)

    def flush(self) -> None:
        """Flush all handlers."""
        for handler in self.logger.handlers:
            handler.flush()
