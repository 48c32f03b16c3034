"""
Utilities module - Logging, exceptions and id helpers
"""

from .logger import get_logger
from .ids import gen_id, now_ms
from .exceptions import (
    SwarmEngineError,
    ConfigurationError,
    MissingDependencyError,
    AgentNotFoundError,
    TaskNotFoundError,
    ExecutionError,
    AgentExecutionError,
    ExecutionTimeoutError,
    ExecutionCancelledError,
    ApprovalError,
    StorageError,
    wrap_exception,
)

__all__ = [
    'get_logger',
    'gen_id',
    'now_ms',
    'SwarmEngineError',
    'ConfigurationError',
    'MissingDependencyError',
    'AgentNotFoundError',
    'TaskNotFoundError',
    'ExecutionError',
    'AgentExecutionError',
    'ExecutionTimeoutError',
    'ExecutionCancelledError',
    'ApprovalError',
    'StorageError',
    'wrap_exception',
]
