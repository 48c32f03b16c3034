"""
Standardized Exception Hierarchy for SwarmEngine

Every failure raised inside the engine derives from SwarmEngineError so the
queue can turn it into a retry, a dead-letter or a user-facing comment.

Exception Categories:
- Configuration Errors: bad settings, missing agents, missing provider packages
- Execution Errors: an attempt failed, timed out or was cancelled
- Approval Errors: approve/resume called on a task that is not paused
- Storage Errors: unreadable or unwritable collections

Usage:
    from swarm_engine.utils.exceptions import AgentNotFoundError, wrap_exception

    if agent is None:
        raise AgentNotFoundError(task.agent_id)

    try:
        result = graph.run(...)
    except Exception as e:
        raise wrap_exception(e, "orchestrator_run", {"task_id": task.id})
"""

from typing import Optional, Any, Dict


# ============================================================================
# Base Exception
# ============================================================================

class SwarmEngineError(Exception):
    """
    Base exception for all SwarmEngine errors.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for categorization
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        return self.message


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(SwarmEngineError):
    """Raised when there's an issue with configuration or settings."""

    def __init__(
        self,
        setting_name: str,
        message: str,
        expected_value: Optional[Any] = None,
        actual_value: Optional[Any] = None
    ):
        details = {"setting_name": setting_name}
        if expected_value is not None:
            details["expected_value"] = str(expected_value)
        if actual_value is not None:
            details["actual_value"] = str(actual_value)

        super().__init__(
            message=f"Configuration error for '{setting_name}': {message}",
            error_code="CONFIG_ERROR",
            details=details
        )
        self.setting_name = setting_name


class MissingDependencyError(SwarmEngineError):
    """Raised when a model provider package is not installed."""

    def __init__(
        self,
        package_name: str,
        install_command: Optional[str] = None,
        purpose: Optional[str] = None
    ):
        message = f"Required package '{package_name}' is not installed"
        if purpose:
            message += f" (needed for {purpose})"
        if install_command:
            message += f"\nInstall with: {install_command}"

        super().__init__(
            message=message,
            error_code="MISSING_DEPENDENCY",
            details={
                "package_name": package_name,
                "install_command": install_command,
                "purpose": purpose
            }
        )
        self.package_name = package_name


class AgentNotFoundError(SwarmEngineError):
    """Raised when a task references an agent that does not exist. Never retried."""

    def __init__(self, agent_id: str):
        super().__init__(
            message=f"Agent {agent_id} not found",
            error_code="AGENT_NOT_FOUND",
            details={"agent_id": agent_id}
        )
        self.agent_id = agent_id


class TaskNotFoundError(SwarmEngineError):
    """Raised when an operation references an unknown task."""

    def __init__(self, task_id: str):
        super().__init__(
            message=f"Task {task_id} not found",
            error_code="TASK_NOT_FOUND",
            details={"task_id": task_id}
        )
        self.task_id = task_id


# ============================================================================
# Execution Errors
# ============================================================================

class ExecutionError(SwarmEngineError):
    """Base class for attempt-time errors. Retried per the task's policy."""
    pass


class AgentExecutionError(ExecutionError):
    """Raised when an agent fails to execute a task."""

    def __init__(
        self,
        operation: str,
        message: str,
        agent_name: Optional[str] = None,
        task_id: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            error_code="AGENT_EXEC_ERROR",
            details={
                "operation": operation,
                "agent_name": agent_name,
                "task_id": task_id,
                "original_error": str(original_error) if original_error else None
            }
        )
        self.operation = operation
        self.agent_name = agent_name
        self.original_error = original_error


class ExecutionTimeoutError(ExecutionError):
    """Raised when an ongoing run exceeds its wall-clock budget."""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            message="Ongoing loop stopped after reaching the configured runtime limit.",
            error_code="TIMEOUT",
            details={"timeout_seconds": timeout_seconds}
        )
        self.timeout_seconds = timeout_seconds


class ExecutionCancelledError(ExecutionError):
    """Raised when the caller's abort signal stops a run between steps."""

    def __init__(self, thread_id: Optional[str] = None):
        super().__init__(
            message="Execution was cancelled before completion.",
            error_code="CANCELLED",
            details={"thread_id": thread_id}
        )
        self.thread_id = thread_id


class ApprovalError(SwarmEngineError):
    """Raised when approve/resume is requested for a task that is not paused."""

    def __init__(self, task_id: str, message: str):
        super().__init__(
            message=message,
            error_code="APPROVAL_ERROR",
            details={"task_id": task_id}
        )
        self.task_id = task_id


# ============================================================================
# Storage Errors
# ============================================================================

class StorageError(SwarmEngineError):
    """Raised when a durable collection cannot be read or written."""

    def __init__(
        self,
        collection: str,
        message: str,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=f"Storage error in '{collection}': {message}",
            error_code="STORAGE_ERROR",
            details={
                "collection": collection,
                "original_error": str(original_error) if original_error else None
            }
        )
        self.collection = collection
        self.original_error = original_error


# ============================================================================
# Convenience Functions
# ============================================================================

def wrap_exception(
    original_error: Exception,
    operation: str,
    context: Optional[Dict[str, Any]] = None
) -> SwarmEngineError:
    """
    Wrap a generic exception in an appropriate SwarmEngine exception.

    Args:
        original_error: The original exception to wrap
        operation: The operation that was being performed
        context: Additional context about the error

    Returns:
        An appropriate SwarmEngineError subclass
    """
    context = context or {}

    if isinstance(original_error, SwarmEngineError):
        return original_error

    if isinstance(original_error, ImportError):
        return MissingDependencyError(
            package_name=context.get("package_name", "unknown"),
            purpose=operation,
            install_command=context.get("install_command")
        )

    if isinstance(original_error, (IOError, OSError)) and "collection" in context:
        return StorageError(
            collection=context["collection"],
            message=str(original_error),
            original_error=original_error
        )

    return AgentExecutionError(
        operation=operation,
        message=str(original_error) or original_error.__class__.__name__,
        agent_name=context.get("agent_name"),
        task_id=context.get("task_id"),
        original_error=original_error
    )


__all__ = [
    "SwarmEngineError",
    "ConfigurationError",
    "MissingDependencyError",
    "AgentNotFoundError",
    "TaskNotFoundError",
    "ExecutionError",
    "AgentExecutionError",
    "ExecutionTimeoutError",
    "ExecutionCancelledError",
    "ApprovalError",
    "StorageError",
    "wrap_exception",
]
