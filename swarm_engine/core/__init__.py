"""
Core module - Task queue, execution graph and their policy/extraction helpers
"""

from .engine import SwarmEngine
from .task_queue import TaskQueue, compute_retry_delay_sec
from .orchestrator_graph import OrchestratorGraph, OrchestratorRunResult, describe_graph
from .notifications import NotificationHub, get_notification_hub, notify
from .capability_policy import resolve_session_tool_policy, resolve_concrete_tool_policy_block
from .task_validation import validate_task_completion
from .task_result import extract_task_result, format_result_body
from .task_reports import ensure_task_completion_report
from .chat_turn import ChatTurnExecutor, ChatTurnResult

__all__ = [
    'SwarmEngine',
    'TaskQueue',
    'compute_retry_delay_sec',
    'OrchestratorGraph',
    'OrchestratorRunResult',
    'describe_graph',
    'NotificationHub',
    'get_notification_hub',
    'notify',
    'resolve_session_tool_policy',
    'resolve_concrete_tool_policy_block',
    'validate_task_completion',
    'extract_task_result',
    'format_result_body',
    'ensure_task_completion_report',
    'ChatTurnExecutor',
    'ChatTurnResult',
]
