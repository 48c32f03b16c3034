"""
Models module - Data structures and type definitions
"""

from .enums import TaskStatus, CapabilityPolicyMode, LoopMode, ArtifactType
from .task import BoardTask, TaskComment, TaskValidation, PendingApproval, TaskCheckpointNote
from .entities import (
    Agent,
    MemoryEntry,
    Schedule,
    Secret,
    Session,
    SessionMessage,
    Skill,
    ToolEvent,
)
from .results import Artifact, TaskResult

__all__ = [
    'TaskStatus',
    'CapabilityPolicyMode',
    'LoopMode',
    'ArtifactType',
    'BoardTask',
    'TaskComment',
    'TaskValidation',
    'PendingApproval',
    'TaskCheckpointNote',
    'Agent',
    'MemoryEntry',
    'Schedule',
    'Secret',
    'Session',
    'SessionMessage',
    'Skill',
    'ToolEvent',
    'Artifact',
    'TaskResult',
]
