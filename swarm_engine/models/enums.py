"""
Enums module - Task status and other enumeration types
"""

from enum import Enum


class TaskStatus(str, Enum):
    """Board task lifecycle: backlog -> queued -> running -> completed | queued (retry) | failed"""
    BACKLOG = "backlog"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CapabilityPolicyMode(str, Enum):
    """Global default stance of the capability policy"""
    PERMISSIVE = "permissive"
    BALANCED = "balanced"
    STRICT = "strict"


class LoopMode(str, Enum):
    """Whether graph runs are bounded by steps only or also by wall-clock time"""
    BOUNDED = "bounded"
    ONGOING = "ongoing"


class ArtifactType(str, Enum):
    """Classification of files referenced by an agent's result"""
    IMAGE = "image"
    VIDEO = "video"
    PDF = "pdf"
    FILE = "file"
