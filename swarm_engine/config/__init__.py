"""
Configuration module - Settings and configuration management
"""

from .engine_config import (
    EngineConfig,
    LLMConfig,
    LLMProvider,
    QueueConfig,
    RuntimeLoopConfig,
    StorageConfig,
)
from .env_config import EnvConfig, normalize_int

__all__ = [
    'EngineConfig',
    'LLMConfig',
    'LLMProvider',
    'QueueConfig',
    'RuntimeLoopConfig',
    'StorageConfig',
    'EnvConfig',
    'normalize_int',
]
