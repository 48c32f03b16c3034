"""
Swarm Engine - Task Orchestration & Agent Execution Engine

Runs board tasks on behalf of users: a task is queued, assigned to an agent,
executed as a multi-step tool-using conversation on a checkpointed LangGraph,
validated for genuine completion, and retried or dead-lettered on failure.

Features:
- Single-flight task queue with exponential backoff and dead-lettering
- Resumable agent -> tools -> router graph with sqlite checkpoints
- Human approval of tool calls in strict capability mode
- Completion validation backed by markdown evidence reports
- Topic-based change notifications for UI clients

Installation:
pip install langgraph langchain-anthropic langchain-core python-dotenv fastapi uvicorn

Configuration:
    Create a .env file:

    LLM_API_KEY=sk-ant-...
    ENGINE_LLM_PROVIDER=anthropic
    ENGINE_DATA_DIR=./data

Example:
    >>> from swarm_engine import SwarmEngine, EngineConfig, EnvConfig
    >>>
    >>> EnvConfig.load_env_file()
    >>> engine = SwarmEngine(EngineConfig.from_env())
    >>> engine.boot()
    >>> engine.queue.enqueue(task_id)
"""

__version__ = "1.0.0"
__all__ = [
    'SwarmEngine',
    'TaskQueue',
    'OrchestratorGraph',
    'EngineConfig',
    'EnvConfig',
    'TaskStatus',
    'BoardTask',
]

from swarm_engine.core import SwarmEngine, TaskQueue, OrchestratorGraph
from swarm_engine.config import EngineConfig, EnvConfig
from swarm_engine.models import TaskStatus, BoardTask
