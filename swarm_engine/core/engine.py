"""
Swarm Engine - wires storage, checkpoints, the graph and the queue together.
"""

from typing import Any, Callable, Dict, Optional

from swarm_engine.config import EngineConfig
from swarm_engine.storage import CollectionStore, SqliteCheckpointSaver
from swarm_engine.utils.logger import get_logger

from .chat_turn import ChatTurnExecutor
from .llm_factory import ModelSpec, build_chat_model
from .notifications import NotificationHub, get_notification_hub
from .orchestrator_graph import OrchestratorGraph
from .task_queue import TaskQueue

logger = get_logger(__name__)


class SwarmEngine:
    """
    Process-wide owner of the task queue and its collaborators.

    Example:
        >>> from swarm_engine import SwarmEngine, EngineConfig, EnvConfig
        >>>
        >>> EnvConfig.load_env_file()
        >>> engine = SwarmEngine(EngineConfig.from_env())
        >>> engine.boot()
        >>> engine.queue.enqueue("a1b2c3d4")
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        hub: Optional[NotificationHub] = None,
        model_factory: Callable[[ModelSpec], Any] = build_chat_model,
        chat_executor: Optional[ChatTurnExecutor] = None,
        auto_kick: bool = True,
    ):
        self.config = config or EngineConfig()
        self.store = CollectionStore(self.config.storage.data_dir)
        self.checkpointer = SqliteCheckpointSaver.from_path(self.config.storage.checkpoint_db)
        self.hub = hub or get_notification_hub()
        self.graph = OrchestratorGraph(self.store, self.checkpointer, self.hub, self.config, model_factory)
        self.queue = TaskQueue(
            self.store, self.graph, self.hub, self.config,
            chat_executor=chat_executor, auto_kick=auto_kick,
        )
        logger.info(f"Engine ready (data dir: {self.config.storage.data_path})")

    def boot(self) -> Dict[str, Any]:
        """Startup reconciliation: heartbeats, stalls, completed audit, then resume."""
        summary = {
            "sessions_cleaned": self.queue.cleanup_finished_task_sessions(),
            "stalled": self.queue.recover_stalled_running_tasks(),
            "validated": self.queue.validate_completed_tasks_queue(),
            "resumed": self.queue.resume_queue(),
        }
        logger.info(f"Boot reconciliation: {summary}")
        return summary

    def close(self) -> None:
        self.queue.shutdown()
        self.checkpointer.close()
