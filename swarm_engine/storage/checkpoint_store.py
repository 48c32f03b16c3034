"""
Checkpoint Store - durable LangGraph checkpoints for the orchestrator graph.

Backed by ``langgraph.checkpoint.sqlite.SqliteSaver``: its ``checkpoints`` and
``writes`` tables are keyed by thread id, which for queue runs is the task id.
This module only adds opening by path, closing and per-thread counts.
"""

import sqlite3
from pathlib import Path
from typing import Union

from langgraph.checkpoint.sqlite import SqliteSaver

from swarm_engine.utils.exceptions import StorageError
from swarm_engine.utils.logger import get_logger

logger = get_logger(__name__)


class SqliteCheckpointSaver(SqliteSaver):
    """
    SqliteSaver bound to one database file, shareable across threads.

    Usage:
        saver = SqliteCheckpointSaver.from_path("data/checkpoints.db")
        app = graph.compile(checkpointer=saver)
        ...
        saver.delete_thread(task_id)
    """

    @classmethod
    def from_path(cls, db_path: Union[str, Path] = ":memory:") -> "SqliteCheckpointSaver":
        db_path = str(db_path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageError("checkpoints", f"could not open checkpoint database {db_path}", e) from e
        saver = cls(conn)
        saver.setup()
        logger.info(f"Checkpoint store ready at {db_path}")
        return saver

    def close(self) -> None:
        with self.lock:
            self.conn.close()

    def count_checkpoints(self, thread_id: str) -> int:
        with self.cursor(transaction=False) as cur:
            cur.execute("SELECT COUNT(*) FROM checkpoints WHERE thread_id = ?", (str(thread_id),))
            return int(cur.fetchone()[0])

    def count_writes(self, thread_id: str) -> int:
        with self.cursor(transaction=False) as cur:
            cur.execute("SELECT COUNT(*) FROM writes WHERE thread_id = ?", (str(thread_id),))
            return int(cur.fetchone()[0])
