"""
Collection Store - JSON file-backed persistence for engine collections.

Each collection (tasks, queue, sessions, ...) is one JSON file under the data
directory and is read and written as a whole. Callers must reload before they
mutate: ``load`` always goes to disk, there is no in-memory cache.
"""

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from swarm_engine.models import (
    Agent,
    BoardTask,
    MemoryEntry,
    Schedule,
    Secret,
    Session,
    Skill,
)
from swarm_engine.utils.exceptions import StorageError
from swarm_engine.utils.logger import get_logger

logger = get_logger(__name__)

# Collections stored as a JSON list rather than an id-keyed object
LIST_COLLECTIONS = {"queue"}

KNOWN_COLLECTIONS = (
    "tasks",
    "queue",
    "agents",
    "sessions",
    "schedules",
    "settings",
    "secrets",
    "skills",
    "memories",
    "credentials",
)

RECORD_TYPES = {
    "tasks": BoardTask,
    "agents": Agent,
    "sessions": Session,
    "schedules": Schedule,
    "secrets": Secret,
    "skills": Skill,
    "memories": MemoryEntry,
}


class CollectionStore:
    """File-based persistence for whole collections."""

    def __init__(self, data_dir: str = "./data"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------

    def path_for(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _empty(self, name: str):
        return [] if name in LIST_COLLECTIONS else {}

    def load(self, name: str):
        """Read a collection fresh from disk."""
        path = self.path_for(name)
        with self._lock:
            if not path.exists():
                return self._empty(name)
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as e:
                raise StorageError(name, "could not read collection file", e) from e
        if not raw.strip():
            return self._empty(name)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(name, f"collection file is not valid JSON ({e.msg})", e) from e
        expected = list if name in LIST_COLLECTIONS else dict
        if not isinstance(data, expected):
            raise StorageError(name, f"expected a JSON {expected.__name__}")
        return data

    def save(self, name: str, data) -> None:
        """Atomically replace a collection on disk."""
        payload = json.dumps(data, indent=2, ensure_ascii=False)
        with self._lock:
            fd, tmp_path = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=str(self.data_dir))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_path, self.path_for(name))
            except OSError as e:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise StorageError(name, "could not write collection file", e) from e

    def mutate(self, name: str, fn: Callable[[Any], Any]):
        """
        Reload, apply ``fn`` and save under the store lock.

        ``fn`` may mutate its argument in place and return None, or return a
        replacement value.
        """
        with self._lock:
            data = self.load(name)
            replaced = fn(data)
            if replaced is not None:
                data = replaced
            self.save(name, data)
            return data

    @contextmanager
    def editing(self, name: str) -> Iterator[Dict[str, Any]]:
        """
        Typed read-modify-write of a keyed collection under the store lock.

        Yields the records freshly loaded from disk and saves them when the
        block exits without raising. Every other writer waits on the block,
        so keep slow work (model calls, report files) outside it.

        Example:
            with store.editing("tasks") as tasks:
                tasks[task_id].status = TaskStatus.QUEUED
        """
        record_type = RECORD_TYPES[name]
        with self._lock:
            records = self._load_typed(name, record_type.from_dict)
            yield records
            self._save_typed(name, records)

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def _load_typed(self, name: str, factory) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in self.load(name).items():
            if not isinstance(value, dict):
                logger.warning(f"Skipping malformed {name} record {key!r}")
                continue
            value.setdefault("id", key)
            out[key] = factory(value)
        return out

    def _save_typed(self, name: str, records: Dict[str, Any]) -> None:
        self.save(name, {key: record.to_dict() for key, record in records.items()})

    def load_tasks(self) -> Dict[str, BoardTask]:
        return self._load_typed("tasks", BoardTask.from_dict)

    def save_tasks(self, tasks: Dict[str, BoardTask]) -> None:
        self._save_typed("tasks", tasks)

    def load_queue(self) -> List[str]:
        return [str(item) for item in self.load("queue") if isinstance(item, str)]

    def save_queue(self, queue: List[str]) -> None:
        self.save("queue", list(queue))

    def load_sessions(self) -> Dict[str, Session]:
        return self._load_typed("sessions", Session.from_dict)

    def save_sessions(self, sessions: Dict[str, Session]) -> None:
        self._save_typed("sessions", sessions)

    def load_agents(self) -> Dict[str, Agent]:
        return self._load_typed("agents", Agent.from_dict)

    def save_agents(self, agents: Dict[str, Agent]) -> None:
        self._save_typed("agents", agents)

    def load_schedules(self) -> Dict[str, Schedule]:
        return self._load_typed("schedules", Schedule.from_dict)

    def save_schedules(self, schedules: Dict[str, Schedule]) -> None:
        self._save_typed("schedules", schedules)

    def load_secrets(self) -> Dict[str, Secret]:
        return self._load_typed("secrets", Secret.from_dict)

    def load_skills(self) -> Dict[str, Skill]:
        return self._load_typed("skills", Skill.from_dict)

    def load_memories(self) -> Dict[str, MemoryEntry]:
        return self._load_typed("memories", MemoryEntry.from_dict)

    def save_memories(self, memories: Dict[str, MemoryEntry]) -> None:
        self._save_typed("memories", memories)

    def load_settings(self) -> Dict[str, Any]:
        return self.load("settings")

    def save_settings(self, settings: Dict[str, Any]) -> None:
        self.save("settings", settings)

    # ------------------------------------------------------------------
    # Transcript helpers
    # ------------------------------------------------------------------

    def get_session(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        return self.load_sessions().get(session_id)
