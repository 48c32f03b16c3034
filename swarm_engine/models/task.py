"""
Task module - Board task structure and its nested records

Tasks are persisted as plain dicts inside the ``tasks`` collection. Fields this
engine does not know about are kept in ``extra`` so a load/save round trip never
drops data written by other collaborators.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from .enums import TaskStatus


def split_known(cls, data: Dict[str, Any]) -> tuple:
    """Split ``data`` into (fields declared on ``cls``, everything else)."""
    names = {f.name for f in fields(cls)}
    known = {k: v for k, v in data.items() if k in names and k != "extra"}
    extra = {k: v for k, v in data.items() if k not in names}
    return known, extra


@dataclass
class TaskComment:
    """One entry of a task's append-only comment log."""
    id: str
    author: str
    text: str
    created_at: int
    agent_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "author": self.author,
            "text": self.text,
            "created_at": self.created_at,
        }
        if self.agent_id:
            data["agent_id"] = self.agent_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TaskComment":
        known, _ = split_known(cls, data)
        return cls(**known)


@dataclass
class TaskValidation:
    """Outcome of the completion validator."""
    ok: bool
    reasons: List[str] = field(default_factory=list)
    checked_at: int = 0

    def to_dict(self) -> dict:
        return {"ok": self.ok, "reasons": list(self.reasons), "checked_at": self.checked_at}

    @classmethod
    def from_dict(cls, data: dict) -> "TaskValidation":
        return cls(
            ok=bool(data.get("ok")),
            reasons=[str(r) for r in data.get("reasons") or []],
            checked_at=int(data.get("checked_at") or 0),
        )


@dataclass
class PendingApproval:
    """A tool call the graph paused on, waiting for human sign-off."""
    tool_name: str
    args: Dict[str, Any]
    thread_id: str

    def to_dict(self) -> dict:
        return {"tool_name": self.tool_name, "args": dict(self.args), "thread_id": self.thread_id}

    @classmethod
    def from_dict(cls, data: dict) -> "PendingApproval":
        return cls(
            tool_name=str(data.get("tool_name") or "unknown"),
            args=dict(data.get("args") or {}),
            thread_id=str(data.get("thread_id") or ""),
        )


@dataclass
class TaskCheckpointNote:
    """Free-form progress note shown on the board."""
    note: str
    updated_at: int
    last_session_id: Optional[str] = None
    last_run_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "note": self.note,
            "updated_at": self.updated_at,
            "last_session_id": self.last_session_id,
            "last_run_id": self.last_run_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TaskCheckpointNote":
        known, _ = split_known(cls, data)
        known.setdefault("note", "")
        known.setdefault("updated_at", 0)
        return cls(**known)


@dataclass
class BoardTask:
    """
    The unit of orchestrated work.

    Mutated only by queue transitions, comment-appending collaborators and
    the validator. Timestamps are epoch milliseconds.
    """
    id: str
    title: str
    description: str = ""
    agent_id: str = ""
    status: TaskStatus = TaskStatus.BACKLOG
    session_id: Optional[str] = None

    attempts: int = 0
    max_attempts: Optional[int] = None
    retry_backoff_sec: Optional[int] = None
    retry_scheduled_at: Optional[int] = None
    dead_lettered_at: Optional[int] = None

    result: Optional[str] = None
    error: Optional[str] = None
    validation: Optional[TaskValidation] = None
    completion_report_path: Optional[str] = None
    comments: List[TaskComment] = field(default_factory=list)
    checkpoint: Optional[TaskCheckpointNote] = None
    pending_approval: Optional[PendingApproval] = None

    created_at: int = 0
    queued_at: Optional[int] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    updated_at: int = 0

    cwd: Optional[str] = None
    user: Optional[str] = None
    source_type: Optional[str] = None
    source_schedule_id: Optional[str] = None
    source_schedule_name: Optional[str] = None
    created_in_session_id: Optional[str] = None
    delegated_by_agent_id: Optional[str] = None
    run_number: Optional[int] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_schedule_task(self) -> bool:
        return self.source_type == "schedule" and bool(self.source_schedule_id)

    def add_comment(self, comment: TaskComment) -> None:
        self.comments.append(comment)

    def to_dict(self) -> dict:
        data: Dict[str, Any] = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if isinstance(value, TaskStatus):
                value = value.value
            elif f.name == "comments":
                value = [c.to_dict() for c in value]
            elif hasattr(value, "to_dict"):
                value = value.to_dict()
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BoardTask":
        known, extra = split_known(cls, data)
        status = known.get("status") or TaskStatus.BACKLOG.value
        try:
            known["status"] = TaskStatus(status)
        except ValueError:
            known["status"] = TaskStatus.BACKLOG
        known["comments"] = [
            TaskComment.from_dict(c) for c in known.get("comments") or [] if isinstance(c, dict)
        ]
        if isinstance(known.get("validation"), dict):
            known["validation"] = TaskValidation.from_dict(known["validation"])
        else:
            known["validation"] = None
        if isinstance(known.get("pending_approval"), dict):
            known["pending_approval"] = PendingApproval.from_dict(known["pending_approval"])
        else:
            known["pending_approval"] = None
        if isinstance(known.get("checkpoint"), dict):
            known["checkpoint"] = TaskCheckpointNote.from_dict(known["checkpoint"])
        else:
            known["checkpoint"] = None
        if not isinstance(known.get("attempts"), int) or known["attempts"] < 0:
            known["attempts"] = 0
        known.setdefault("title", "")
        return cls(extra=extra, **known)
