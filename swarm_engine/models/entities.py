"""
Collaborator entities - agents, sessions, schedules, secrets, skills, memories

These records are owned by other parts of the platform; the engine reads them
and appends to session transcripts. Unknown keys survive a round trip via ``extra``.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from .task import split_known


def _to_dict(obj) -> Dict[str, Any]:
    data: Dict[str, Any] = dict(getattr(obj, "extra", {}) or {})
    for f in fields(obj):
        if f.name == "extra":
            continue
        value = getattr(obj, f.name)
        if isinstance(value, list):
            value = [v.to_dict() if hasattr(v, "to_dict") else v for v in value]
        elif hasattr(value, "to_dict"):
            value = value.to_dict()
        data[f.name] = value
    return data


@dataclass
class ToolEvent:
    """A tool invocation recorded on a transcript message."""
    name: str
    input: str = ""
    output: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "input": self.input, "output": self.output}

    @classmethod
    def from_dict(cls, data: dict) -> "ToolEvent":
        return cls(
            name=str(data.get("name") or ""),
            input=str(data.get("input") or ""),
            output=str(data.get("output") or ""),
        )


@dataclass
class SessionMessage:
    """One transcript entry."""
    role: str
    text: str
    time: int = 0
    kind: Optional[str] = None  # chat, heartbeat, system
    image_url: Optional[str] = None
    image_path: Optional[str] = None
    tool_events: List[ToolEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {"role": self.role, "text": self.text, "time": self.time}
        if self.kind:
            data["kind"] = self.kind
        if self.image_url:
            data["image_url"] = self.image_url
        if self.image_path:
            data["image_path"] = self.image_path
        if self.tool_events:
            data["tool_events"] = [e.to_dict() for e in self.tool_events]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SessionMessage":
        return cls(
            role=str(data.get("role") or ""),
            text=data.get("text") if isinstance(data.get("text"), str) else "",
            time=int(data.get("time") or 0),
            kind=data.get("kind"),
            image_url=data.get("image_url"),
            image_path=data.get("image_path"),
            tool_events=[
                ToolEvent.from_dict(e) for e in data.get("tool_events") or [] if isinstance(e, dict)
            ],
        )


@dataclass
class Session:
    """An execution or chat session and its transcript."""
    id: str
    name: str = ""
    cwd: str = ""
    user: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    credential_id: Optional[str] = None
    api_endpoint: Optional[str] = None
    session_type: str = "human"  # human, orchestrated
    agent_id: Optional[str] = None
    parent_session_id: Optional[str] = None
    tools: List[str] = field(default_factory=list)
    messages: List[SessionMessage] = field(default_factory=list)
    heartbeat_enabled: Optional[bool] = None
    main: bool = False
    created_at: int = 0
    last_active_at: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        known, extra = split_known(cls, data)
        known["messages"] = [
            SessionMessage.from_dict(m) for m in known.get("messages") or [] if isinstance(m, dict)
        ]
        known["tools"] = list(known.get("tools") or [])
        return cls(extra=extra, **known)


@dataclass
class Agent:
    """An agent definition: persona, model and delegation roster."""
    id: str
    name: str
    description: str = ""
    system_prompt: str = ""
    soul: str = ""
    provider: str = "anthropic"
    model: str = ""
    credential_id: Optional[str] = None
    api_endpoint: Optional[str] = None
    is_orchestrator: bool = False
    sub_agent_ids: List[str] = field(default_factory=list)
    tools: List[str] = field(default_factory=list)
    skills: List[str] = field(default_factory=list)
    skill_ids: List[str] = field(default_factory=list)
    thread_session_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Agent":
        known, extra = split_known(cls, data)
        for key in ("sub_agent_ids", "tools", "skills", "skill_ids"):
            known[key] = list(known.get(key) or [])
        return cls(extra=extra, **known)


@dataclass
class Schedule:
    """A recurring trigger that creates tasks; only continuity fields are used here."""
    id: str
    name: str = ""
    agent_id: Optional[str] = None
    last_session_id: Optional[str] = None
    updated_at: int = 0
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Schedule":
        known, extra = split_known(cls, data)
        return cls(extra=extra, **known)


@dataclass
class Secret:
    """A credential an orchestrator may hand to a delegate."""
    id: str
    name: str
    service: str
    value: str = ""
    scope: str = "global"  # global, agent
    agent_ids: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def visible_to(self, agent_id: str) -> bool:
        if self.scope == "global":
            return True
        return self.scope == "agent" and agent_id in self.agent_ids

    def to_dict(self) -> dict:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Secret":
        known, extra = split_known(cls, data)
        known["agent_ids"] = list(known.get("agent_ids") or [])
        known.setdefault("name", "")
        known.setdefault("service", "")
        return cls(extra=extra, **known)


@dataclass
class Skill:
    """Prompt text injected into an agent's system prompt."""
    id: str
    name: str
    content: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "Skill":
        known, _ = split_known(cls, data)
        known.setdefault("name", "")
        return cls(**known)


@dataclass
class MemoryEntry:
    """Long-term memory stored by an orchestrator."""
    id: str
    agent_id: str
    category: str
    title: str
    content: str
    session_id: Optional[str] = None
    created_at: int = 0

    def to_dict(self) -> dict:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryEntry":
        known, _ = split_known(cls, data)
        for key in ("agent_id", "category", "title", "content"):
            known.setdefault(key, "")
        return cls(**known)
