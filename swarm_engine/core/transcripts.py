"""
Transcript helpers - create execution sessions and append messages to them.

Every write reloads the sessions collection first and tells the hub that the
session's transcript changed.
"""

from typing import List, Optional

from swarm_engine.models import Agent, Session, SessionMessage, ToolEvent
from swarm_engine.storage import CollectionStore
from swarm_engine.utils.ids import gen_id, now_ms
from swarm_engine.utils.logger import get_logger

from .notifications import NotificationHub

logger = get_logger(__name__)


def append_session_message(
    store: CollectionStore,
    hub: Optional[NotificationHub],
    session_id: Optional[str],
    role: str,
    text: str,
    kind: Optional[str] = None,
    tool_events: Optional[List[ToolEvent]] = None,
) -> bool:
    """Append one message; returns False when the session no longer exists."""
    if not session_id:
        return False
    found = []

    def _append(data):
        record = data.get(session_id)
        if not isinstance(record, dict):
            return None
        session = Session.from_dict({"id": session_id, **record})
        now = now_ms()
        session.messages.append(SessionMessage(
            role=role, text=text, time=now, kind=kind, tool_events=list(tool_events or []),
        ))
        session.last_active_at = now
        data[session_id] = session.to_dict()
        found.append(session_id)
        return None

    store.mutate("sessions", _append)
    if found and hub is not None:
        hub.notify(f"messages:{session_id}")
    return bool(found)


def create_execution_session(
    store: CollectionStore,
    agent: Agent,
    name: str,
    parent_session_id: Optional[str] = None,
    cwd: str = "",
    user: str = "system",
) -> str:
    """Create an orchestrated session scoped to ``agent`` and return its id."""
    now = now_ms()
    session = Session(
        id=gen_id(),
        name=name,
        cwd=cwd,
        user=user,
        provider=agent.provider,
        model=agent.model,
        credential_id=agent.credential_id,
        api_endpoint=agent.api_endpoint,
        session_type="orchestrated",
        agent_id=agent.id,
        parent_session_id=parent_session_id,
        tools=list(agent.tools),
        created_at=now,
        last_active_at=now,
    )

    def _insert(data):
        data[session.id] = session.to_dict()

    store.mutate("sessions", _insert)
    logger.debug(f"Created execution session {session.id} for agent {agent.name}")
    return session.id


def set_session_heartbeat(store: CollectionStore, session_id: Optional[str], enabled: bool) -> bool:
    """Flip the heartbeat flag; returns True when the stored value changed."""
    if not session_id:
        return False
    changed = []

    def _flip(data):
        record = data.get(session_id)
        if not isinstance(record, dict) or record.get("heartbeat_enabled") is enabled:
            return None
        record["heartbeat_enabled"] = enabled
        record["last_active_at"] = now_ms()
        changed.append(session_id)
        return None

    store.mutate("sessions", _flip)
    return bool(changed)
