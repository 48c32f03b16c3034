"""
Lifecycle Events - relays task lifecycle events into long-lived chat sessions.

The queue publishes typed events (``task_queued``, ``task_running``, ...).
Each event is appended as a ``system`` assistant message to every main
session the event's user may see, then the hub is told those transcripts
changed. Task results are also posted to the executing agent's thread
session, the delegating agent's thread, and, for schedule-created tasks,
to the main sessions.

Usage:
    relay = LifecycleEventRelay(store, hub)
    relay.publish("task_queued", 'Task queued: "Fix login" (a1b2c3d4)')
"""

import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple

from swarm_engine.models import Agent, BoardTask, Session, SessionMessage, TaskStatus
from swarm_engine.storage import CollectionStore
from swarm_engine.utils.ids import now_ms
from swarm_engine.utils.logger import get_logger

from .notifications import NotificationHub
from .task_result import extract_task_result, format_result_body

logger = get_logger(__name__)

LIFECYCLE_EVENT_TYPES = (
    "task_queued",
    "task_running",
    "task_completed",
    "task_failed",
    "task_retry_scheduled",
    "task_dead_lettered",
    "task_stall_recovered",
    "pending_approval",
)

MAIN_SESSION_NAME = "__main__"
DUPLICATE_WINDOW_MS = 30_000


def is_main_session(session: Optional[Session]) -> bool:
    if session is None:
        return False
    if session.main:
        return True
    if (session.name or "").strip() == MAIN_SESSION_NAME:
        return True
    return (session.id or "").strip().startswith("main-")


def latest_assistant_text(session: Optional[Session]) -> str:
    if session is None:
        return ""
    for message in reversed(session.messages):
        if message.role != "assistant":
            continue
        text = (message.text or "").strip()
        if not text or re.fullmatch(r"HEARTBEAT_OK", text, re.IGNORECASE):
            continue
        return text
    return ""


def _one_line(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _is_recent_duplicate(session: Session, body: str, now: int) -> bool:
    if not session.messages:
        return False
    last = session.messages[-1]
    return last.role == "assistant" and last.text == body and now - (last.time or 0) < DUPLICATE_WINDOW_MS


@dataclass
class LifecycleEvent:
    """Record of one relayed event."""
    event_type: str
    text: str
    user: Optional[str] = None
    sessions_notified: int = 0
    published_at: str = field(default_factory=lambda: datetime.now().isoformat())


class LifecycleEventRelay:
    """Writes lifecycle events and task results into chat transcripts."""

    def __init__(self, store: CollectionStore, hub: NotificationHub, history_max_size: int = 200):
        self.store = store
        self.hub = hub
        self.event_history: Deque[LifecycleEvent] = deque(maxlen=history_max_size)

    def _notify_sessions(self, session_ids: List[str]) -> None:
        for session_id in session_ids:
            self.hub.notify(f"messages:{session_id}")

    def publish(self, event_type: str, text: str, user: Optional[str] = None) -> int:
        """
        Append an event to every visible main session.

        Returns:
            Number of sessions that received the event
        """
        line = _one_line(text)
        if not line:
            return 0
        if event_type not in LIFECYCLE_EVENT_TYPES:
            logger.warning(f"Publishing unregistered lifecycle event type: {event_type}")

        now = now_ms()
        touched: List[str] = []
        with self.store.editing("sessions") as sessions:
            for session in sessions.values():
                if not is_main_session(session):
                    continue
                if user and session.user and session.user != user:
                    continue
                session.messages.append(SessionMessage(role="assistant", text=line, time=now, kind="system"))
                session.last_active_at = now
                touched.append(session.id)

        if touched:
            self._notify_sessions(touched)
            logger.info(f"Lifecycle event {event_type} relayed to {len(touched)} main session(s): {line}")

        self.event_history.append(LifecycleEvent(event_type, line, user, len(touched)))
        return len(touched)

    def get_event_history(self, event_type: Optional[str] = None, limit: int = 100) -> List[LifecycleEvent]:
        history = list(reversed(self.event_history))
        if event_type:
            history = [e for e in history if e.event_type == event_type]
        return history[:limit]

    # ------------------------------------------------------------------
    # Agent thread and schedule messages
    # ------------------------------------------------------------------

    def post_task_started(self, task: BoardTask, agent: Agent) -> None:
        if not agent.thread_session_id:
            return
        run_label = f" (run #{task.run_number})" if task.run_number else ""
        sched_link = f" | [Schedule](#schedule:{task.source_schedule_id})" if task.source_schedule_id else ""
        now = now_ms()
        with self.store.editing("sessions") as sessions:
            thread = sessions.get(agent.thread_session_id)
            if thread is None:
                return
            thread.messages.append(SessionMessage(
                role="assistant",
                text=f"Started task: **[{task.title}](#task:{task.id})**{run_label}{sched_link}",
                time=now,
                kind="system",
            ))
            thread.last_active_at = now
        self._notify_sessions([thread.id])

    def _result_parts(self, task: BoardTask, sessions: Dict[str, Session]):
        run_session = sessions.get(task.session_id) if task.session_id else None
        fallback = latest_assistant_text(run_session)
        result = extract_task_result(run_session, task.result or fallback or None, since_time=task.started_at)
        first_image = next((a for a in result.artifacts if a.type.value == "image"), None)
        return run_session, format_result_body(result), first_image

    def _append_messages(self, posts: List[Tuple[str, SessionMessage]]) -> None:
        if not posts:
            return
        touched: List[str] = []
        with self.store.editing("sessions") as sessions:
            for session_id, message in posts:
                session = sessions.get(session_id)
                if session is None:
                    continue
                session.messages.append(message)
                session.last_active_at = message.time
                touched.append(session_id)
        if touched:
            self._notify_sessions(touched)

    def post_agent_thread_result(self, task: BoardTask) -> None:
        """Post a finished task's result to the executing and delegating agents' threads."""
        if task.status not in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            return
        sessions = self.store.load_sessions()
        agents = self.store.load_agents()
        agent = agents.get(task.agent_id)
        run_session, result_body, first_image = self._result_parts(task, sessions)

        status_label = task.status.value
        task_link = f"[{task.title}](#task:{task.id})"
        now = now_ms()
        posts: List[Tuple[str, SessionMessage]] = []

        def result_block(prefix: str) -> str:
            parts = [prefix]
            if run_session is not None and run_session.cwd:
                parts.append(f"Working directory: `{run_session.cwd}`")
            parts.append(result_body or "No summary.")
            return "\n\n".join(parts)

        def push(thread_id: Optional[str], text: str) -> None:
            if not thread_id or thread_id not in sessions:
                return
            posts.append((thread_id, SessionMessage(
                role="assistant", text=text, time=now, kind="system",
                image_url=first_image.url if first_image else None,
            )))

        if agent is not None:
            push(agent.thread_session_id, result_block(f"Task {status_label}: **{task_link}**"))

        delegator_id = task.delegated_by_agent_id
        if delegator_id and delegator_id != task.agent_id and delegator_id in agents:
            agent_name = agent.name if agent is not None else task.agent_id
            push(
                agents[delegator_id].thread_session_id,
                result_block(f"Delegated task {status_label}: **{task_link}** (by {agent_name})"),
            )

        self._append_messages(posts)

    def post_schedule_result(self, task: BoardTask) -> None:
        """Post a schedule-created task's outcome to the owner's main sessions."""
        if task.source_type != "schedule":
            return
        if task.status not in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            return

        sessions = self.store.load_sessions()
        owner = (task.user or "").strip() or None
        if owner is None and task.created_in_session_id in sessions:
            owner = (sessions[task.created_in_session_id].user or "").strip() or None

        schedule_name = (task.source_schedule_name or "").strip()
        if not schedule_name:
            schedule_name = re.sub(r"^\[Sched\]\s*", "", task.title or "", flags=re.IGNORECASE).strip()
        schedule_name = schedule_name or "Scheduled Task"

        _, result_body, first_image = self._result_parts(task, sessions)
        sched_link = f" | [Schedule](#schedule:{task.source_schedule_id})" if task.source_schedule_id else ""
        body = "\n\n".join([
            f"Scheduled run {task.status.value}: **{schedule_name}** [{task.title}](#task:{task.id}){sched_link}",
            result_body or "No summary was returned.",
        ]).strip()

        now = now_ms()
        posts: List[Tuple[str, SessionMessage]] = []
        targets = [s for s in sessions.values() if is_main_session(s)]
        agent = self.store.load_agents().get(task.agent_id)
        if agent is not None and agent.thread_session_id in sessions:
            targets.append(sessions[agent.thread_session_id])

        for session in targets:
            if is_main_session(session) and owner and session.user and session.user != owner:
                continue
            if any(session.id == posted for posted, _ in posts) or _is_recent_duplicate(session, body, now):
                continue
            posts.append((session.id, SessionMessage(
                role="assistant", text=body, time=now, kind="system",
                image_url=first_image.url if first_image else None,
            )))

        self._append_messages(posts)
