"""
Task Queue - retry-aware lifecycle manager for board tasks.

State machine per task:
    backlog -> queued -> running -> completed
                                 -> queued (retry, after exponential backoff)
                                 -> failed (dead-lettered)

Only one pass of ``process_next`` runs at a time per queue instance; a
second caller returns immediately. Every transition is a short
read-modify-write of the stored collection under the store lock
(``CollectionStore.editing`` / ``mutate``); model calls and report files run
outside those blocks, so records written concurrently by request handlers
are never overwritten and a crash loses at most the step in flight.

Usage:
    queue = TaskQueue(store, graph, hub, config)
    queue.enqueue(task_id)          # schedules a worker pass after kick_delay_sec
    queue.process_next()            # or drive the loop directly
"""

import json
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from swarm_engine.config import EngineConfig, normalize_int
from swarm_engine.models import (
    Agent,
    BoardTask,
    TaskCheckpointNote,
    TaskComment,
    TaskStatus,
)
from swarm_engine.storage import CollectionStore
from swarm_engine.utils.exceptions import (
    AgentExecutionError,
    AgentNotFoundError,
    ApprovalError,
    TaskNotFoundError,
    wrap_exception,
)
from swarm_engine.utils.ids import gen_id, now_ms
from swarm_engine.utils.logger import get_logger

from .chat_turn import ChatTurnExecutor, ModelChatTurnExecutor
from .lifecycle_events import LifecycleEventRelay
from .notifications import NotificationHub
from .orchestrator_graph import OrchestratorGraph, OrchestratorRunResult
from .task_reports import TaskReportArtifact, ensure_task_completion_report
from .task_result import extract_task_result, format_result_body
from .task_validation import format_validation_failure, validate_task_completion
from .transcripts import append_session_message, create_execution_session, set_session_heartbeat

logger = get_logger(__name__)

MAX_RETRY_DELAY_SEC = 6 * 3600
RESULT_MAX_CHARS = 4000
ERROR_MAX_CHARS = 500
SYSTEM_AUTHOR = "System"

RETRY = "retry"
DEAD_LETTERED = "dead_lettered"


def compute_retry_delay_sec(backoff_sec: int, attempts: int) -> int:
    """Exponential backoff for the given failed-attempt count, capped at six hours."""
    return min(MAX_RETRY_DELAY_SEC, backoff_sec * (2 ** max(0, attempts - 1)))


def _setting(settings: Dict[str, Any], snake: str, camel: str) -> Any:
    value = settings.get(snake)
    return value if value is not None else settings.get(camel)


def _system_comment(text: str, now: int) -> TaskComment:
    return TaskComment(id=gen_id(), author=SYSTEM_AUTHOR, text=text, created_at=now)


class TaskQueue:
    """
    Owns queue membership, retry/dead-letter policy and the worker loop.

    Args:
        store: Collection store holding tasks, queue, agents and sessions
        graph: Execution graph used for orchestrator agents
        hub: Notification hub
        config: Engine configuration (queue policy defaults, report folder)
        relay: Lifecycle event relay (built from store and hub when omitted)
        chat_executor: Chat turn collaborator for non-orchestrator agents
        auto_kick: When False, ``kick`` never starts a timer (the caller drives
            ``process_next`` itself)
    """

    def __init__(
        self,
        store: CollectionStore,
        graph: OrchestratorGraph,
        hub: NotificationHub,
        config: Optional[EngineConfig] = None,
        relay: Optional[LifecycleEventRelay] = None,
        chat_executor: Optional[ChatTurnExecutor] = None,
        auto_kick: bool = True,
    ):
        self.store = store
        self.graph = graph
        self.hub = hub
        self.config = config or EngineConfig()
        self.relay = relay or LifecycleEventRelay(store, hub)
        self.chat_executor = chat_executor or ModelChatTurnExecutor(store, hub, self.config.llm)
        self.auto_kick = auto_kick

        self._processing = threading.Lock()
        self._active_task_id: Optional[str] = None
        self._timers: List[threading.Timer] = []

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def resolve_policy(self, task: BoardTask, settings: Optional[Dict[str, Any]] = None) -> Tuple[int, int]:
        """
        Effective (max_attempts, retry_backoff_sec) for a task.

        Task values win over settings, settings over QueueConfig; every
        value is clamped.
        """
        settings = settings if settings is not None else self.store.load_settings()
        defaults = self.config.queue
        default_max = normalize_int(
            _setting(settings, "default_task_max_attempts", "defaultTaskMaxAttempts"),
            defaults.default_max_attempts, 1, 20,
        )
        default_backoff = normalize_int(
            _setting(settings, "task_retry_backoff_sec", "taskRetryBackoffSec"),
            defaults.retry_backoff_sec, 1, 3600,
        )
        return (
            normalize_int(task.max_attempts, default_max, 1, 20),
            normalize_int(task.retry_backoff_sec, default_backoff, 1, 3600),
        )

    def _apply_policy_defaults(self, task: BoardTask, settings: Optional[Dict[str, Any]] = None) -> None:
        task.max_attempts, task.retry_backoff_sec = self.resolve_policy(task, settings)
        if task.attempts < 0:
            task.attempts = 0

    def stall_timeout_min(self, settings: Optional[Dict[str, Any]] = None) -> int:
        settings = settings if settings is not None else self.store.load_settings()
        return normalize_int(
            _setting(settings, "task_stall_timeout_min", "taskStallTimeoutMin"),
            self.config.queue.stall_timeout_min, 5, 24 * 60,
        )

    def schedule_retry_or_dead_letter(
        self,
        task: BoardTask,
        reason: str,
        settings: Optional[Dict[str, Any]] = None,
        now: Optional[int] = None,
    ) -> str:
        """
        Count a failed attempt and decide the task's next state.

        Mutates ``task`` in place; the caller persists it and, on ``retry``,
        puts the id back in the queue.

        Returns:
            "retry" or "dead_lettered"
        """
        now = now if now is not None else now_ms()
        self._apply_policy_defaults(task, settings)
        reason = (reason or "").strip() or "Unknown error"

        task.attempts += 1
        task.updated_at = now
        task.pending_approval = None

        if task.attempts < task.max_attempts:
            delay_sec = compute_retry_delay_sec(task.retry_backoff_sec, task.attempts)
            task.status = TaskStatus.QUEUED
            task.queued_at = now
            task.retry_scheduled_at = now + delay_sec * 1000
            task.dead_lettered_at = None
            task.error = f"Retry scheduled after failure: {reason}"[:ERROR_MAX_CHARS]
            task.add_comment(_system_comment(
                f"Attempt {task.attempts}/{task.max_attempts} failed. Retrying in {delay_sec}s.\n\nReason: {reason}",
                now,
            ))
            logger.info(
                f'Task "{task.title}" ({task.id}) retry {task.attempts}/{task.max_attempts} in {delay_sec}s'
            )
            return RETRY

        task.status = TaskStatus.FAILED
        task.dead_lettered_at = now
        task.retry_scheduled_at = None
        task.error = f"Dead-lettered after {task.attempts}/{task.max_attempts} attempts: {reason}"[:ERROR_MAX_CHARS]
        task.add_comment(_system_comment(
            f"Task moved to dead-letter after {task.attempts}/{task.max_attempts} attempts.\n\nReason: {reason}",
            now,
        ))
        logger.warning(f'Task "{task.title}" ({task.id}) dead-lettered after {task.attempts} attempts: {reason}')
        return DEAD_LETTERED

    # ------------------------------------------------------------------
    # Queue membership
    # ------------------------------------------------------------------

    def _push_queue(self, task_ids: List[str]) -> None:
        def _push(queue):
            for task_id in task_ids:
                if task_id not in queue:
                    queue.append(task_id)

        if task_ids:
            self.store.mutate("queue", _push)

    def enqueue(self, task_id: str) -> BoardTask:
        """Mark a task queued and append it to the queue (idempotent)."""
        now = now_ms()
        with self.store.editing("tasks") as tasks:
            task = tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.status == TaskStatus.FAILED and task.dead_lettered_at:
                # A manual requeue of a dead-lettered task starts a fresh attempt budget
                task.attempts = 0
                task.dead_lettered_at = None
            self._apply_policy_defaults(task)
            task.status = TaskStatus.QUEUED
            task.retry_scheduled_at = None
            task.pending_approval = None
            task.queued_at = now
            task.updated_at = now
        self._push_queue([task_id])

        self.hub.notify("tasks")
        self.relay.publish("task_queued", f'Task queued: "{task.title}" ({task.id})', user=task.user)
        self.kick()
        return task

    def recover_orphaned_queued_tasks(self) -> int:
        """Put ``queued`` tasks that are missing from the queue back in it, oldest first."""
        queue = self.store.load_queue()
        if not any(t.status == TaskStatus.QUEUED and t.id not in queue for t in self.store.load_tasks().values()):
            return 0

        with self.store.editing("tasks") as tasks:
            queue = self.store.load_queue()
            orphans = sorted(
                (t for t in tasks.values() if t.status == TaskStatus.QUEUED and t.id not in queue),
                key=lambda t: t.queued_at or t.created_at or 0,
            )
            now = now_ms()
            for task in orphans:
                self._apply_policy_defaults(task)
                task.queued_at = task.queued_at or now
                logger.info(f'Recovering stuck queued task: "{task.title}" ({task.id})')
            self._push_queue([t.id for t in orphans])
        return len(orphans)

    def resume_queue(self) -> int:
        """Boot-time reconciliation followed by a worker kick."""
        recovered = self.recover_orphaned_queued_tasks()
        if recovered:
            self.hub.notify("tasks")
        self.kick()
        return recovered

    def _dequeue_next_runnable(self) -> Optional[str]:
        picked: List[str] = []

        def _pop(queue):
            tasks = self.store.load_tasks()
            live = [i for i in queue if isinstance(i, str) and i in tasks and tasks[i].status == TaskStatus.QUEUED]
            if len(live) != len(queue):
                logger.debug(f"Pruned {len(queue) - len(live)} stale queue entries")
            now = now_ms()
            for index, task_id in enumerate(live):
                scheduled = tasks[task_id].retry_scheduled_at
                if not scheduled or scheduled <= now:
                    picked.append(live.pop(index))
                    break
            return live

        self.store.mutate("queue", _pop)
        return picked[0] if picked else None

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def kick(self, delay_sec: Optional[float] = None) -> Optional[threading.Timer]:
        """Schedule a worker pass on a daemon timer."""
        if not self.auto_kick:
            return None
        delay = self.config.queue.kick_delay_sec if delay_sec is None else max(0.0, delay_sec)
        timer = threading.Timer(delay, self._run_kick)
        timer.daemon = True
        self._timers = [t for t in self._timers if t.is_alive()] + [timer]
        timer.start()
        return timer

    def _run_kick(self) -> None:
        try:
            self.process_next()
        except Exception as e:
            logger.log_exception("Queue worker pass failed", e)

    def shutdown(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []

    @property
    def is_processing(self) -> bool:
        return self._processing.locked()

    def process_next(self) -> bool:
        """
        Run queued tasks until none is runnable.

        Returns:
            False when another pass was already in flight
        """
        if not self._processing.acquire(blocking=False):
            logger.debug("Queue pass already in flight; skipping")
            return False
        try:
            self.recover_orphaned_queued_tasks()
            while True:
                task_id = self._dequeue_next_runnable()
                if task_id is None:
                    break
                self._active_task_id = task_id
                try:
                    self._run_task(task_id)
                finally:
                    self._active_task_id = None
        finally:
            self._processing.release()
        return True

    def _resolve_session(self, task: BoardTask, agent: Agent) -> str:
        sessions = self.store.load_sessions()
        schedules = self.store.load_schedules()
        schedule = schedules.get(task.source_schedule_id) if task.is_schedule_task else None

        if schedule is not None and schedule.last_session_id in sessions:
            session_id = schedule.last_session_id
            logger.debug(f"Reusing schedule session {session_id} for task {task.id}")
        else:
            session_id = create_execution_session(
                self.store, agent,
                name=f"[Task] {task.title}",
                cwd=task.cwd or "",
                user=task.user or "system",
            )

        if schedule is not None and schedule.last_session_id != session_id:
            with self.store.editing("schedules") as schedules:
                if schedule.id in schedules:
                    schedules[schedule.id].last_session_id = session_id
                    schedules[schedule.id].updated_at = now_ms()
        return session_id

    def _fail_missing_agent(self, task_id: str, agent_id: str) -> None:
        error = AgentNotFoundError(agent_id)
        now = now_ms()
        with self.store.editing("tasks") as tasks:
            task = tasks.get(task_id)
            if task is None:
                return
            task.status = TaskStatus.FAILED
            task.error = error.message
            task.dead_lettered_at = now
            task.retry_scheduled_at = None
            task.pending_approval = None
            task.updated_at = now
            task.add_comment(_system_comment(f"Task moved to dead-letter: {error.message}", now))
        self.hub.notify("tasks")
        self.hub.notify("runs")
        logger.error(f'Task "{task.title}" ({task_id}) dead-lettered: {error.message}')
        self.relay.publish(
            "task_dead_lettered",
            f'Task dead-lettered: "{task.title}" ({task_id}): {error.message}.',
            user=task.user,
        )

    def _start_task(self, task_id: str, agent: Agent) -> Optional[BoardTask]:
        snapshot = self.store.load_tasks().get(task_id)
        if snapshot is None:
            return None
        session_id = self._resolve_session(snapshot, agent)
        settings = self.store.load_settings()

        now = now_ms()
        with self.store.editing("tasks") as tasks:
            task = tasks.get(task_id)
            if task is None:
                return None
            self._apply_policy_defaults(task, settings)
            task.status = TaskStatus.RUNNING
            task.started_at = now
            task.updated_at = now
            task.retry_scheduled_at = None
            task.dead_lettered_at = None
            task.error = None
            task.validation = None
            task.pending_approval = None
            task.session_id = session_id
            task.checkpoint = TaskCheckpointNote(
                note=f"Attempt {task.attempts + 1}/{task.max_attempts} started",
                updated_at=now,
                last_session_id=session_id,
                last_run_id=session_id,
            )
        self.hub.notify("tasks")
        self.hub.notify("runs")

        self.relay.post_task_started(task, agent)
        self.relay.publish(
            "task_running", f'Task running: "{task.title}" ({task.id}) with {agent.name}', user=task.user,
        )

        session = self.store.get_session(session_id)
        cwd = task.cwd or (session.cwd if session is not None else "")
        append_session_message(
            self.store, self.hub, session_id, "assistant",
            f"Starting task: **{task.title}**\n\n{task.description or ''}\n\n"
            f"Working directory: `{cwd}`\n\nI'll begin working on this now.",
        )
        return task

    def _execute(self, task: BoardTask, agent: Agent) -> OrchestratorRunResult:
        prompt = task.description or task.title
        if task.description and task.title:
            prompt = f"{task.title}\n\n{task.description}"

        if agent.is_orchestrator:
            return self.graph.run(agent, prompt, task.session_id, task_id=task.id)

        turn = self.chat_executor.execute_session_chat_turn(
            task.session_id, prompt, internal=False, source="task",
        )
        if turn.error and not turn.text:
            raise AgentExecutionError(
                operation="chat_turn", message=turn.error, agent_name=agent.name, task_id=task.id,
            )
        return OrchestratorRunResult(text=turn.text or "")

    def _run_task(self, task_id: str) -> None:
        task = self.store.load_tasks().get(task_id)
        if task is None:
            return
        agent = self.store.load_agents().get(task.agent_id)
        if agent is None:
            self._fail_missing_agent(task_id, task.agent_id)
            return

        task = self._start_task(task_id, agent)
        if task is None:
            return
        logger.info(f'Running task "{task.title}" ({task_id}) with {agent.name}')

        started = time.time()
        try:
            run = self._execute(task, agent)
        except Exception as e:
            logger.log_performance("task_run", time.time() - started, success=False, metadata={"task_id": task_id})
            error = wrap_exception(e, "task_run", {"task_id": task_id, "agent_name": agent.name})
            self._handle_execution_failure(task_id, agent, error.message)
            return
        logger.log_performance("task_run", time.time() - started, metadata={"task_id": task_id, "paused": run.paused})
        self._finalize_run(task_id, agent, run)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _write_report(self, task: BoardTask) -> Optional[TaskReportArtifact]:
        try:
            return ensure_task_completion_report(task, self.config.storage.reports_dir)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not write completion report for task {task.id}: {e}")
            return None

    def _delete_thread(self, thread_id: Optional[str]) -> None:
        if not thread_id:
            return
        try:
            self.graph.checkpointer.delete_thread(thread_id)
        except Exception as e:
            logger.warning(f"Failed to clean up checkpoints for thread {thread_id}: {e}")

    def disable_session_heartbeat(self, session_id: Optional[str]) -> bool:
        changed = set_session_heartbeat(self.store, session_id, False)
        if changed:
            logger.info(f"Disabled heartbeat for session {session_id}")
            self.hub.notify("sessions")
        return changed

    def _record_pause(self, task_id: str, run: OrchestratorRunResult) -> None:
        approval = run.pending_approval
        if approval is None:
            return
        now = now_ms()
        with self.store.editing("tasks") as tasks:
            task = tasks.get(task_id)
            if task is None:
                return
            task.pending_approval = approval
            task.updated_at = now
            task.checkpoint = TaskCheckpointNote(
                note=f"Awaiting approval for {approval.tool_name}",
                updated_at=now,
                last_session_id=task.session_id,
                last_run_id=task.session_id,
            )
        self.hub.notify("tasks")
        self.relay.publish(
            "pending_approval",
            f'Task "{task.title}" needs approval: {approval.tool_name}({json.dumps(approval.args)[:100]})',
            user=task.user,
        )
        logger.info(f'Task "{task.title}" ({task_id}) paused for approval of {approval.tool_name}')

    def _finalize_run(self, task_id: str, agent: Agent, run: OrchestratorRunResult) -> None:
        if run.paused:
            self._record_pause(task_id, run)
            return

        # Result extraction and the report file work on a snapshot; the
        # transition itself is applied to freshly loaded tasks below.
        snapshot = self.store.load_tasks().get(task_id)
        if snapshot is None:
            return
        settings = self.store.load_settings()
        self._apply_policy_defaults(snapshot, settings)

        session = self.store.get_session(snapshot.session_id)
        extracted = extract_task_result(session, run.text or None, since_time=snapshot.started_at)
        result = format_result_body(extracted)[:RESULT_MAX_CHARS] or None
        snapshot.result = result
        snapshot.updated_at = now_ms()

        report = self._write_report(snapshot)
        report_path = report.relative_path if report is not None else None
        if report_path:
            snapshot.completion_report_path = report_path
        validation = validate_task_completion(snapshot, report)

        now = now_ms()
        with self.store.editing("tasks") as tasks:
            task = tasks.get(task_id)
            if task is None:
                return
            self._apply_policy_defaults(task, settings)
            task.result = result
            task.updated_at = now
            if report_path:
                task.completion_report_path = report_path
            task.validation = validation

            if validation.ok:
                task.status = TaskStatus.COMPLETED
                task.completed_at = now
                task.retry_scheduled_at = None
                task.error = None
                task.checkpoint = TaskCheckpointNote(
                    note=f"Completed on attempt {task.attempts + 1}/{task.max_attempts}",
                    updated_at=now,
                    last_session_id=task.session_id,
                    last_run_id=task.session_id,
                )
                task.add_comment(TaskComment(
                    id=gen_id(),
                    author=agent.name,
                    agent_id=agent.id,
                    text=f"Task completed.\n\n{(run.text or '')[:1000] or 'No summary provided.'}",
                    created_at=now,
                ))
                outcome = TaskStatus.COMPLETED.value
            else:
                task.add_comment(TaskComment(
                    id=gen_id(),
                    author=agent.name,
                    agent_id=agent.id,
                    text="Task failed validation and was not marked completed.\n\n"
                         + "\n".join(f"- {r}" for r in validation.reasons),
                    created_at=now,
                ))
                reason = format_validation_failure(validation.reasons)[:ERROR_MAX_CHARS]
                outcome = self.schedule_retry_or_dead_letter(task, reason, settings, now)
                if outcome == DEAD_LETTERED:
                    task.completed_at = None

        if outcome == RETRY:
            self._push_queue([task_id])
        self._after_transition(task, outcome, failure_text="failed validation")

    def _handle_execution_failure(self, task_id: str, agent: Agent, message: str) -> None:
        logger.error(f"Task {task_id} failed: {message}")
        now = now_ms()
        with self.store.editing("tasks") as tasks:
            task = tasks.get(task_id)
            if task is None:
                return
            last = task.comments[-1] if task.comments else None
            repeated = last is not None and last.agent_id == agent.id and last.text.startswith("Task failed")
            if not repeated:
                task.add_comment(TaskComment(
                    id=gen_id(),
                    author=agent.name,
                    agent_id=agent.id,
                    text=f"Task failed: {message[:300]}",
                    created_at=now,
                ))
            outcome = self.schedule_retry_or_dead_letter(task, message[:ERROR_MAX_CHARS], now=now)
        if outcome == RETRY:
            self._push_queue([task_id])
        self._after_transition(task, outcome, failure_text=message[:200])

    def _after_transition(self, task: BoardTask, outcome: str, failure_text: str = "") -> None:
        self.hub.notify("tasks")
        self.hub.notify("runs")
        label = f'"{task.title}" ({task.id})'

        if outcome == RETRY:
            self.relay.publish(
                "task_retry_scheduled",
                f"Task retry scheduled: {label} attempt {task.attempts}/{task.max_attempts}.",
                user=task.user,
            )
            if task.retry_scheduled_at:
                self.kick(max(0.0, (task.retry_scheduled_at - now_ms()) / 1000.0))
            return

        self.disable_session_heartbeat(task.session_id)
        if outcome == TaskStatus.COMPLETED.value:
            self.relay.publish("task_completed", f"Task completed: {label}", user=task.user)
            self._delete_thread(task.id)
            logger.info(f'Task "{task.title}" completed')
        elif outcome == DEAD_LETTERED:
            self.relay.publish(
                "task_dead_lettered",
                f"Task dead-lettered: {label} after {task.attempts}/{task.max_attempts} attempts.",
                user=task.user,
            )
        else:
            self.relay.publish("task_failed", f"Task failed: {label}: {failure_text}", user=task.user)

        self.relay.post_schedule_result(task)
        self.relay.post_agent_thread_result(task)

    # ------------------------------------------------------------------
    # Human approval
    # ------------------------------------------------------------------

    def approve_task(self, task_id: str, approved: bool) -> BoardTask:
        """
        Resolve a pending tool approval.

        Rejecting fails the task and drops its checkpoint thread. Approving
        resumes the paused graph; the run then finishes like a fresh attempt.
        The resume waits for any in-flight queue pass to finish first.
        """
        now = now_ms()
        with self.store.editing("tasks") as tasks:
            task = tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            pending = task.pending_approval
            if pending is None:
                raise ApprovalError(task_id, f"Task {task_id} has no pending approval")

            task.pending_approval = None
            task.updated_at = now
            if not approved:
                task.status = TaskStatus.FAILED
                task.error = "Tool execution rejected by user"
                task.retry_scheduled_at = None
                task.add_comment(_system_comment(f"Tool execution rejected by user: {pending.tool_name}", now))

        if not approved:
            logger.info(f"Task {task_id}: tool {pending.tool_name} rejected")
            self._delete_thread(pending.thread_id or task_id)
            self._after_transition(task, TaskStatus.FAILED.value, failure_text="tool execution rejected.")
            return task

        self.hub.notify("tasks")
        logger.info(f"Task {task_id}: tool {pending.tool_name} approved, resuming")

        agent = self.store.load_agents().get(task.agent_id)
        if agent is None:
            self._fail_missing_agent(task_id, task.agent_id)
            return self.store.load_tasks()[task_id]

        with self._processing:
            self._active_task_id = task_id
            try:
                try:
                    run = self.graph.resume(agent, task.session_id, pending.thread_id or task_id)
                except Exception as e:
                    error = wrap_exception(e, "approval_resume", {"task_id": task_id, "agent_name": agent.name})
                    self._handle_execution_failure(task_id, agent, error.message)
                else:
                    self._finalize_run(task_id, agent, run)
            finally:
                self._active_task_id = None
        return self.store.load_tasks()[task_id]

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def validate_completed_tasks_queue(self) -> Dict[str, int]:
        """Re-validate every completed task and demote the ones that no longer pass."""
        now = now_ms()
        checks: Dict[str, Tuple[Optional[str], Any]] = {}
        for task in self.store.load_tasks().values():
            if task.status != TaskStatus.COMPLETED:
                continue
            report = self._write_report(task)
            report_path = report.relative_path if report is not None else None
            if report_path:
                task.completion_report_path = report_path
            checks[task.id] = (report_path, validate_task_completion(task, report, now))

        if not checks:
            return {"checked": 0, "demoted": 0}

        demoted = 0
        with self.store.editing("tasks") as tasks:
            for task_id, (report_path, validation) in checks.items():
                task = tasks.get(task_id)
                if task is None or task.status != TaskStatus.COMPLETED:
                    continue
                if report_path:
                    task.completion_report_path = report_path
                task.validation = validation
                if validation.ok:
                    continue

                demoted += 1
                task.status = TaskStatus.FAILED
                task.completed_at = None
                task.error = format_validation_failure(validation.reasons)[:ERROR_MAX_CHARS]
                task.updated_at = now
                task.add_comment(_system_comment(
                    "Task auto-failed completed-queue validation.\n\n"
                    + "\n".join(f"- {r}" for r in validation.reasons),
                    now,
                ))
                logger.warning(f'Demoted completed task "{task.title}" ({task.id}) after re-validation')

        if demoted:
            self.hub.notify("tasks")
            self.hub.notify("runs")
        return {"checked": len(checks), "demoted": demoted}

    def recover_stalled_running_tasks(self, now: Optional[int] = None) -> Dict[str, int]:
        """Fold running tasks without recent progress into the retry/dead-letter path."""
        settings = self.store.load_settings()
        stall_min = self.stall_timeout_min(settings)
        stale_ms = stall_min * 60_000
        now = now if now is not None else now_ms()

        requeue: List[str] = []
        events: List[Tuple[str, str, Optional[str]]] = []
        finished: List[Optional[str]] = []

        with self.store.editing("tasks") as tasks:
            for task in tasks.values():
                if task.status != TaskStatus.RUNNING or task.pending_approval is not None:
                    continue
                if task.id == self._active_task_id:
                    continue
                since = max(task.updated_at or 0, task.started_at or 0)
                if not since or now - since < stale_ms:
                    continue

                reason = f"Detected stalled run after {stall_min}m without progress"
                outcome = self.schedule_retry_or_dead_letter(task, reason, settings, now)
                if outcome == RETRY:
                    requeue.append(task.id)
                    events.append((
                        "task_stall_recovered",
                        f'Recovered stalled task "{task.title}" ({task.id}) and requeued attempt '
                        f"{task.attempts}/{task.max_attempts}.",
                        task.user,
                    ))
                else:
                    finished.append(task.session_id)
                    events.append((
                        "task_dead_lettered",
                        f'Task dead-lettered after stalling: "{task.title}" ({task.id}).',
                        task.user,
                    ))

        if not events:
            return {"recovered": 0, "dead_lettered": 0}

        self._push_queue(requeue)
        for session_id in finished:
            self.disable_session_heartbeat(session_id)
        self.hub.notify("tasks")
        self.hub.notify("runs")
        for event_type, text, user in events:
            self.relay.publish(event_type, text, user=user)

        recovered = len(requeue)
        return {"recovered": recovered, "dead_lettered": len(events) - recovered}

    def cleanup_finished_task_sessions(self) -> int:
        """Disable heartbeats left on by sessions of completed or failed tasks."""
        cleaned = 0
        for task in self.store.load_tasks().values():
            if task.status in (TaskStatus.COMPLETED, TaskStatus.FAILED) and task.session_id:
                if set_session_heartbeat(self.store, task.session_id, False):
                    cleaned += 1
        if cleaned:
            logger.info(f"Disabled heartbeat on {cleaned} finished task session(s)")
            self.hub.notify("sessions")
        return cleaned
