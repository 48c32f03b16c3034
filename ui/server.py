"""
Swarm Engine Web Server

FastAPI-based server providing:
- REST API for the task board, queue control and tool approvals
- Audit and recovery sweeps on demand
- WebSocket bridge to the notification hub
"""

import asyncio
import secrets
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from swarm_engine.config import EngineConfig, EnvConfig
from swarm_engine.core import SwarmEngine, describe_graph
from swarm_engine.models import BoardTask, TaskStatus
from swarm_engine.utils.exceptions import ApprovalError, TaskNotFoundError
from swarm_engine.utils.ids import gen_id, now_ms
from swarm_engine.utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# PYDANTIC MODELS
# ============================================================================

class TaskCreate(BaseModel):
    title: str
    description: str = ""
    agent_id: str
    queue: bool = False
    max_attempts: Optional[int] = Field(default=None, ge=1, le=20)
    retry_backoff_sec: Optional[int] = Field(default=None, ge=1, le=3600)
    cwd: Optional[str] = None
    user: Optional[str] = None


class ApprovalDecision(BaseModel):
    approved: bool


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(engine: Optional[SwarmEngine] = None, run_boot: bool = True) -> FastAPI:
    """
    Build the API around an engine.

    When ``engine`` is omitted one is built from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.engine is None
        if owned:
            EnvConfig.load_env_file()
            app.state.engine = SwarmEngine(EngineConfig.from_env())
        if run_boot:
            app.state.engine.boot()
        try:
            yield
        finally:
            if owned:
                app.state.engine.close()

    app = FastAPI(
        title="Swarm Engine",
        description="Task orchestration and agent execution engine",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def current() -> SwarmEngine:
        return app.state.engine

    # ========================================================================
    # WEBSOCKET
    # ========================================================================

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        access_key = current().config.access_key
        if access_key:
            supplied = websocket.query_params.get("key") or websocket.headers.get("x-access-key") or ""
            if not secrets.compare_digest(supplied, access_key):
                await websocket.close(code=4001)
                logger.warning("Rejected WebSocket client with a bad access key")
                return

        hub = current().hub
        loop = asyncio.get_running_loop()
        client = None

        def _on_sent(future):
            if not future.cancelled() and future.exception() is not None and client is not None:
                hub.disconnect(client)

        def send(payload: str) -> None:
            future = asyncio.run_coroutine_threadsafe(websocket.send_text(payload), loop)
            future.add_done_callback(_on_sent)

        client = hub.connect(send)
        logger.info(f"WebSocket client connected (total={hub.client_count})")
        try:
            while True:
                hub.handle_client_message(client, await websocket.receive_text())
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected")
        finally:
            hub.disconnect(client)

    # ========================================================================
    # TASK API
    # ========================================================================

    @app.get("/api/tasks")
    def list_tasks(status: Optional[str] = None) -> List[Dict[str, Any]]:
        tasks = current().store.load_tasks().values()
        if status:
            tasks = [t for t in tasks if t.status.value == status]
        return [t.to_dict() for t in sorted(tasks, key=lambda t: t.created_at)]

    @app.post("/api/tasks")
    def create_task(data: TaskCreate) -> Dict[str, Any]:
        engine = current()
        if data.agent_id not in engine.store.load_agents():
            raise HTTPException(status_code=400, detail=f"Agent {data.agent_id} not found")

        now = now_ms()
        task = BoardTask(
            id=gen_id(),
            title=data.title,
            description=data.description,
            agent_id=data.agent_id,
            status=TaskStatus.BACKLOG,
            max_attempts=data.max_attempts,
            retry_backoff_sec=data.retry_backoff_sec,
            cwd=data.cwd,
            user=data.user,
            created_at=now,
            updated_at=now,
        )

        def _insert(records):
            records[task.id] = task.to_dict()

        engine.store.mutate("tasks", _insert)
        engine.hub.notify("tasks")
        if data.queue:
            task = engine.queue.enqueue(task.id)
        return task.to_dict()

    @app.post("/api/tasks/validate-completed")
    def validate_completed() -> Dict[str, int]:
        return current().queue.validate_completed_tasks_queue()

    @app.post("/api/tasks/recover-stalled")
    def recover_stalled() -> Dict[str, int]:
        return current().queue.recover_stalled_running_tasks()

    @app.post("/api/tasks/{task_id}/queue")
    def queue_task(task_id: str) -> Dict[str, Any]:
        try:
            return current().queue.enqueue(task_id).to_dict()
        except TaskNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)

    @app.post("/api/tasks/{task_id}/approve")
    def approve_task(task_id: str, decision: ApprovalDecision) -> Dict[str, Any]:
        try:
            return current().queue.approve_task(task_id, decision.approved).to_dict()
        except TaskNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        except ApprovalError as e:
            raise HTTPException(status_code=409, detail=e.message)

    # ========================================================================
    # QUEUE / GRAPH API
    # ========================================================================

    @app.post("/api/queue/process")
    def process_queue(background_tasks: BackgroundTasks) -> Dict[str, Any]:
        queue = current().queue
        already = queue.is_processing
        if not already:
            background_tasks.add_task(queue.process_next)
        return {"started": not already, "queued": len(current().store.load_queue())}

    @app.get("/api/orchestrator/graph")
    def orchestrator_graph() -> Dict[str, Any]:
        return describe_graph()

    @app.get("/api/events")
    def lifecycle_events(event_type: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        history = current().queue.relay.get_event_history(event_type, limit)
        return [
            {
                "type": e.event_type,
                "text": e.text,
                "user": e.user,
                "sessions_notified": e.sessions_notified,
                "published_at": e.published_at,
            }
            for e in history
        ]

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        engine = current()
        return {
            "status": "ok",
            "queue_length": len(engine.store.load_queue()),
            "processing": engine.queue.is_processing,
            "hub": engine.hub.get_statistics(),
        }

    return app


app = create_app()
