"""
Shared fixtures: a temporary engine, a scripted chat model and a stub chat collaborator.
"""

import time
from typing import Any, Dict, List, Optional

import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

from swarm_engine.config import EngineConfig, QueueConfig, StorageConfig
from swarm_engine.core import SwarmEngine
from swarm_engine.core.chat_turn import ChatTurnExecutor, ChatTurnResult
from swarm_engine.core.notifications import NotificationHub
from swarm_engine.models import Agent, BoardTask, Session, TaskStatus
from swarm_engine.utils.ids import now_ms


class ScriptedChatModel(BaseChatModel):
    """Replays queued responses; an Exception entry is raised instead of returned."""

    responses: List[Any] = Field(default_factory=list)
    calls: List[Any] = Field(default_factory=list)
    delay: float = 0.0

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        self.calls.append(list(messages))
        if self.delay:
            time.sleep(self.delay)
        response = self.responses.pop(0) if self.responses else AIMessage(content="Done.")
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            response = AIMessage(content=response)
        return ChatResult(generations=[ChatGeneration(message=response)])

    def bind_tools(self, tools, **kwargs):
        return self


def tool_call(name: str, args: Dict[str, Any], call_id: str = "call_1") -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


class StubChatExecutor(ChatTurnExecutor):
    """Returns or raises the queued outcomes, one per turn."""

    def __init__(self, outcomes: Optional[List[Any]] = None):
        self.outcomes = list(outcomes or [])
        self.calls: List[Dict[str, Any]] = []

    def execute_session_chat_turn(self, session_id, message, internal=False, source="chat"):
        self.calls.append({"session_id": session_id, "message": message, "source": source})
        outcome = self.outcomes.pop(0) if self.outcomes else "No scripted outcome left."
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, ChatTurnResult):
            return outcome
        return ChatTurnResult(text=outcome)


@pytest.fixture
def engine_config(tmp_path):
    return EngineConfig(
        storage=StorageConfig(data_dir=str(tmp_path / "data")),
        queue=QueueConfig(kick_delay_sec=0.0),
    )


@pytest.fixture
def models():
    """Scripted models keyed by agent model name."""
    return {
        "orch-model": ScriptedChatModel(),
        "worker-model": ScriptedChatModel(),
    }


@pytest.fixture
def chat_executor():
    return StubChatExecutor()


@pytest.fixture
def engine(engine_config, models, chat_executor):
    engine = SwarmEngine(
        engine_config,
        hub=NotificationHub(),
        model_factory=lambda spec: models[spec.model],
        chat_executor=chat_executor,
        auto_kick=False,
    )
    yield engine
    engine.close()


@pytest.fixture
def store(engine):
    return engine.store


@pytest.fixture
def agents(store):
    """A plain worker agent and an orchestrator that may delegate to it."""
    worker = Agent(
        id="worker", name="Researcher", description="Finds and summarizes documents",
        system_prompt="You research things.", model="worker-model", tools=["web_search"],
    )
    orchestrator = Agent(
        id="orch", name="Coordinator", description="Plans and delegates",
        system_prompt="You coordinate work.", model="orch-model",
        is_orchestrator=True, sub_agent_ids=["worker"],
    )
    store.save_agents({worker.id: worker, orchestrator.id: orchestrator})
    return {"worker": worker, "orch": orchestrator}


@pytest.fixture
def main_session(store):
    session = Session(id="main-1", name="__main__", main=True, created_at=now_ms())
    sessions = store.load_sessions()
    sessions[session.id] = session
    store.save_sessions(sessions)
    return session


def make_task(store, task_id: str = "t1", **fields) -> BoardTask:
    now = now_ms()
    data = {
        "id": task_id,
        "title": "Say hello",
        "description": "",
        "agent_id": "worker",
        "status": TaskStatus.BACKLOG,
        "created_at": now,
        "updated_at": now,
    }
    data.update(fields)
    task = BoardTask(**data)
    tasks = store.load_tasks()
    tasks[task.id] = task
    store.save_tasks(tasks)
    return task


def set_task_fields(store, task_id: str, **fields) -> BoardTask:
    tasks = store.load_tasks()
    for key, value in fields.items():
        setattr(tasks[task_id], key, value)
    store.save_tasks(tasks)
    return tasks[task_id]
