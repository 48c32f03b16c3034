"""
Orchestrator Graph - the resumable agent -> tools -> router loop.

Workflow:
1. agent  -> model call with the orchestrator prompt and bound tools
2. tools  -> executes every requested tool call (ToolNode)
3. router -> after a failed delegation, injects a re-plan hint while the
             fallback budget lasts; always hands control back to agent

The graph ends when the agent answers without tool calls. State is
checkpointed after every step under ``thread_id`` (the task id, else the
session id). In strict capability mode the graph is compiled with
``interrupt_before=["tools"]``: the run stops before the first tool step and
the caller records a pending approval. ``resume`` continues the same thread
with no new input.
"""

import json
import re
import threading
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Dict, List, Optional, TypedDict

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.graph import END, START, StateGraph
from langgraph.graph.message import add_messages
from langgraph.prebuilt import ToolNode

from swarm_engine.config import EngineConfig
from swarm_engine.models import Agent, PendingApproval
from swarm_engine.storage import CollectionStore
from swarm_engine.utils.exceptions import (
    ExecutionCancelledError,
    ExecutionTimeoutError,
    wrap_exception,
)
from swarm_engine.utils.logger import get_logger

from .capability_policy import is_strict_mode
from .llm_factory import ModelSpec, build_chat_model, resolve_model_spec
from .notifications import NotificationHub
from .orchestrator_tools import (
    COMPLETION_MARKER,
    DELEGATE_TOOL_NAME,
    OrchestratorToolkit,
    message_text,
)
from .transcripts import append_session_message

logger = get_logger(__name__)

MAX_FALLBACK_ATTEMPTS = 2
COMPLETION_RE = re.compile(re.escape(COMPLETION_MARKER) + r"\s*([\s\S]+)")

ORCHESTRATOR_INSTRUCTIONS = "\n".join([
    "\nYou are an orchestrator. Use the provided tools to delegate tasks to agents, store and search "
    "memories, retrieve secrets for external services, and mark tasks complete.",
    "\nWhen delegating to an agent that needs credentials, use get_secret first and include the "
    "credential in the task instructions.",
    "\nYou can comment on tasks to provide status updates and create new backlog tasks for follow-up work.",
    "\nAlways call mark_complete when you are done.",
])

GRAPH_STRUCTURE = {
    "nodes": ["agent", "tools", "router"],
    "edges": [
        {"from": START, "to": "agent"},
        {"from": "agent", "to": "tools", "condition": "has_tool_calls"},
        {"from": "agent", "to": END, "condition": "no_tool_calls"},
        {"from": "tools", "to": "router"},
        {"from": "router", "to": "agent", "condition": "fallback_or_continue"},
    ],
}


class ExecutionState(TypedDict):
    """Checkpointed graph state: the conversation plus router bookkeeping."""
    messages: Annotated[list, add_messages]
    fallback_attempts: int


@dataclass
class OrchestratorRunResult:
    text: str
    paused: bool = False
    pending_approval: Optional[PendingApproval] = None


def is_delegation_failure(text: str) -> bool:
    return text.startswith("Error:") or (text.startswith('Agent "') and "not found" in text)


def extract_completion_summary(text: str) -> Optional[str]:
    match = COMPLETION_RE.search(text or "")
    return match.group(1).strip() if match else None


def describe_graph() -> Dict[str, Any]:
    """Static node/edge description of the orchestrator graph."""
    return {
        "nodes": list(GRAPH_STRUCTURE["nodes"]),
        "edges": [dict(edge) for edge in GRAPH_STRUCTURE["edges"]],
    }


class OrchestratorGraph:
    """
    Runs orchestrator agents on a checkpointed LangGraph.

    Usage:
        graph = OrchestratorGraph(store, saver, hub, config)
        result = graph.run(agent, "Audit the landing page", session_id, task_id="a1b2c3d4")
        if result.paused:
            ...
            result = graph.resume(agent, session_id, thread_id="a1b2c3d4")
    """

    def __init__(
        self,
        store: CollectionStore,
        checkpointer: BaseCheckpointSaver,
        hub: NotificationHub,
        config: Optional[EngineConfig] = None,
        model_factory: Callable[[ModelSpec], Any] = build_chat_model,
    ):
        self.store = store
        self.checkpointer = checkpointer
        self.hub = hub
        self.config = config or EngineConfig()
        self.model_factory = model_factory

    # ------------------------------------------------------------------
    # Models and prompt
    # ------------------------------------------------------------------

    def _orchestration_model(self, orchestrator: Agent, settings: Dict[str, Any]):
        spec = resolve_model_spec(
            orchestrator.provider, orchestrator.model, orchestrator.credential_id,
            orchestrator.api_endpoint, settings, self.store.load("credentials"), self.config.llm,
        )
        return self.model_factory(spec)

    def _delegate_model(self, agent: Agent):
        spec = resolve_model_spec(
            agent.provider, agent.model, agent.credential_id, agent.api_endpoint,
            {}, self.store.load("credentials"), self.config.llm,
        )
        return self.model_factory(spec)

    def build_system_prompt(self, orchestrator: Agent, toolkit: OrchestratorToolkit,
                            settings: Dict[str, Any]) -> str:
        parts: List[str] = []
        user_prompt = settings.get("user_prompt") or settings.get("userPrompt")
        if user_prompt:
            parts.append(str(user_prompt))
        if orchestrator.soul:
            parts.append(orchestrator.soul)
        if orchestrator.system_prompt:
            parts.append(orchestrator.system_prompt)
        if orchestrator.skill_ids:
            skills = self.store.load_skills()
            for skill_id in orchestrator.skill_ids:
                skill = skills.get(skill_id)
                if skill is not None and skill.content:
                    parts.append(f"## Skill: {skill.name}\n{skill.content}")

        return "\n".join([
            "\n\n".join(parts),
            ORCHESTRATOR_INSTRUCTIONS,
            toolkit.agent_list_context(),
            toolkit.memory_context(),
            toolkit.secrets_context(),
            toolkit.task_board_context(),
        ])

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    def build(self, orchestrator: Agent, session_id: str, settings: Optional[Dict[str, Any]] = None):
        """
        Compile the graph for one orchestrator run.

        Returns:
            (compiled graph, strict) where strict means tools need approval
        """
        settings = settings if settings is not None else self.store.load_settings()
        agents = self.store.load_agents()
        delegates = [agents[i] for i in orchestrator.sub_agent_ids if i in agents]

        toolkit = OrchestratorToolkit(
            self.store, self.hub, orchestrator, delegates, session_id, self._delegate_model,
        )
        tools = toolkit.build_tools()
        model = self._orchestration_model(orchestrator, settings).bind_tools(tools)
        system_prompt = self.build_system_prompt(orchestrator, toolkit, settings)

        def agent_node(state: ExecutionState):
            response = model.invoke([SystemMessage(content=system_prompt)] + list(state["messages"]))
            return {"messages": [response]}

        def router_node(state: ExecutionState):
            messages = state["messages"]
            attempts = state.get("fallback_attempts", 0) or 0
            last = messages[-1] if messages else None
            content = message_text(last) if isinstance(last, ToolMessage) else ""

            if content and is_delegation_failure(content) and attempts < MAX_FALLBACK_ATTEMPTS:
                failed_call = None
                for message in reversed(messages):
                    calls = getattr(message, "tool_calls", None) or []
                    failed_call = next((c for c in calls if c.get("name") == DELEGATE_TOOL_NAME), None)
                    if failed_call is not None:
                        break
                if failed_call is not None:
                    attempts += 1
                    failed_name = (failed_call.get("args") or {}).get("agent_name") or "unknown"
                    hint = (
                        f'The agent "{failed_name}" failed. Try delegating to a different agent with '
                        f"matching capabilities, or re-plan your approach. "
                        f"Fallback attempt {attempts}/{MAX_FALLBACK_ATTEMPTS}."
                    )
                    logger.info(f"Router fallback {attempts}/{MAX_FALLBACK_ATTEMPTS} after {failed_name} failed")
                    return {"messages": [AIMessage(content=hint)], "fallback_attempts": attempts}

            return {"fallback_attempts": attempts}

        def should_continue(state: ExecutionState) -> str:
            last = state["messages"][-1] if state["messages"] else None
            if getattr(last, "tool_calls", None):
                return "tools"
            return END

        workflow = StateGraph(ExecutionState)
        workflow.add_node("agent", agent_node)
        workflow.add_node("tools", ToolNode(tools))
        workflow.add_node("router", router_node)
        workflow.add_edge(START, "agent")
        workflow.add_conditional_edges("agent", should_continue, {"tools": "tools", END: END})
        workflow.add_edge("tools", "router")
        workflow.add_edge("router", "agent")

        strict = is_strict_mode(settings)
        compile_kwargs: Dict[str, Any] = {"checkpointer": self.checkpointer}
        if strict:
            compile_kwargs["interrupt_before"] = ["tools"]
        return workflow.compile(**compile_kwargs), strict

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(
        self,
        orchestrator: Agent,
        prompt: str,
        session_id: str,
        task_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> OrchestratorRunResult:
        """
        Start a fresh run on thread ``task_id or session_id``.

        The prompt is written to the transcript only when it is streamed into
        the graph. A task thread left mid-run by an earlier attempt continues
        from its checkpoint instead, and the prompt is logged as dropped.
        """
        thread_id = task_id or session_id
        return self._execute(
            orchestrator, session_id, thread_id,
            {"messages": [HumanMessage(content=prompt)], "fallback_attempts": 0},
            track_approval=bool(task_id),
            cancel_event=cancel_event,
            prompt=prompt,
        )

    def resume(
        self,
        orchestrator: Agent,
        session_id: str,
        thread_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> OrchestratorRunResult:
        """Continue a checkpointed thread from where it stopped."""
        logger.info(f"Resuming orchestrator thread {thread_id}")
        return self._execute(orchestrator, session_id, thread_id, None,
                             track_approval=True, cancel_event=cancel_event)

    def pending_tool_call(self, app, thread_id: str) -> Optional[PendingApproval]:
        """The first tool call the thread is paused on, if it is paused before tools."""
        snapshot = app.get_state({"configurable": {"thread_id": thread_id}})
        if "tools" not in (snapshot.next or ()):
            return None
        messages = snapshot.values.get("messages") or []
        calls = getattr(messages[-1], "tool_calls", None) if messages else None
        if not calls:
            return None
        call = calls[0]
        return PendingApproval(
            tool_name=call.get("name") or "unknown",
            args=dict(call.get("args") or {}),
            thread_id=thread_id,
        )

    def _execute(
        self,
        orchestrator: Agent,
        session_id: str,
        thread_id: str,
        graph_input: Optional[Dict[str, Any]],
        track_approval: bool,
        cancel_event: Optional[threading.Event],
        prompt: Optional[str] = None,
    ) -> OrchestratorRunResult:
        settings = self.store.load_settings()
        runtime = self.config.runtime.with_settings(settings)
        app, strict = self.build(orchestrator, session_id, settings)

        cancel_event = cancel_event or threading.Event()
        timed_out = threading.Event()
        timer = None
        if runtime.timeout_seconds:
            def _expire():
                timed_out.set()
                cancel_event.set()
            timer = threading.Timer(runtime.timeout_seconds, _expire)
            timer.daemon = True
            timer.start()

        config = {
            "recursion_limit": runtime.recursion_limit,
            "configurable": {"thread_id": thread_id},
        }
        final_text = ""
        completion_summary = None

        if graph_input is not None and track_approval and app.get_state(config).next:
            logger.warning(
                f"Thread {thread_id} stopped mid-run earlier; continuing from its last checkpoint "
                f"and dropping the new prompt: {(prompt or '')[:200]!r}"
            )
            graph_input = None
        elif prompt:
            append_session_message(self.store, self.hub, session_id, "user", prompt)

        try:
            for chunk in app.stream(graph_input, config, stream_mode="updates"):
                if cancel_event.is_set():
                    if timed_out.is_set():
                        raise ExecutionTimeoutError(runtime.timeout_seconds)
                    raise ExecutionCancelledError(thread_id)

                for node_name, update in chunk.items():
                    if not isinstance(update, dict):
                        continue
                    for message in update.get("messages") or []:
                        text = message_text(message)
                        if not text:
                            continue
                        if node_name == "agent":
                            final_text = text
                            append_session_message(self.store, self.hub, session_id, "assistant", text)
                        elif node_name == "tools" and text.startswith(COMPLETION_MARKER):
                            completion_summary = extract_completion_summary(text)

            if cancel_event.is_set():
                if timed_out.is_set():
                    raise ExecutionTimeoutError(runtime.timeout_seconds)
                raise ExecutionCancelledError(thread_id)

            if strict and track_approval:
                pending = self.pending_tool_call(app, thread_id)
                if pending is not None:
                    approval_text = (
                        f"[Awaiting approval] Tool: {pending.tool_name}\n"
                        f"Args: {json.dumps(pending.args)[:300]}\n\n"
                        "Approve or reject in the task board."
                    )
                    append_session_message(self.store, self.hub, session_id, "assistant", approval_text)
                    logger.info(f"Interrupt: waiting for approval of tool {pending.tool_name} on thread {thread_id}")
                    return OrchestratorRunResult(text=approval_text, paused=True, pending_approval=pending)

        except (ExecutionTimeoutError, ExecutionCancelledError) as e:
            append_session_message(self.store, self.hub, session_id, "assistant", f"[Error] {e.message}")
            logger.warning(f"Orchestrator thread {thread_id} stopped: {e.message}")
            raise
        except Exception as e:
            if timed_out.is_set():
                append_session_message(self.store, self.hub, session_id, "assistant",
                                       f"[Error] {ExecutionTimeoutError(runtime.timeout_seconds).message}")
                raise ExecutionTimeoutError(runtime.timeout_seconds) from e
            error = wrap_exception(e, "orchestrator_run", {"agent_name": orchestrator.name, "task_id": thread_id})
            append_session_message(self.store, self.hub, session_id, "assistant", f"[Error] {error.message}")
            logger.error(f"Orchestrator thread {thread_id} failed: {error.message}")
            if error is e:
                raise
            raise error from e
        finally:
            if timer is not None:
                timer.cancel()

        summary = completion_summary or extract_completion_summary(final_text)
        return OrchestratorRunResult(text=summary if summary is not None else final_text)
