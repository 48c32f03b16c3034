"""
Orchestrator tools - the fixed tool set bound to an orchestrator's model.

Each tool is a LangChain tool with a pydantic argument schema, closed over
the orchestrator, its execution session and the stores it may touch.
Outcomes are returned as plain strings the model reads back; a failed
delegation starts with ``Error:`` or ``Agent "<name>" not found`` so the
graph's router can offer a fallback.
"""

import json
import re
from typing import Callable, Dict, List, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from swarm_engine.models import Agent, BoardTask, MemoryEntry, Secret, TaskComment, TaskStatus, ToolEvent
from swarm_engine.storage import CollectionStore
from swarm_engine.utils.ids import gen_id, now_ms
from swarm_engine.utils.logger import get_logger

from .notifications import NotificationHub
from .transcripts import append_session_message, create_execution_session

logger = get_logger(__name__)

COMPLETION_MARKER = "ORCHESTRATION_COMPLETE:"
DELEGATE_TOOL_NAME = "delegate_to_agent"
MEMORY_SEARCH_LIMIT = 10


class DelegateArgs(BaseModel):
    agent_name: str = Field(description="Name of the agent to delegate to")
    task: str = Field(description="The task description for the agent")


class StoreMemoryArgs(BaseModel):
    category: str = Field(description='Category keyword (e.g. "seo", "deployment", "finding")')
    title: str = Field(description="Short descriptive title")
    content: str = Field(description="The content to remember")


class SearchMemoryArgs(BaseModel):
    query: str = Field(description="Search terms")


class GetSecretArgs(BaseModel):
    service_name: str = Field(description="The service name or secret name to look up")


class CommentOnTaskArgs(BaseModel):
    task_id: str = Field(description="The task ID to comment on")
    comment: str = Field(description="The comment text")


class CreateTaskArgs(BaseModel):
    title: str = Field(description="Short task title")
    description: str = Field(description="Detailed description of what needs to be done")


class MarkCompleteArgs(BaseModel):
    summary: str = Field(description="Summary of what was accomplished")


def message_text(message) -> str:
    """Flatten a LangChain message's content to plain text."""
    content = getattr(message, "content", "")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return ""


def search_memories(memories: List[MemoryEntry], query: str, agent_id: str) -> List[MemoryEntry]:
    """Rank an agent's memories by how many query terms they contain."""
    terms = [t for t in re.split(r"\W+", query.lower()) if t]
    if not terms:
        return []
    scored = []
    for entry in memories:
        if entry.agent_id != agent_id:
            continue
        haystack = f"{entry.category} {entry.title} {entry.content}".lower()
        score = sum(1 for t in terms if t in haystack)
        if score:
            scored.append((score, entry.created_at, entry))
    scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [entry for _, _, entry in scored[:MEMORY_SEARCH_LIMIT]]


class OrchestratorToolkit:
    """
    Builds the orchestrator's tools for one run.

    Args:
        store: Collection store for tasks, sessions, memories and secrets
        hub: Notification hub told about transcript and board changes
        orchestrator: The orchestrating agent
        delegates: Agents the orchestrator may delegate to
        session_id: The run's execution session
        delegate_model: Returns an invokable chat model for a delegate agent
    """

    def __init__(
        self,
        store: CollectionStore,
        hub: NotificationHub,
        orchestrator: Agent,
        delegates: List[Agent],
        session_id: str,
        delegate_model: Callable[[Agent], object],
        secrets: Optional[List[Secret]] = None,
    ):
        self.store = store
        self.hub = hub
        self.orchestrator = orchestrator
        self.delegates = delegates
        self.session_id = session_id
        self.delegate_model = delegate_model
        self.secrets = secrets if secrets is not None else [
            s for s in store.load_secrets().values() if s.visible_to(orchestrator.id)
        ]

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    def _find_delegate(self, name: str) -> Optional[Agent]:
        wanted = name.strip().lower()
        return next((a for a in self.delegates if a.name.lower() == wanted), None)

    def run_delegate(self, agent: Agent, task: str) -> str:
        """One request/response turn for ``agent`` in a fresh child session."""
        parent = self.store.get_session(self.session_id)
        child_id = create_execution_session(
            self.store,
            agent,
            name=f"[Agent] {agent.name}: {task[:40]}",
            parent_session_id=self.session_id,
            cwd=parent.cwd if parent is not None else "",
        )
        model = self.delegate_model(agent)
        messages = []
        if agent.system_prompt:
            messages.append(SystemMessage(content=agent.system_prompt))
        messages.append(HumanMessage(content=task))
        response = model.invoke(messages)
        result = message_text(response)

        append_session_message(self.store, self.hub, child_id, "user", task)
        append_session_message(self.store, self.hub, child_id, "assistant", result)
        return result

    def delegate_to_agent(self, agent_name: str, task: str) -> str:
        agent = self._find_delegate(agent_name)
        if agent is None:
            available = ", ".join(a.name for a in self.delegates)
            return f'Agent "{agent_name}" not found. Available: {available}'

        logger.info(f"Delegating to {agent.name}: {task[:80]}")
        try:
            result = self.run_delegate(agent, task)
        except Exception as e:
            logger.warning(f"Delegation to {agent.name} failed: {e}")
            return f"Error: {e}"

        append_session_message(
            self.store, self.hub, self.session_id, "assistant",
            f"Delegated to {agent.name}: {task[:100]}",
            tool_events=[ToolEvent(
                name=DELEGATE_TOOL_NAME,
                input=json.dumps({"agent_name": agent.name, "agent_id": agent.id, "task": task}),
                output=result[:2000],
            )],
        )
        return result

    # ------------------------------------------------------------------
    # Memory, secrets and the task board
    # ------------------------------------------------------------------

    def store_memory(self, category: str, title: str, content: str) -> str:
        entry = MemoryEntry(
            id=gen_id(),
            agent_id=self.orchestrator.id,
            category=category,
            title=title,
            content=content,
            session_id=self.session_id,
            created_at=now_ms(),
        )

        def _insert(data):
            data[entry.id] = entry.to_dict()

        self.store.mutate("memories", _insert)
        logger.info(f"Stored memory: [{category}] {title}")
        return "Memory stored successfully."

    def search_memory(self, query: str) -> str:
        results = search_memories(list(self.store.load_memories().values()), query, self.orchestrator.id)
        if not results:
            return "No matching memories found."
        return "\n".join(f"[{m.category}] {m.title}: {m.content[:300]}" for m in results)

    def get_secret(self, service_name: str) -> str:
        wanted = service_name.strip().lower()
        match = next(
            (s for s in self.secrets if s.service.lower() == wanted or s.name.lower() == wanted),
            None,
        )
        if match is None:
            available = ", ".join(s.service for s in self.secrets) or "none"
            return f'No secret found for "{service_name}". Available services: {available}'
        logger.info(f"Retrieved secret for service: {match.service}")
        return json.dumps({"name": match.name, "service": match.service, "value": match.value})

    def comment_on_task(self, task_id: str, comment: str) -> str:
        now = now_ms()
        with self.store.editing("tasks") as tasks:
            task = tasks.get(task_id)
            if task is None:
                return f'Task "{task_id}" not found.'
            task.add_comment(TaskComment(
                id=gen_id(),
                author=self.orchestrator.name,
                agent_id=self.orchestrator.id,
                text=comment,
                created_at=now,
            ))
            task.updated_at = now
        self.hub.notify("tasks")
        return f'Comment added to task "{task.title}".'

    def create_task(self, title: str, description: str) -> str:
        now = now_ms()
        task = BoardTask(
            id=gen_id(),
            title=title,
            description=description,
            agent_id=self.orchestrator.id,
            status=TaskStatus.BACKLOG,
            created_at=now,
            updated_at=now,
            created_in_session_id=self.session_id,
        )
        with self.store.editing("tasks") as tasks:
            tasks[task.id] = task
        self.hub.notify("tasks")
        logger.info(f'Created backlog task: "{title}" ({task.id})')
        return f'Task "{title}" created in backlog (id: {task.id}). The user can review and queue it.'

    @staticmethod
    def mark_complete(summary: str) -> str:
        return f"{COMPLETION_MARKER} {summary}"

    # ------------------------------------------------------------------
    # LangChain tools
    # ------------------------------------------------------------------

    def build_tools(self) -> List[BaseTool]:
        @tool(DELEGATE_TOOL_NAME, args_schema=DelegateArgs)
        def delegate_tool(agent_name: str, task: str) -> str:
            """Delegate a task to one of the available agents. The agent will execute the task and return its result."""
            return self.delegate_to_agent(agent_name, task)

        @tool("store_memory", args_schema=StoreMemoryArgs)
        def store_memory_tool(category: str, title: str, content: str) -> str:
            """Store information in long-term memory for future reference."""
            return self.store_memory(category, title, content)

        @tool("search_memory", args_schema=SearchMemoryArgs)
        def search_memory_tool(query: str) -> str:
            """Search long-term memory for relevant information."""
            return self.search_memory(query)

        @tool("get_secret", args_schema=GetSecretArgs)
        def get_secret_tool(service_name: str) -> str:
            """Retrieve a stored credential by service name (e.g. "gmail"). Use this when a delegate needs API keys or logins."""
            return self.get_secret(service_name)

        @tool("comment_on_task", args_schema=CommentOnTaskArgs)
        def comment_on_task_tool(task_id: str, comment: str) -> str:
            """Add a comment to a task on the task board for status updates, questions or notes."""
            return self.comment_on_task(task_id, comment)

        @tool("create_task", args_schema=CreateTaskArgs)
        def create_task_tool(title: str, description: str) -> str:
            """Create a new backlog task for follow-up work the user should review."""
            return self.create_task(title, description)

        @tool("mark_complete", args_schema=MarkCompleteArgs)
        def mark_complete_tool(summary: str) -> str:
            """Signal that the orchestration task is done. Call this when all work is finished."""
            logger.info(f"Marked complete: {summary[:100]}")
            return self.mark_complete(summary)

        return [
            delegate_tool,
            store_memory_tool,
            search_memory_tool,
            get_secret_tool,
            comment_on_task_tool,
            create_task_tool,
            mark_complete_tool,
        ]

    # ------------------------------------------------------------------
    # Prompt context
    # ------------------------------------------------------------------

    def agent_list_context(self) -> str:
        if not self.delegates:
            return "\n\n(No agents available for delegation.)"
        lines = []
        for agent in self.delegates:
            tools = f" [tools: {', '.join(agent.tools)}]" if agent.tools else ""
            skills = f" [skills: {', '.join(agent.skills)}]" if agent.skills else ""
            lines.append(f"- {agent.name}: {agent.description}{tools}{skills}")
        return "\n\nAvailable agents:\n" + "\n".join(lines)

    def memory_context(self) -> str:
        memories = [m for m in self.store.load_memories().values() if m.agent_id == self.orchestrator.id]
        if not memories:
            return ""
        return "\n\nRelevant memories:\n" + "\n".join(
            f"[{m.category}] {m.title}: {m.content[:200]}" for m in memories[:10]
        )

    def secrets_context(self) -> str:
        if not self.secrets:
            return ""
        return "\n\nAvailable secrets (use get_secret tool to retrieve values):\n" + "\n".join(
            f"- {s.name} ({s.service})" for s in self.secrets
        )

    def task_board_context(self) -> str:
        tasks: Dict[str, BoardTask] = self.store.load_tasks()
        if not tasks:
            return ""
        return "\n\nCurrent task board:\n" + "\n".join(
            f'- [{t.status.value}] "{t.title}" (id: {t.id})' for t in list(tasks.values())[:20]
        )
