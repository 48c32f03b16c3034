"""
Chat turn collaborator - one request/response turn for non-orchestrator agents.

The queue hands plain agents to a ``ChatTurnExecutor`` instead of the
orchestrator graph. The default executor replays the session transcript to
the agent's chat model and saves the reply.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from swarm_engine.config import LLMConfig
from swarm_engine.storage import CollectionStore
from swarm_engine.utils.logger import get_logger

from .llm_factory import ModelSpec, build_chat_model, resolve_model_spec
from .notifications import NotificationHub
from .orchestrator_tools import message_text
from .transcripts import append_session_message

logger = get_logger(__name__)

HISTORY_LIMIT = 40


@dataclass
class ChatTurnResult:
    text: str = ""
    error: Optional[str] = None


class ChatTurnExecutor:
    """Interface used by the queue; override ``execute_session_chat_turn``."""

    def execute_session_chat_turn(
        self,
        session_id: str,
        message: str,
        internal: bool = False,
        source: str = "chat",
    ) -> ChatTurnResult:
        raise NotImplementedError


class ModelChatTurnExecutor(ChatTurnExecutor):
    """Calls the session's agent model once with the recent transcript."""

    def __init__(
        self,
        store: CollectionStore,
        hub: Optional[NotificationHub],
        defaults: Optional[LLMConfig] = None,
        model_factory: Callable[[ModelSpec], Any] = build_chat_model,
    ):
        self.store = store
        self.hub = hub
        self.defaults = defaults or LLMConfig()
        self.model_factory = model_factory

    def _history(self, session, system_prompt: str) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        for entry in session.messages[-HISTORY_LIMIT:]:
            if entry.kind == "system" or not entry.text:
                continue
            if entry.role == "user":
                messages.append(HumanMessage(content=entry.text))
            elif entry.role == "assistant":
                messages.append(AIMessage(content=entry.text))
        return messages

    def execute_session_chat_turn(
        self,
        session_id: str,
        message: str,
        internal: bool = False,
        source: str = "chat",
    ) -> ChatTurnResult:
        session = self.store.get_session(session_id)
        if session is None:
            return ChatTurnResult(error=f"Session {session_id} not found")

        agent = self.store.load_agents().get(session.agent_id) if session.agent_id else None
        system_prompt = agent.system_prompt if agent is not None else ""

        if not internal:
            append_session_message(self.store, self.hub, session_id, "user", message)
            session = self.store.get_session(session_id) or session
            history = self._history(session, system_prompt)
        else:
            history = self._history(session, system_prompt) + [HumanMessage(content=message)]

        try:
            spec = resolve_model_spec(
                session.provider or (agent.provider if agent else None),
                session.model or (agent.model if agent else None),
                session.credential_id or (agent.credential_id if agent else None),
                session.api_endpoint or (agent.api_endpoint if agent else None),
                {},
                self.store.load("credentials"),
                self.defaults,
            )
            response = self.model_factory(spec).invoke(history)
        except Exception as e:
            logger.warning(f"Chat turn failed for session {session_id} ({source}): {e}")
            return ChatTurnResult(error=str(e) or e.__class__.__name__)

        text = message_text(response)
        if text:
            append_session_message(self.store, self.hub, session_id, "assistant", text)
        return ChatTurnResult(text=text)
