"""
Tests for the orchestrator execution graph: delegation, fallback routing,
strict-mode pause/resume, cancellation and error reporting.
"""

import threading

import pytest

from conftest import tool_call
from swarm_engine.core.orchestrator_graph import describe_graph, extract_completion_summary
from swarm_engine.core.transcripts import create_execution_session
from swarm_engine.config import RuntimeLoopConfig
from swarm_engine.utils.exceptions import AgentExecutionError, ExecutionCancelledError, ExecutionTimeoutError


@pytest.fixture
def session_id(store, agents):
    return create_execution_session(store, agents["orch"], name="[Task] Docs")


def _texts(store, session_id):
    return [m.text for m in store.get_session(session_id).messages]


def test_describe_graph_lists_nodes_and_edges():
    graph = describe_graph()
    assert graph["nodes"] == ["agent", "tools", "router"]
    pairs = {(e["from"], e["to"]) for e in graph["edges"]}
    assert ("agent", "tools") in pairs
    assert ("tools", "router") in pairs
    assert ("router", "agent") in pairs


def test_completion_summary_marker():
    assert extract_completion_summary("ORCHESTRATION_COMPLETE:  all done ") == "all done"
    assert extract_completion_summary("no marker") is None


def test_delegation_then_mark_complete(engine, agents, models, session_id, store):
    models["orch-model"].responses = [
        tool_call("delegate_to_agent", {"agent_name": "Researcher", "task": "Find the docs"}),
        tool_call("mark_complete", {"summary": "Docs summarized and written to notes.md"}, "call_2"),
        "Finished.",
    ]
    models["worker-model"].responses = ["Here are the docs you asked for."]

    result = engine.graph.run(agents["orch"], "Summarize the docs", session_id)

    assert result.paused is False
    assert result.text == "Docs summarized and written to notes.md"

    texts = _texts(store, session_id)
    assert texts[0] == "Summarize the docs"
    assert "Delegated to Researcher: Find the docs" in texts
    assert texts[-1] == "Finished."

    delegated = [m for m in store.get_session(session_id).messages if m.tool_events]
    assert delegated[0].tool_events[0].name == "delegate_to_agent"
    assert delegated[0].tool_events[0].output == "Here are the docs you asked for."

    children = [s for s in store.load_sessions().values() if s.parent_session_id == session_id]
    assert len(children) == 1
    assert children[0].name == "[Agent] Researcher: Find the docs"
    assert [m.role for m in children[0].messages] == ["user", "assistant"]


def test_system_prompt_lists_delegates(engine, agents, models, session_id):
    models["orch-model"].responses = ["Nothing to do."]
    engine.graph.run(agents["orch"], "Hi", session_id)

    system_prompt = models["orch-model"].calls[0][0].content
    assert "You coordinate work." in system_prompt
    assert "- Researcher: Finds and summarizes documents [tools: web_search]" in system_prompt
    assert "Always call mark_complete when you are done." in system_prompt


def test_router_injects_fallback_hint(engine, agents, models, session_id):
    models["orch-model"].responses = [
        tool_call("delegate_to_agent", {"agent_name": "Ghost", "task": "Haunt"}),
        "I could not find a matching agent.",
    ]

    result = engine.graph.run(agents["orch"], "Do it", session_id)

    assert result.text == "I could not find a matching agent."
    second_call = [m.content for m in models["orch-model"].calls[1]]
    assert any('Agent "Ghost" not found' in c for c in second_call)
    assert any("Fallback attempt 1/2." in c for c in second_call)


def test_strict_mode_pauses_and_resumes(engine, agents, models, session_id, store):
    store.save_settings({"capability_policy_mode": "strict"})
    models["orch-model"].responses = [
        tool_call("mark_complete", {"summary": "Release notes drafted for v2.1"}),
        "All set.",
    ]

    paused = engine.graph.run(agents["orch"], "Draft notes", session_id, task_id="task-9")

    assert paused.paused is True
    assert paused.pending_approval.tool_name == "mark_complete"
    assert paused.pending_approval.args == {"summary": "Release notes drafted for v2.1"}
    assert paused.pending_approval.thread_id == "task-9"
    assert _texts(store, session_id)[-1].startswith("[Awaiting approval] Tool: mark_complete")
    assert engine.checkpointer.count_checkpoints("task-9") > 0

    resumed = engine.graph.resume(agents["orch"], session_id, thread_id="task-9")

    assert resumed.paused is False
    assert resumed.text == "Release notes drafted for v2.1"
    # the agent step is not re-run on resume
    assert len(models["orch-model"].calls) == 2


def test_cancelled_run_raises_and_records_error(engine, agents, models, session_id, store):
    models["orch-model"].responses = ["Working on it."]
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(ExecutionCancelledError):
        engine.graph.run(agents["orch"], "Go", session_id, cancel_event=cancel)

    assert _texts(store, session_id)[-1] == "[Error] Execution was cancelled before completion."


def test_model_failure_becomes_agent_execution_error(engine, agents, models, session_id, store):
    models["orch-model"].responses = [RuntimeError("provider unavailable")]

    with pytest.raises(AgentExecutionError) as excinfo:
        engine.graph.run(agents["orch"], "Go", session_id)

    assert "provider unavailable" in excinfo.value.message
    assert _texts(store, session_id)[-1] == "[Error] provider unavailable"


def test_ongoing_run_stops_at_runtime_limit(engine, agents, models, session_id, store):
    engine.config.runtime = RuntimeLoopConfig(loop_mode="ongoing", ongoing_max_runtime_minutes=0.001)
    models["orch-model"].delay = 0.5
    models["orch-model"].responses = ["Still working on it."]

    with pytest.raises(ExecutionTimeoutError) as excinfo:
        engine.graph.run(agents["orch"], "Keep going", session_id, task_id="task-5")

    assert excinfo.value.timeout_seconds == pytest.approx(0.06)
    assert _texts(store, session_id)[-1] == "[Error] Ongoing loop stopped after reaching the configured runtime limit."


def test_bounded_run_has_no_runtime_limit(engine, agents, models, session_id):
    engine.config.runtime = RuntimeLoopConfig(loop_mode="bounded", ongoing_max_runtime_minutes=0.001)
    models["orch-model"].delay = 0.2
    models["orch-model"].responses = ["Done in time."]

    assert engine.graph.run(agents["orch"], "Go", session_id).text == "Done in time."


def test_rerun_of_interrupted_thread_continues_from_checkpoint(engine, agents, models, session_id, store):
    models["orch-model"].responses = [RuntimeError("provider unavailable"), "Recovered and finished."]
    with pytest.raises(AgentExecutionError):
        engine.graph.run(agents["orch"], "Draft the notes", session_id, task_id="task-7")

    result = engine.graph.run(agents["orch"], "Draft the notes again", session_id, task_id="task-7")

    assert result.text == "Recovered and finished."
    # the second prompt never reached the graph, so it is not in the transcript either
    user_texts = [m.text for m in store.get_session(session_id).messages if m.role == "user"]
    assert user_texts == ["Draft the notes"]
    human = [m.content for m in models["orch-model"].calls[-1] if m.type == "human"]
    assert human == ["Draft the notes"]
