"""
API tests for the FastAPI server, using Starlette's TestClient.
"""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import make_task
from ui.server import create_app


@pytest.fixture
def client(engine, agents):
    with TestClient(create_app(engine)) as test_client:
        yield test_client


def _wait_for_subscription(hub, topic, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if any(topic in c.topics for c in list(hub._clients.values())):
            return True
        time.sleep(0.01)
    return False


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_and_list_tasks(client, store):
    response = client.post("/api/tasks", json={"title": "Say hello", "agent_id": "worker"})
    assert response.status_code == 200
    created = response.json()
    assert created["status"] == "backlog"

    listed = client.get("/api/tasks", params={"status": "backlog"}).json()
    assert [t["id"] for t in listed] == [created["id"]]
    assert created["id"] in store.load_tasks()


def test_create_with_queue_flag(client, store):
    created = client.post("/api/tasks", json={"title": "Say hello", "agent_id": "worker", "queue": True}).json()
    assert created["status"] == "queued"
    assert store.load_queue() == [created["id"]]


def test_create_rejects_unknown_agent(client):
    response = client.post("/api/tasks", json={"title": "x", "agent_id": "ghost"})
    assert response.status_code == 400


def test_create_validates_policy_bounds(client):
    response = client.post("/api/tasks", json={"title": "x", "agent_id": "worker", "max_attempts": 50})
    assert response.status_code == 422


def test_queue_unknown_task(client):
    assert client.post("/api/tasks/missing/queue").status_code == 404


def test_approve_without_pending_approval(client, store):
    make_task(store)
    response = client.post("/api/tasks/t1/approve", json={"approved": True})
    assert response.status_code == 409


def test_process_queue_runs_task(client, store, chat_executor):
    chat_executor.outcomes = ["Hello! How can I help you today?"]
    make_task(store)
    client.post("/api/tasks/t1/queue")

    response = client.post("/api/queue/process")

    assert response.json() == {"started": True, "queued": 1}
    assert store.load_tasks()["t1"].status.value == "completed"
    events = client.get("/api/events", params={"event_type": "task_completed"}).json()
    assert events[0]["text"] == 'Task completed: "Say hello" (t1)'


def test_audit_endpoints(client):
    assert client.post("/api/tasks/validate-completed").json() == {"checked": 0, "demoted": 0}
    assert client.post("/api/tasks/recover-stalled").json() == {"recovered": 0, "dead_lettered": 0}


def test_orchestrator_graph(client):
    graph = client.get("/api/orchestrator/graph").json()
    assert graph["nodes"] == ["agent", "tools", "router"]


def test_websocket_receives_subscribed_topics(client, engine):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "subscribe", "topics": ["tasks"]})
        assert _wait_for_subscription(engine.hub, "tasks")

        engine.hub.notify("tasks", "update", "t1")

        assert ws.receive_json() == {"topic": "tasks", "action": "update", "id": "t1"}


def test_websocket_rejects_bad_access_key(client, engine):
    engine.config.access_key = "open-sesame"

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/ws?key=wrong") as ws:
            ws.receive_text()
    assert excinfo.value.code == 4001


def test_websocket_accepts_access_key(client, engine):
    engine.config.access_key = "open-sesame"

    with client.websocket_connect("/ws?key=open-sesame") as ws:
        ws.send_json({"type": "subscribe", "topics": ["runs"]})
        assert _wait_for_subscription(engine.hub, "runs")
