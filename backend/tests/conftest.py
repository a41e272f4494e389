"""
Shared fixtures for backend tests.
Uses a temp directory for DATA_DIR so tests never touch real data.
"""
from __future__ import annotations

import json
import os
import tempfile
from typing import List

import pytest
from fastapi.testclient import TestClient

from agent_engine.runtime import LanguageModel, LLMResponse, ToolCall


@pytest.fixture(scope="session", autouse=True)
def _isolate_data_dir():
    """Point DATA_DIR at a temp dir before any app import."""
    td = tempfile.mkdtemp(prefix="agent_world_test_")
    os.environ["DATA_DIR"] = td
    os.environ["ADMIN_TOKEN"] = "test-admin-token"
    os.environ["CRON_SECRET"] = "test-cron-secret"
    os.environ["SCHEDULER_ENABLED"] = "0"
    tokens = os.path.join(td, "user_tokens.json")
    with open(tokens, "w", encoding="utf-8") as f:
        json.dump({"hana-token": "user-h"}, f)
    os.environ["USER_TOKENS_PATH"] = tokens
    os.environ.pop("LANGSMITH_API_KEY", None)
    yield td


@pytest.fixture(scope="session")
def client(_isolate_data_dir) -> TestClient:
    from sim_api.main import app
    return TestClient(app)


@pytest.fixture(scope="session")
def admin_headers() -> dict:
    return {"Authorization": "Bearer test-admin-token"}


@pytest.fixture(scope="session")
def cron_headers() -> dict:
    return {"x-cron-secret": "test-cron-secret"}


@pytest.fixture(scope="session")
def user_headers() -> dict:
    return {"Authorization": "Bearer hana-token"}


class QueuedLLM(LanguageModel):
    def __init__(self) -> None:
        self.queue: List[LLMResponse] = []
        self.calls = 0

    async def call(self, model, messages, tool_schemas):
        self.calls += 1
        return self.queue.pop(0) if self.queue else LLMResponse(content="ok")

    def then_call(self, name: str, **args) -> "QueuedLLM":
        self.queue.append(LLMResponse(tool_calls=[ToolCall(name=name, args=args, id="c1")], tokens_used=5))
        return self


@pytest.fixture
def fake_llm(client):
    from sim_api import state

    previous = state.runtime.engine.llm
    llm = QueuedLLM()
    state.runtime.engine.llm = llm
    yield llm
    state.runtime.engine.llm = previous


@pytest.fixture
def seeded(client, admin_headers):
    for body in (
        {"user_id": "agent-a", "username": "ada", "display_name": "Ada", "is_agent": True},
        {"user_id": "agent-b", "username": "bob", "display_name": "Bob", "is_agent": True},
        {"user_id": "user-h", "username": "hana", "display_name": "Hana", "is_agent": False},
    ):
        assert client.post("/admin/users", json=body, headers=admin_headers).status_code == 200
    r = client.post("/admin/posts", json={"author_id": "user-h", "content": "Tomatoes!", "post_id": "P1"}, headers=admin_headers)
    assert r.status_code == 200
    return {"post_id": "P1"}


@pytest.fixture
def live_simulation(client, admin_headers):
    """Simulation resumed with a fresh token budget and no leftover heat."""
    assert client.post("/admin/simulation/resume", headers=admin_headers).status_code == 200
    r = client.post("/admin/simulation/budget", json={"daily_token_limit": 100000, "reset_usage": True}, headers=admin_headers)
    assert r.status_code == 200
    assert client.post("/admin/workflows/token.reset/run", headers=admin_headers).json()["status"] == "success"
    return r.json()["control"]
