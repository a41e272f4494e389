"""Tests for the cron and event trigger endpoints."""
from __future__ import annotations


def test_cron_requires_secret(client):
    r = client.post("/triggers/cron", json={"workflow": "relationship.sync"})
    assert r.status_code == 401
    r = client.post("/triggers/cron", json={"workflow": "relationship.sync"}, headers={"x-cron-secret": "wrong"})
    assert r.status_code == 401


def test_cron_accepts_bearer_secret(client):
    r = client.post(
        "/triggers/cron",
        json={"workflow": "memory.cleanup"},
        headers={"Authorization": "Bearer test-cron-secret"},
    )
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["workflow"] == "memory.cleanup"
    assert data["status"] == "success"


def test_cron_rejects_event_driven_workflow(client, cron_headers):
    r = client.post("/triggers/cron", json={"workflow": "agent.chat"}, headers=cron_headers)
    assert r.status_code == 200
    assert r.json()["success"] is False


def test_cron_query_param_selects_workflow(client, cron_headers):
    r = client.post("/triggers/cron?workflow=relationship.sync", headers=cron_headers)
    assert r.status_code == 200
    assert r.json()["workflow"] == "relationship.sync"


def test_cron_agent_cycle(client, cron_headers, seeded, live_simulation, fake_llm):
    fake_llm.then_call("like", postId="P1")
    r = client.post("/triggers/cron", json={"workflow": "agent.cycle"}, headers=cron_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["status"] == "success"
    assert data["actions"] == ["like"]
    assert data["data"]["agents"] >= 1
    assert fake_llm.calls >= 1


def test_chat_trigger(client, admin_headers, seeded, fake_llm):
    fake_llm.then_call("reply", content="Hello Hana!")
    r = client.post("/triggers/chat", json={
        "agent_id": "agent-a",
        "sender_id": "user-h",
        "message": "hi ada",
        "get_history": True,
    }, headers=admin_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["actions"] == ["reply"]
    contents = [m["content"] for m in data["history"]]
    assert contents[-2:] == ["hi ada", "Hello Hana!"]


def test_chat_trigger_unknown_agent(client, admin_headers, seeded, fake_llm):
    r = client.post("/triggers/chat", json={"agent_id": "ghost", "sender_id": "user-h", "message": "boo"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["success"] is False
    assert fake_llm.calls == 0


def test_chat_trigger_validates_body(client, admin_headers):
    r = client.post("/triggers/chat", json={"agent_id": "agent-a", "sender_id": "user-h", "message": ""}, headers=admin_headers)
    assert r.status_code == 422


def test_mention_trigger(client, cron_headers, seeded, fake_llm):
    fake_llm.then_call("comment", postId="P1", content="Count me in @hana")
    r = client.post("/triggers/mention", json={
        "agent_id": "agent-b",
        "mentioner_id": "user-h",
        "content": "@bob what do you think?",
        "post_id": "P1",
    }, headers=cron_headers)
    assert r.status_code == 200
    assert r.json()["actions"] == ["comment"]


def test_comment_trigger(client, user_headers, seeded, fake_llm):
    r = client.post("/triggers/comment", json={
        "agent_id": "agent-a",
        "post_id": "P1",
        "commenter_id": "user-h",
        "content": "what do you grow?",
    }, headers=user_headers)
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert fake_llm.calls == 1


def test_event_triggers_require_credentials(client, seeded, fake_llm):
    bodies = {
        "/triggers/chat": {"agent_id": "agent-a", "sender_id": "user-h", "message": "hi"},
        "/triggers/comment": {"agent_id": "agent-a", "post_id": "P1", "commenter_id": "user-h", "content": "hi"},
        "/triggers/mention": {"agent_id": "agent-b", "mentioner_id": "user-h", "content": "@bob hi"},
        "/triggers/group": {"group_id": "G1", "sender_id": "user-h", "content": "hi"},
        "/triggers/event": {"event_type": "post", "context": {"post_id": "P1"}},
    }
    for path, body in bodies.items():
        assert client.post(path, json=body).status_code == 401, path
        assert client.post(path, json=body, headers={"Authorization": "Bearer wrong"}).status_code == 401, path
        assert client.post(path, json=body, headers={"x-cron-secret": "wrong"}).status_code == 401, path
    assert fake_llm.calls == 0


def test_user_token_cannot_speak_for_others(client, user_headers, seeded, fake_llm):
    r = client.post(
        "/triggers/chat",
        json={"agent_id": "agent-a", "sender_id": "agent-b", "message": "pretend I am bob"},
        headers=user_headers,
    )
    assert r.status_code == 403
    r = client.post(
        "/triggers/event",
        json={"event_type": "post", "context": {"post_id": "P1"}},
        headers=user_headers,
    )
    assert r.status_code == 403
    assert fake_llm.calls == 0


def test_group_trigger_stores_message(client, user_headers, seeded, fake_llm):
    from sim_api import state

    state.runtime.store.create_group_conversation("Garden club", ["agent-a", "user-h"], group_id="G1")
    r = client.post(
        "/triggers/group",
        json={"group_id": "G1", "sender_id": "user-h", "content": "seed swap on Saturday"},
        headers=user_headers,
    )
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["agents_spawned"] == []
    assert state.runtime.store.list_group_messages("G1")[-1]["content"] == "seed swap on Saturday"


def test_event_trigger_routes_by_type(client, admin_headers, seeded, fake_llm):
    r = client.post("/triggers/event", json={"event_type": "battle", "context": {"battle_id": "nope"}}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["success"] is False
    r = client.post("/triggers/event", json={"event_type": "volcano", "context": {}}, headers=admin_headers)
    assert "unknown event type" in r.json()["errors"][0]
    r = client.post("/triggers/event", json={"event_type": "post", "context": {"post_id": "P1"}}, headers=admin_headers)
    assert r.json()["success"] is True
    assert r.json()["mentions_spawned"] == []
