"""Tests for world-changing tools invoked directly through the registry."""
from __future__ import annotations

import asyncio

from agent_engine.models import ToolExecutionContext


def _run(runtime, name, args, ctx):
    return asyncio.run(runtime.registry.execute(name, args, ctx))


def test_like_twice_is_a_no_op(runtime, store):
    ctx = ToolExecutionContext("agent-a")
    first = _run(runtime, "like", {"postId": "P1"}, ctx)
    second = _run(runtime, "like", {"postId": "P1"}, ctx)
    assert first.ok and first.result["likes"] == 1
    assert second.ok and second.result["changed"] is False
    assert store.like_count("P1") == 1


def test_send_message_reuses_conversation(runtime, store):
    ctx = ToolExecutionContext("agent-a")
    first = _run(runtime, "send_message", {"userId": "user-h", "content": "hi"}, ctx)
    second = _run(runtime, "send_message", {"userId": "user-h", "content": "hi again"}, ctx)
    assert first.result["newConversation"] is True
    assert second.result["newConversation"] is False
    assert first.result["conversationId"] == second.result["conversationId"]
    assert len(store.conversations) == 1
    assert [n["kind"] for n in store.list_notifications("user-h")] == ["message", "message"]


def test_reply_uses_bound_conversation_only(runtime, store):
    conv, _ = store.get_or_create_conversation("agent-a", "user-h")
    other, _ = store.get_or_create_conversation("agent-b", "user-h")
    ctx = ToolExecutionContext("agent-a", conversation_id=conv["id"])
    res = _run(runtime, "reply", {"content": "sure", "conversationId": other["id"]}, ctx)
    assert res.ok
    assert res.result["conversationId"] == conv["id"]
    assert store.list_messages(other["id"]) == []


def test_reply_without_conversation_is_invalid(runtime):
    res = _run(runtime, "reply", {"content": "hello?"}, ToolExecutionContext("agent-a"))
    assert res.ok is False
    assert res.error_kind == "validation"


def test_reply_rejects_foreign_conversation(runtime, store):
    conv, _ = store.get_or_create_conversation("agent-b", "user-h")
    res = _run(runtime, "reply", {"content": "butting in"}, ToolExecutionContext("agent-a", conversation_id=conv["id"]))
    assert res.error_kind == "validation"


def test_comment_notifies_owner_and_mentions(runtime, store):
    res = _run(runtime, "comment", {"postId": "P1", "content": "Lovely! @bob look at these"}, ToolExecutionContext("agent-a"))
    assert res.ok
    assert [n["kind"] for n in store.list_notifications("user-h")] == ["comment"]
    assert [n["kind"] for n in store.list_notifications("agent-b")] == ["mention"]
    assert store.list_notifications("agent-a") == []


def test_decline_on_post_subject_answers_as_comment(runtime, store):
    ctx = ToolExecutionContext(
        "agent-a",
        metadata={"subjectType": "post", "subjectId": "P1", "postId": "P1", "requesterId": "user-h"},
    )
    res = _run(runtime, "decline", {"message": "No thanks.", "requestKind": "join_community"}, ctx)
    assert res.ok
    assert res.result["surface"] == "post_comment"
    assert res.result["level"] == 1
    assert [c["content"] for c in store.list_comments("P1")] == ["No thanks."]
    actions = store.list_agent_actions("agent-a", target_id="user-h", action_types=["decline"])
    assert len(actions) == 1
    assert actions[0]["metadata"]["requestKind"] == "join_community"


def test_decline_level_follows_history(runtime, store, clock):
    store.record_agent_action("agent-a", "decline", "user-h", created_at=clock() - 60)
    store.record_agent_action("agent-a", "decline", "user-h", created_at=clock() - 30)
    ctx = ToolExecutionContext("agent-a", metadata={"requesterId": "user-h"})
    res = _run(runtime, "decline", {"message": "Stop asking."}, ctx)
    assert res.result["level"] == 3
    assert res.result["surface"] == "conversation"


def test_ignore_is_silent_by_default(runtime, store):
    ctx = ToolExecutionContext("agent-a", metadata={"requesterId": "user-h"})
    res = _run(runtime, "ignore", {"reason": "spam"}, ctx)
    assert res.ok and res.result["responded"] is False
    assert store.messages == []
    assert store.list_agent_actions("agent-a", action_types=["ignore"])[0]["target_id"] == "user-h"


def test_join_and_leave_community_report_change(runtime, store):
    ctx = ToolExecutionContext("agent-a")
    assert _run(runtime, "join_community", {"communityId": "c1"}, ctx).result["changed"] is True
    assert _run(runtime, "join_community", {"communityId": "c1"}, ctx).result["changed"] is False
    assert _run(runtime, "leave_community", {"communityId": "c1"}, ctx).result["changed"] is True
    assert _run(runtime, "join_community", {"communityId": "nope"}, ctx).error_kind == "not_found"


def test_follow_self_is_invalid(runtime):
    res = _run(runtime, "follow", {"userId": "agent-a"}, ToolExecutionContext("agent-a"))
    assert res.error_kind == "validation"
