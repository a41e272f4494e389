"""Tests for tool registration, verification, input normalization and dispatch."""
from __future__ import annotations

import asyncio

import pytest

from agent_engine.errors import RegistryError
from agent_engine.models import ToolDefinition, ToolExecutionContext
from agent_engine.tools.registry import ToolRegistry, is_placeholder, normalize_tool_input


def _schema(props=None, required=None):
    return {"type": "object", "properties": props or {}, "required": required or []}


async def _echo(args, ctx):
    return dict(args)


async def _other(args, ctx):
    return {}


def test_builtin_registry_verifies(runtime):
    names = runtime.registry.names()
    for expected in ("get_my_stats", "get_post_details", "like", "reply", "decline", "ignore"):
        assert expected in names
    runtime.registry.verify()


def test_llm_function_export_filters_by_category(runtime):
    fns = runtime.registry.get_tools_as_llm_functions(category="action")
    names = {f["function"]["name"] for f in fns}
    assert "like" in names
    assert "get_my_stats" not in names
    like = next(f for f in fns if f["function"]["name"] == "like")
    assert like["type"] == "function"
    assert like["function"]["parameters"]["required"] == ["postId"]


def test_duplicate_registration_is_last_write_wins_and_reported():
    reg = ToolRegistry()
    reg.register_tool(ToolDefinition("t", "data", "first", _schema(), _echo))
    reg.register_tool(ToolDefinition("t", "data", "second", _schema(), _other))
    assert reg.resolve("t").description == "second"
    with pytest.raises(RegistryError, match="registered more than once"):
        reg.verify()


def test_verify_rejects_sync_handler_and_bad_schema():
    def sync_handler(args, ctx):
        return {}

    reg = ToolRegistry()
    reg.register_tool(ToolDefinition("a", "action", "", _schema({"x": {"type": "widget"}}), _echo))
    reg.register_tool(ToolDefinition("b", "action", "", _schema({}, ["missing"]), sync_handler))
    with pytest.raises(RegistryError) as e:
        reg.verify()
    msg = str(e.value)
    assert "unsupported type" in msg
    assert "required parameter missing" in msg
    assert "must be an async function" in msg


def test_verify_rejects_shared_handler():
    reg = ToolRegistry()
    reg.register_tool(ToolDefinition("a", "data", "", _schema(), _echo))
    reg.register_tool(ToolDefinition("b", "data", "", _schema(), _echo))
    with pytest.raises(RegistryError, match="shares its handler"):
        reg.verify()


@pytest.mark.parametrize("value", [None, "", "  ", "{postId}", "<post_id>", "POST_ID", "$postId", "current_post"])
def test_placeholders_detected(value):
    assert is_placeholder(value)


@pytest.mark.parametrize("value", ["P1", "post_9f3a", 42])
def test_real_ids_are_not_placeholders(value):
    assert not is_placeholder(value)


def test_normalize_fills_placeholders_from_metadata():
    d = ToolDefinition("like", "action", "", _schema({"postId": {"type": "string"}}, ["postId"]), _echo)
    ctx = ToolExecutionContext("agent-a", metadata={"postId": "P1"})
    assert normalize_tool_input(d, {"postId": "{postId}"}, ctx) == {"postId": "P1"}
    assert normalize_tool_input(d, {}, ctx) == {"postId": "P1"}
    assert normalize_tool_input(d, {"postId": "P7"}, ctx) == {"postId": "P7"}


def test_normalize_drops_unfillable_placeholder():
    d = ToolDefinition("follow", "action", "", _schema({"userId": {"type": "string"}}, ["userId"]), _echo)
    assert normalize_tool_input(d, {"userId": "USER_ID"}, ToolExecutionContext("agent-a")) == {}


def test_execute_maps_failures_to_error_kinds():
    async def boom(args, ctx):
        raise RuntimeError("disk on fire")

    reg = ToolRegistry()
    reg.register_tool(ToolDefinition("echo", "data", "", _schema({"n": {"type": "integer"}}, ["n"]), _echo))
    reg.register_tool(ToolDefinition("boom", "data", "", _schema(), boom))
    ctx = ToolExecutionContext("agent-a")

    ok = asyncio.run(reg.execute("echo", {"n": 3}, ctx))
    assert ok.ok and ok.result == {"n": 3}

    missing = asyncio.run(reg.execute("echo", {}, ctx))
    assert missing.error_kind == "validation"

    wrong_type = asyncio.run(reg.execute("echo", {"n": "three"}, ctx))
    assert wrong_type.error_kind == "validation"

    unknown = asyncio.run(reg.execute("nope", {}, ctx))
    assert unknown.error_kind == "not_found"

    failed = asyncio.run(reg.execute("boom", {}, ctx))
    assert failed.ok is False
    assert failed.error_kind == "failed"
    assert "disk on fire" in failed.error


def test_data_tool_not_found(runtime):
    ctx = ToolExecutionContext("agent-a")
    res = asyncio.run(runtime.registry.execute("get_post_details", {"postId": "P404"}, ctx))
    assert res.ok is False
    assert res.error_kind == "not_found"
