"""Tests for scheduled workflows: gating, run records and overlapping ticks."""
from __future__ import annotations

import asyncio

import pytest

from agent_engine.scheduler import AGENT_CHAT, AGENT_CYCLE, MEMORY_CLEANUP, RELATIONSHIP_SYNC, TOKEN_RESET, Scheduler
from engine_fakes import tool_calls


def test_agent_cycle_runs_a_batch(runtime, store, llm):
    llm.responses = [tool_calls(("like", {"postId": "P1"}), tokens=40)]
    result = asyncio.run(runtime.scheduler.trigger_job(AGENT_CYCLE, requested_by="tester"))
    assert result.success is True
    assert result.status == "success"
    assert result.data["agents"] == 2
    assert "like" in result.data["actions"]
    assert runtime.control.snapshot()["tokens_used_today"] == 40
    runs = store.list_workflow_runs()
    assert len(runs) == 1
    assert runs[0]["workflow_key"] == AGENT_CYCLE
    assert runs[0]["trigger"] == "manual"
    assert runs[0]["requested_by"] == "tester"


def test_paused_simulation_skips_without_engine_calls(runtime, store, llm):
    runtime.control.pause(minutes=30, reason="maintenance")
    result = asyncio.run(runtime.scheduler.run_workflow(AGENT_CYCLE, {"trigger": "cron"}))
    assert result.status == "skipped"
    assert result.success is True
    assert "paused" in result.message
    assert llm.calls == []
    assert store.list_workflow_runs()[0]["status"] == "skipped"


def test_pause_expires(runtime, clock, llm):
    runtime.control.pause(minutes=1)
    clock.advance(61)
    result = asyncio.run(runtime.scheduler.run_workflow(AGENT_CYCLE))
    assert result.status == "success"
    assert runtime.control.snapshot()["is_active"] is True
    assert llm.calls


def test_exhausted_budget_skips(runtime, llm):
    runtime.control.set_daily_limit(100)
    runtime.control.log_token_usage(100)
    result = asyncio.run(runtime.scheduler.run_workflow(AGENT_CYCLE))
    assert result.status == "skipped"
    assert "budget" in result.message
    assert llm.calls == []


def test_maintenance_jobs_are_not_gated(runtime, store, clock):
    runtime.control.pause()
    store.adjust_relationship("agent-a", "user-h", 3.0)
    store.add_memory("agent-a", "old", created_at=clock() - 40 * 86400)
    store.add_memory("agent-a", "fresh")
    sync = asyncio.run(runtime.scheduler.run_workflow(RELATIONSHIP_SYNC))
    cleanup = asyncio.run(runtime.scheduler.run_workflow(MEMORY_CLEANUP))
    assert sync.status == "success" and sync.data["updated"] == 1
    assert store.get_relationship("agent-a", "user-h")["score"] == 2.0
    assert cleanup.data["deleted"] == 1
    assert [m["content"] for m in store.memories] == ["fresh"]


def test_token_reset_clears_usage_and_heat(runtime):
    runtime.control.log_token_usage(500)
    runtime.heat.apply_heat("agent-a", "like")
    result = asyncio.run(runtime.scheduler.run_workflow(TOKEN_RESET))
    assert result.data["tokens_used_before"] == 500
    assert result.data["heat_records_cleared"] == 1
    assert runtime.control.snapshot()["tokens_used_today"] == 0


def test_event_driven_key_is_skipped(runtime, store):
    result = asyncio.run(runtime.scheduler.run_workflow(AGENT_CHAT))
    assert result.status == "skipped"
    assert AGENT_CHAT not in runtime.scheduler.jobs
    assert len(store.list_workflow_runs()) == 1


def test_unknown_key_is_an_error_record(runtime, store):
    result = asyncio.run(runtime.scheduler.run_workflow("agent.dance"))
    assert result.success is False
    assert result.error == "unknown_workflow"
    assert store.list_workflow_runs()[0]["status"] == "error"


def test_handler_exception_becomes_error_record(runtime, store):
    async def broken(ctx):
        raise ValueError("bad data")

    sched = Scheduler({RELATIONSHIP_SYNC: broken}, control=runtime.control, store=store)
    result = asyncio.run(sched.run_workflow(RELATIONSHIP_SYNC))
    assert result.status == "error"
    assert "bad data" in result.error
    assert store.list_workflow_runs()[0]["error"] == result.error


def test_failing_gate_becomes_error_record(runtime, store, llm, monkeypatch):
    def broken():
        raise RuntimeError("control store offline")

    monkeypatch.setattr(runtime.control, "is_simulation_active", broken)
    result = asyncio.run(runtime.scheduler.run_workflow(AGENT_CYCLE, {"trigger": "cron"}))
    assert result.status == "error"
    assert result.success is False
    assert "control store offline" in result.error
    runs = store.list_workflow_runs()
    assert len(runs) == 1
    assert runs[0]["error"] == result.error
    assert llm.calls == []


def test_expired_pause_survives_failed_resume(runtime, store, clock, llm, monkeypatch):
    runtime.control.pause(minutes=1)
    clock.advance(120)

    def refuse(values):
        raise OSError("read-only store")

    monkeypatch.setattr(store, "put_control", refuse)
    result = asyncio.run(runtime.scheduler.run_workflow(AGENT_CYCLE))
    assert result.status == "success"
    assert llm.calls
    assert len(store.list_workflow_runs()) == 1


def test_persistence_failure_is_swallowed(runtime, store, monkeypatch):
    def refuse(record):
        raise OSError("disk full")

    monkeypatch.setattr(store, "append_workflow_run", refuse)
    result = asyncio.run(runtime.scheduler.run_workflow(RELATIONSHIP_SYNC))
    assert result.status == "success"
    assert runtime.scheduler.history(limit=5)[0]["workflow_key"] == RELATIONSHIP_SYNC


@pytest.mark.parametrize("extra_ticks", [1, 2, 5])
def test_overlapping_ticks_are_skipped(runtime, store, extra_ticks):
    gate = {}
    started = []

    async def slow(ctx):
        started.append(ctx)
        await gate["release"].wait()
        return {"message": "slow done"}

    sched = Scheduler({MEMORY_CLEANUP: slow}, control=runtime.control, store=store, intervals={MEMORY_CLEANUP: 60})

    async def scenario():
        gate["release"] = asyncio.Event()
        first = asyncio.ensure_future(sched.tick(MEMORY_CLEANUP))
        await asyncio.sleep(0)
        skipped = [await sched.tick(MEMORY_CLEANUP) for _ in range(extra_ticks)]
        gate["release"].set()
        return await first, skipped

    first, skipped = asyncio.run(scenario())
    assert first.status == "success"
    assert skipped == [None] * extra_ticks
    job = sched.jobs[MEMORY_CLEANUP]
    assert job.skipped_ticks == extra_ticks
    assert job.run_count == 1
    assert job.state == "idle"
    assert len(started) == 1
    assert len(store.list_workflow_runs(workflow_key=MEMORY_CLEANUP)) == 1


def test_trigger_job_while_running_reports_skip(runtime, store):
    gate = {}

    async def slow(ctx):
        await gate["release"].wait()
        return {}

    sched = Scheduler({MEMORY_CLEANUP: slow}, control=runtime.control, store=store)

    async def scenario():
        gate["release"] = asyncio.Event()
        first = asyncio.ensure_future(sched.trigger_job(MEMORY_CLEANUP))
        await asyncio.sleep(0)
        second = await sched.trigger_job(MEMORY_CLEANUP)
        gate["release"].set()
        await first
        return second

    second = asyncio.run(scenario())
    assert second.status == "skipped"
    assert "already running" in second.message


def test_timers_start_and_stop(runtime, store):
    ticks = []

    async def fast_sleep(seconds):
        await asyncio.sleep(0)

    async def handler(ctx):
        ticks.append(ctx.get("trigger"))
        return {}

    sched = Scheduler(
        {TOKEN_RESET: handler}, control=runtime.control, store=store,
        intervals={AGENT_CYCLE: 0, RELATIONSHIP_SYNC: 0, MEMORY_CLEANUP: 0, TOKEN_RESET: 1}, sleep=fast_sleep,
    )

    async def scenario():
        sched.start()
        assert sched.running
        for _ in range(10):
            await asyncio.sleep(0)
        await sched.stop()

    asyncio.run(scenario())
    assert sched.running is False
    assert list(sched.jobs) == [TOKEN_RESET]
    assert ticks and set(ticks) == {"scheduler"}
