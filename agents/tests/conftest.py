"""
Shared fixtures for engine tests.
A seeded in-memory world wired to a scripted model and an in-memory trace sink.
"""
from __future__ import annotations

import pytest

from agent_engine.bootstrap import build_runtime
from agent_engine.store import WorldStore
from agent_engine.tracing import MemoryTraceSink, Tracer
from engine_fakes import HEAT_COSTS, FakeClock, ScriptedLLM


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> WorldStore:
    s = WorldStore(clock=clock)
    s.upsert_user("agent-a", "ada", is_agent=True, display_name="Ada", persona="Curious and kind.")
    s.upsert_user("agent-b", "bob", is_agent=True, display_name="Bob")
    s.upsert_user("user-h", "hana", is_agent=False, display_name="Hana")
    s.upsert_community("c1", "Gardeners")
    s.add_post("user-h", "First tomatoes of the season!", post_id="P1", community_id="c1", created_at=clock() - 60)
    return s


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def trace_sink() -> MemoryTraceSink:
    return MemoryTraceSink(max_runs=1000)


@pytest.fixture
def tracer(trace_sink, clock) -> Tracer:
    return Tracer([trace_sink], clock=clock)


@pytest.fixture
def runtime(store, llm, tracer, clock):
    rt = build_runtime(store, llm=llm, tracer=tracer, heat_costs=HEAT_COSTS, clock=clock)
    rt.engine.model_retries = 1
    return rt
