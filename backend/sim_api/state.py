"""
Process-wide runtime: one world store and the engine wired around it.

Route modules import this module and use its attributes, so tests can swap
`runtime.engine.llm` for a scripted model.
"""
from __future__ import annotations

import logging

from agent_engine.bootstrap import EngineRuntime, build_runtime
from agent_engine.config import TRACE_MAX
from agent_engine.store import WorldStore
from agent_engine.tracing import MemoryTraceSink, Tracer

from sim_api.config import WORKFLOW_RUNS_PATH

_log = logging.getLogger(__name__)

store = WorldStore(runs_path=WORKFLOW_RUNS_PATH)
trace_buffer = MemoryTraceSink(max_runs=TRACE_MAX) if TRACE_MAX > 0 else None
tracer = Tracer.from_env(extra_sinks=[trace_buffer] if trace_buffer is not None else None)
runtime: EngineRuntime = build_runtime(store, tracer=tracer)
_log.info("runtime ready tools=%s tracing=%s", len(runtime.registry.names()), tracer.enabled)
