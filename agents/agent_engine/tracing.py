"""
Hierarchical tracing: workflow -> node -> model-call / tool-call runs.

The open-run stack lives in an InvocationContext that the caller creates once per
top-level workflow and passes explicitly through every node, model call and tool
call. Nothing about an invocation's stack is stored on the Tracer, so concurrent
invocations cannot see each other's parents.

Every public method is best-effort: sink or serialization failures are logged and
swallowed. With no sinks configured the tracer is a no-op and start_* returns None.
"""
from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from agent_engine.config import (
    LANGSMITH_API_KEY, LANGSMITH_ENDPOINT, LANGSMITH_MAX_STRING_CHARS,
    LANGSMITH_PROJECT, TRACE_MAX,
)
from agent_engine.models import Scope, TraceKind, TraceRun, WorkflowState
from agent_engine.utils import clip

_log = logging.getLogger(__name__)

_RUN_TYPES: Dict[str, str] = {
    "workflow": "chain",
    "node": "chain",
    "model-call": "llm",
    "tool-call": "tool",
}


@dataclasses.dataclass
class InvocationContext:
    """Per-invocation tracing context: the stack of open run ids and the open runs themselves."""

    invocation_id: str = dataclasses.field(default_factory=lambda: uuid.uuid4().hex[:12])
    run_stack: List[str] = dataclasses.field(default_factory=list)
    open_runs: Dict[str, TraceRun] = dataclasses.field(default_factory=dict)

    @property
    def parent_run_id(self) -> Optional[str]:
        return self.run_stack[-1] if self.run_stack else None


def _utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _dotted_segment(ts: float, run_id: str) -> str:
    return _utc(ts).strftime("%Y%m%dT%H%M%S%fZ") + run_id


class TraceSink(ABC):
    """Receives run lifecycle events. Subclasses may raise; the Tracer contains it."""

    @abstractmethod
    def create_run(self, run: TraceRun) -> None:
        ...

    @abstractmethod
    def update_run(self, run: TraceRun) -> None:
        ...


class LangSmithSink(TraceSink):
    def __init__(self, api_key: str, *, project: str = LANGSMITH_PROJECT, api_url: str = "") -> None:
        from langsmith import Client

        kwargs: Dict[str, Any] = {"api_key": api_key}
        if api_url:
            kwargs["api_url"] = api_url
        self._client = Client(**kwargs)
        self._project = project

    def create_run(self, run: TraceRun) -> None:
        self._client.create_run(
            name=run.name,
            inputs=run.inputs,
            run_type=_RUN_TYPES.get(run.kind, "chain"),
            id=run.id,
            parent_run_id=run.parent_id,
            trace_id=run.trace_id,
            dotted_order=run.dotted_order,
            start_time=_utc(run.start_time),
            project_name=self._project,
            extra={"metadata": {"kind": run.kind}},
        )

    def update_run(self, run: TraceRun) -> None:
        self._client.update_run(
            run.id,
            outputs=run.outputs,
            error=run.error,
            end_time=_utc(run.end_time or time.time()),
            trace_id=run.trace_id,
            dotted_order=run.dotted_order,
        )


class MemoryTraceSink(TraceSink):
    """Keeps the most recent runs in memory for the trace viewer and tests."""

    def __init__(self, max_runs: int = TRACE_MAX) -> None:
        self.max_runs = max(1, max_runs)
        self.runs: "OrderedDict[str, TraceRun]" = OrderedDict()
        self.events: List[tuple] = []

    def _keep(self, run: TraceRun) -> None:
        self.runs[run.id] = dataclasses.replace(run)
        self.runs.move_to_end(run.id)
        while len(self.runs) > self.max_runs:
            self.runs.popitem(last=False)
        self.events.append((run.kind, run.id))
        if len(self.events) > self.max_runs * 4:
            del self.events[: len(self.events) - self.max_runs * 4]

    def create_run(self, run: TraceRun) -> None:
        self._keep(run)

    def update_run(self, run: TraceRun) -> None:
        self._keep(run)

    def recent(self, limit: int = 50, trace_id: Optional[str] = None) -> List[dict]:
        rows = [r for r in self.runs.values() if trace_id is None or r.trace_id == trace_id]
        return [dataclasses.asdict(r) for r in rows[-limit:]]


class Tracer:
    def __init__(
        self,
        sinks: Optional[List[TraceSink]] = None,
        *,
        max_string_chars: int = LANGSMITH_MAX_STRING_CHARS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sinks: List[TraceSink] = list(sinks or [])
        self._max_chars = max_string_chars
        self._clock = clock

    @classmethod
    def from_env(cls, extra_sinks: Optional[List[TraceSink]] = None) -> "Tracer":
        sinks: List[TraceSink] = list(extra_sinks or [])
        if LANGSMITH_API_KEY:
            try:
                sinks.append(LangSmithSink(LANGSMITH_API_KEY, project=LANGSMITH_PROJECT, api_url=LANGSMITH_ENDPOINT))
                _log.info("LangSmith tracing enabled project=%s", LANGSMITH_PROJECT)
            except Exception:
                _log.warning("LangSmith client init failed; tracing to LangSmith disabled", exc_info=True)
        return cls(sinks)

    @property
    def enabled(self) -> bool:
        return bool(self._sinks)

    # --- sink fan-out ---

    def _emit(self, method: str, run: TraceRun) -> None:
        for sink in self._sinks:
            try:
                getattr(sink, method)(run)
            except Exception:
                _log.warning("trace sink %s.%s failed run=%s", type(sink).__name__, method, run.id, exc_info=True)

    def _new_run(
        self,
        ctx: InvocationContext,
        kind: TraceKind,
        name: str,
        inputs: Dict[str, Any],
        parent_id: Optional[str],
    ) -> TraceRun:
        run_id = str(uuid.uuid4())
        now = self._clock()
        segment = _dotted_segment(now, run_id)
        parent = ctx.open_runs.get(parent_id) if parent_id else None
        return TraceRun(
            id=run_id,
            parent_id=parent_id,
            kind=kind,
            name=name,
            trace_id=parent.trace_id if parent else run_id,
            dotted_order=f"{parent.dotted_order}.{segment}" if parent else segment,
            inputs=clip(inputs, self._max_chars),
            start_time=now,
        )

    def _open(self, ctx: InvocationContext, run: TraceRun) -> str:
        ctx.open_runs[run.id] = run
        ctx.run_stack.append(run.id)
        self._emit("create_run", run)
        return run.id

    def _close(self, ctx: InvocationContext, run_id: str, outputs: Dict[str, Any], error: Optional[str]) -> None:
        if ctx.run_stack and ctx.run_stack[-1] == run_id:
            ctx.run_stack.pop()
        else:
            _log.warning(
                "trace stack mismatch invocation=%s closing=%s top=%s; clearing stack",
                ctx.invocation_id, run_id, ctx.parent_run_id,
            )
            if run_id in ctx.run_stack:
                ctx.run_stack.remove(run_id)
            ctx.run_stack.clear()
        run = ctx.open_runs.pop(run_id, None)
        if run is None:
            _log.debug("trace close for unknown run=%s invocation=%s", run_id, ctx.invocation_id)
            return
        run.outputs = clip(outputs, self._max_chars)
        run.error = error
        run.end_time = self._clock()
        self._emit("update_run", run)

    def _leaf(self, ctx: InvocationContext, kind: TraceKind, name: str, inputs: dict, outputs: dict, error: Optional[str], duration_ms: float) -> Optional[str]:
        parent_id = ctx.parent_run_id
        if parent_id is None:
            _log.debug("no open parent for %s %s; skipping trace", kind, name)
            return None
        run = self._new_run(ctx, kind, name, inputs, parent_id)
        run.start_time = max(0.0, run.start_time - duration_ms / 1000.0)
        self._emit("create_run", run)
        run.outputs = clip(outputs, self._max_chars)
        run.error = error
        run.end_time = self._clock()
        self._emit("update_run", run)
        return run.id

    # --- workflow ---

    def start_workflow_trace(self, ctx: InvocationContext, scope: Scope) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            if ctx.run_stack:
                _log.warning("workflow trace started on a non-empty stack invocation=%s; resetting", ctx.invocation_id)
                ctx.run_stack.clear()
            inputs = {
                "trigger": {"kind": scope.trigger.kind, "name": scope.trigger.name, "timestamp": scope.trigger.timestamp},
                "actor": {"id": scope.actor.id, "kind": scope.actor.kind},
                "subject": scope.subject,
                "conversation_id": scope.conversation_id,
                "data_scope": scope.data_scope,
            }
            run = self._new_run(ctx, "workflow", f"workflow:{scope.trigger.name}", inputs, None)
            return self._open(ctx, run)
        except Exception:
            _log.warning("start_workflow_trace failed", exc_info=True)
            return None

    def end_workflow_trace(
        self,
        ctx: InvocationContext,
        trace_id: Optional[str],
        *,
        success: bool,
        duration_ms: float,
        executed_action_count: int,
        summary: Optional[dict] = None,
    ) -> None:
        if trace_id is None:
            return
        try:
            outputs = {
                "success": success,
                "duration_ms": round(duration_ms, 1),
                "executed_action_count": executed_action_count,
                "summary": summary or {},
            }
            self._close(ctx, trace_id, outputs, None if success else "workflow finished with errors")
        except Exception:
            _log.warning("end_workflow_trace failed", exc_info=True)
        finally:
            ctx.run_stack.clear()
            ctx.open_runs.clear()

    # --- nodes ---

    def start_node_trace(self, ctx: InvocationContext, node_name: str, state: WorkflowState) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            parent_id = ctx.parent_run_id
            if parent_id is None:
                _log.warning("node %s started without an open workflow run invocation=%s", node_name, ctx.invocation_id)
                return None
            inputs = {
                "step": node_name,
                "iteration": state.loop.iteration,
                "executed_actions": list(state.executed_actions),
                "error_count": len(state.errors),
            }
            run = self._new_run(ctx, "node", node_name, inputs, parent_id)
            return self._open(ctx, run)
        except Exception:
            _log.warning("start_node_trace failed node=%s", node_name, exc_info=True)
            return None

    def end_node_trace(self, ctx: InvocationContext, run_id: Optional[str], outputs: Optional[dict] = None, error: Optional[str] = None) -> None:
        if run_id is None:
            return
        try:
            self._close(ctx, run_id, outputs or {}, error)
        except Exception:
            _log.warning("end_node_trace failed run=%s", run_id, exc_info=True)

    # --- leaves ---

    def trace_llm_call(
        self,
        ctx: InvocationContext,
        *,
        model: str,
        messages: List[dict],
        response: Any = None,
        error: Optional[str] = None,
        duration_ms: float = 0.0,
    ) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            return self._leaf(
                ctx, "model-call", model,
                {"messages": messages},
                {"response": response, "duration_ms": round(duration_ms, 1)},
                error, duration_ms,
            )
        except Exception:
            _log.warning("trace_llm_call failed", exc_info=True)
            return None

    def trace_tool_execution(
        self,
        ctx: InvocationContext,
        *,
        tool_name: str,
        tool_input: dict,
        result: Any = None,
        error: Optional[str] = None,
        duration_ms: float = 0.0,
    ) -> Optional[str]:
        if not self.enabled:
            return None
        try:
            return self._leaf(
                ctx, "tool-call", tool_name,
                {"input": tool_input},
                {"result": result, "duration_ms": round(duration_ms, 1)},
                error, duration_ms,
            )
        except Exception:
            _log.warning("trace_tool_execution failed tool=%s", tool_name, exc_info=True)
            return None
