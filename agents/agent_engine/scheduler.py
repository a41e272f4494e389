"""
Scheduler: interval timers plus on-demand runs of named workflows.

Job state machine: idle -> running -> (success | error | skipped) -> idle.
Overlapping ticks are skipped: a job that is still running when its timer fires
again is not re-entered; the tick is counted in `skipped_ticks` and logged.

run_workflow() never raises. Every call produces exactly one WorkflowRunRecord,
appended to the store; a failure to persist it is logged and swallowed.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from agent_engine.config import (
    AGENT_CYCLE_INTERVAL_SECONDS, MEMORY_CLEANUP_INTERVAL_SECONDS,
    RELATIONSHIP_SYNC_INTERVAL_SECONDS, RUN_HISTORY_MAX, TOKEN_RESET_INTERVAL_SECONDS,
)
from agent_engine.control import SimulationControl
from agent_engine.models import RunStatus, WorkflowRunRecord, WorkflowRunResult
from agent_engine.store import WorldStore
from agent_engine.supervisor import TaskSupervisor

_log = logging.getLogger(__name__)

AGENT_CYCLE = "agent.cycle"
AGENT_CHAT = "agent.chat"
RELATIONSHIP_SYNC = "relationship.sync"
MEMORY_CLEANUP = "memory.cleanup"
TOKEN_RESET = "token.reset"

WORKFLOW_KEYS = (AGENT_CYCLE, AGENT_CHAT, RELATIONSHIP_SYNC, MEMORY_CLEANUP, TOKEN_RESET)
EVENT_DRIVEN_KEYS = frozenset({AGENT_CHAT})
GATED_KEYS = frozenset({AGENT_CYCLE})

DEFAULT_INTERVALS: Dict[str, float] = {
    AGENT_CYCLE: AGENT_CYCLE_INTERVAL_SECONDS,
    RELATIONSHIP_SYNC: RELATIONSHIP_SYNC_INTERVAL_SECONDS,
    MEMORY_CLEANUP: MEMORY_CLEANUP_INTERVAL_SECONDS,
    TOKEN_RESET: TOKEN_RESET_INTERVAL_SECONDS,
}

WorkflowHandler = Callable[[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


@dataclass
class ScheduledJob:
    key: str
    interval_seconds: float
    state: str = "idle"
    last_status: Optional[str] = None
    last_message: str = ""
    last_run_at: Optional[float] = None
    run_count: int = 0
    skipped_ticks: int = 0

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "interval_seconds": self.interval_seconds,
            "state": self.state,
            "last_status": self.last_status,
            "last_message": self.last_message,
            "last_run_at": self.last_run_at,
            "run_count": self.run_count,
            "skipped_ticks": self.skipped_ticks,
        }


class Scheduler:
    def __init__(
        self,
        handlers: Dict[str, WorkflowHandler],
        *,
        control: SimulationControl,
        store: WorldStore,
        intervals: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        history_size: int = RUN_HISTORY_MAX,
    ) -> None:
        self._handlers = dict(handlers)
        self._control = control
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._history: Deque[WorkflowRunRecord] = deque(maxlen=max(1, history_size))
        merged = dict(DEFAULT_INTERVALS)
        merged.update(intervals or {})
        self.jobs: Dict[str, ScheduledJob] = {
            key: ScheduledJob(key=key, interval_seconds=float(seconds))
            for key, seconds in merged.items()
            if key not in EVENT_DRIVEN_KEYS and seconds > 0
        }
        self._timers: Dict[str, asyncio.Task] = {}
        self._ticks = TaskSupervisor("scheduler")

    @property
    def running(self) -> bool:
        return bool(self._timers)

    # --- single run ---

    async def run_workflow(self, workflow_key: str, context: Optional[Dict[str, Any]] = None) -> WorkflowRunResult:
        ctx = dict(context or {})
        started = self._clock()
        status: RunStatus = "success"
        message = ""
        data: Dict[str, Any] = {}
        error_text: Optional[str] = None

        handler = self._handlers.get(workflow_key)
        try:
            if workflow_key in EVENT_DRIVEN_KEYS:
                status, message = "skipped", f"{workflow_key} is event-driven; it runs from triggers only"
            elif handler is None:
                status, message, error_text = "error", f"unknown workflow {workflow_key}", "unknown_workflow"
            elif workflow_key in GATED_KEYS and not self._control.is_simulation_active():
                status, message = "skipped", "simulation paused"
            elif workflow_key in GATED_KEYS and not self._control.has_token_budget():
                status, message = "skipped", "daily token budget exhausted"
            else:
                data = dict(await handler(ctx) or {})
                message = str(data.pop("message", "") or f"{workflow_key} completed")
        except Exception as e:
            _log.exception("workflow %s failed", workflow_key)
            data = {}
            status, message, error_text = "error", f"{workflow_key} failed", f"{type(e).__name__}: {e}"

        finished = self._clock()
        duration_ms = max(0.0, (finished - started) * 1000.0)
        record = WorkflowRunRecord(
            run_id=uuid.uuid4().hex,
            workflow_key=workflow_key,
            status=status,
            message=message,
            trigger=str(ctx.get("trigger") or "unknown"),
            requested_by=ctx.get("requested_by"),
            started_at=started,
            finished_at=finished,
            duration_ms=duration_ms,
            data=data,
            error=error_text,
        )
        self._persist(record)
        log = _log.warning if status == "error" else _log.info
        log("workflow run key=%s status=%s trigger=%s message=%s", workflow_key, status, record.trigger, message)
        return WorkflowRunResult(
            workflow_key=workflow_key,
            success=status != "error",
            status=status,
            message=message,
            data=data,
            duration_ms=duration_ms,
            error=error_text,
        )

    def _persist(self, record: WorkflowRunRecord) -> None:
        self._history.append(record)
        try:
            self._store.append_workflow_run(record)
        except Exception:
            _log.warning("failed to record workflow run key=%s", record.workflow_key, exc_info=True)

    # --- jobs ---

    async def tick(self, key: str, context: Optional[Dict[str, Any]] = None) -> Optional[WorkflowRunResult]:
        """Run one job unless it is already running; None means the tick was skipped."""
        job = self.jobs.get(key)
        if job is None:
            return await self.run_workflow(key, context)
        if job.state == "running":
            job.skipped_ticks += 1
            _log.warning("scheduler tick skipped job=%s (still running, skipped=%s)", key, job.skipped_ticks)
            return None
        job.state = "running"
        try:
            result = await self.run_workflow(key, context or {"trigger": "scheduler"})
            job.state = result.status
            job.last_status = result.status
            job.last_message = result.message
            job.run_count += 1
            return result
        finally:
            job.last_run_at = self._clock()
            job.state = "idle"

    async def trigger_job(self, key: str, requested_by: Optional[str] = None, trigger: str = "manual") -> WorkflowRunResult:
        result = await self.tick(key, {"trigger": trigger, "requested_by": requested_by})
        if result is None:
            return WorkflowRunResult(workflow_key=key, success=True, status="skipped", message=f"{key} is already running")
        return result

    async def _timer(self, job: ScheduledJob) -> None:
        while True:
            await self._sleep(job.interval_seconds)
            # Not awaited: ticks fire on the interval even while a previous run is still going.
            self._ticks.spawn(self.tick(job.key), name=f"tick:{job.key}")

    def start(self) -> None:
        if self._timers:
            return
        loop = asyncio.get_running_loop()
        for key, job in self.jobs.items():
            self._timers[key] = loop.create_task(self._timer(job), name=f"timer:{key}")
        _log.info("scheduler started jobs=%s", sorted(self._timers))

    async def stop(self) -> None:
        timers = list(self._timers.values())
        self._timers.clear()
        for t in timers:
            t.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        await self._ticks.cancel_all()
        _log.info("scheduler stopped")

    # --- introspection ---

    def status(self) -> List[dict]:
        return [job.to_dict() for job in self.jobs.values()]

    def history(self, limit: int = 50, workflow_key: Optional[str] = None) -> List[dict]:
        rows = [r for r in self._history if workflow_key is None or r.workflow_key == workflow_key]
        return [r.to_dict() for r in reversed(rows[-limit:])] if limit > 0 else []
