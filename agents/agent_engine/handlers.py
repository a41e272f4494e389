"""
Handlers behind the scheduled workflow keys.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List

from agent_engine.config import AGENT_CYCLE_BATCH_SIZE, MEMORY_RETENTION_DAYS, RELATIONSHIP_DECAY_PER_SYNC
from agent_engine.control import SimulationControl
from agent_engine.heat import HeatLimiter
from agent_engine.memory import MemoryManager
from agent_engine.models import Actor, Scope, Trigger
from agent_engine.scheduler import AGENT_CYCLE, MEMORY_CLEANUP, RELATIONSHIP_SYNC, TOKEN_RESET, WorkflowHandler
from agent_engine.store import WorldStore
from agent_engine.workflow import WorkflowEngine


def build_workflow_handlers(
    engine: WorkflowEngine,
    store: WorldStore,
    heat: HeatLimiter,
    control: SimulationControl,
    memory: MemoryManager,
    *,
    batch_size: int = AGENT_CYCLE_BATCH_SIZE,
    retention_days: float = MEMORY_RETENTION_DAYS,
    relationship_decay: float = RELATIONSHIP_DECAY_PER_SYNC,
    clock: Callable[[], float] = time.time,
) -> Dict[str, WorkflowHandler]:
    async def agent_cycle(ctx: Dict[str, Any]) -> Dict[str, Any]:
        agents = sorted(store.list_agents(active_only=True), key=lambda a: float(a.get("last_cycle_at") or 0.0))
        batch = agents[: max(1, batch_size)]
        if not batch:
            return {"message": "no active agents", "agents": 0}
        now = clock()
        for a in batch:
            store.mark_cycle(a["id"], now)
        scopes = [
            Scope(trigger=Trigger("schedule", "agent_cycle", now), actor=Actor(a["id"], "agent"))
            for a in batch
        ]
        # One engine.run per agent; each gets its own invocation context.
        states = await asyncio.gather(*(engine.run(s) for s in scopes))
        tokens = sum(s.tokens_used for s in states)
        control.log_token_usage(tokens)
        remembered = sum(memory.record_cycle(s) for s in states)
        actions: List[str] = [a for s in states for a in s.executed_actions]
        errors: List[str] = [f"{s.scope.actor.id}: {e}" for s in states for e in s.errors]
        return {
            "message": f"ran {len(states)} agent cycle(s)",
            "agents": len(states),
            "actions": actions,
            "iterations": sum(s.loop.iteration for s in states),
            "errors": errors,
            "tokens": tokens,
            "memories": remembered,
        }

    async def relationship_sync(ctx: Dict[str, Any]) -> Dict[str, Any]:
        n = store.decay_relationships(relationship_decay)
        return {"message": f"decayed {n} relationship(s)", "updated": n}

    async def memory_cleanup(ctx: Dict[str, Any]) -> Dict[str, Any]:
        cutoff = clock() - retention_days * 86400.0
        n = store.delete_memories_before(cutoff)
        return {"message": f"deleted {n} memory row(s)", "deleted": n}

    async def token_reset(ctx: Dict[str, Any]) -> Dict[str, Any]:
        used = control.reset_daily_tokens()
        cooled = heat.reset()
        return {"message": "daily budget reset", "tokens_used_before": used, "heat_records_cleared": cooled}

    return {
        AGENT_CYCLE: agent_cycle,
        RELATIONSHIP_SYNC: relationship_sync,
        MEMORY_CLEANUP: memory_cleanup,
        TOKEN_RESET: token_reset,
    }
