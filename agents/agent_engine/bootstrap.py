"""
Wire the engine's collaborators together around one WorldStore.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from agent_engine.control import SimulationControl
from agent_engine.escalation import EscalationTracker
from agent_engine.handlers import build_workflow_handlers
from agent_engine.heat import HeatLimiter
from agent_engine.memory import MemoryManager
from agent_engine.notifications import Notifier
from agent_engine.runtime import ChatModelClient, LanguageModel
from agent_engine.scheduler import Scheduler
from agent_engine.store import WorldStore
from agent_engine.supervisor import TaskSupervisor
from agent_engine.tools import build_registry
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tracing import Tracer
from agent_engine.triggers import EventTriggers
from agent_engine.workflow import WorkflowEngine


@dataclass
class EngineRuntime:
    store: WorldStore
    tracer: Tracer
    registry: ToolRegistry
    heat: HeatLimiter
    escalation: EscalationTracker
    notifier: Notifier
    memory: MemoryManager
    control: SimulationControl
    engine: WorkflowEngine
    supervisor: TaskSupervisor
    triggers: EventTriggers
    scheduler: Scheduler


def build_runtime(
    store: WorldStore,
    *,
    llm: Optional[LanguageModel] = None,
    tracer: Optional[Tracer] = None,
    heat_costs: Optional[Dict[str, float]] = None,
    intervals: Optional[Dict[str, float]] = None,
    clock: Callable[[], float] = time.time,
) -> EngineRuntime:
    tracer = tracer if tracer is not None else Tracer.from_env()
    escalation = EscalationTracker(store, clock=clock)
    notifier = Notifier(store)
    memory = MemoryManager(store)
    registry = build_registry(store, escalation, notifier, memory, tracer)
    heat = HeatLimiter(store, costs=heat_costs, clock=clock)
    control = SimulationControl(store, clock=clock)
    engine = WorkflowEngine(
        registry=registry,
        heat=heat,
        tracer=tracer,
        llm=llm if llm is not None else ChatModelClient(),
    )
    supervisor = TaskSupervisor("mentions")
    triggers = EventTriggers(engine, store, supervisor, memory, clock=clock)
    scheduler = Scheduler(
        build_workflow_handlers(engine, store, heat, control, memory, clock=clock),
        control=control,
        store=store,
        intervals=intervals,
        clock=clock,
    )
    return EngineRuntime(
        store=store,
        tracer=tracer,
        registry=registry,
        heat=heat,
        escalation=escalation,
        notifier=notifier,
        memory=memory,
        control=control,
        engine=engine,
        supervisor=supervisor,
        triggers=triggers,
        scheduler=scheduler,
    )
