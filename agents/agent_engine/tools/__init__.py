"""
Built-in tools and the registry they are served from.
"""
from __future__ import annotations

from typing import Optional

from agent_engine.escalation import EscalationTracker
from agent_engine.memory import MemoryManager
from agent_engine.notifications import Notifier
from agent_engine.store import WorldStore
from agent_engine.tools.action_tools import build_action_tools
from agent_engine.tools.data_tools import build_data_tools
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tracing import Tracer


def build_registry(
    store: WorldStore,
    escalation: EscalationTracker,
    notifier: Notifier,
    memory: MemoryManager,
    tracer: Optional[Tracer] = None,
) -> ToolRegistry:
    registry = ToolRegistry(tracer=tracer)
    registry.register(build_data_tools(store, escalation, memory))
    registry.register(build_action_tools(store, notifier, escalation))
    registry.verify()
    return registry
