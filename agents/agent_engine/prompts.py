"""
Prompt assembly for the Reason step.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from agent_engine.escalation import EscalationLevel, escalation_level
from agent_engine.models import WorkflowState

_ESCALATION_GUIDANCE = {
    EscalationLevel.POLITE: "First time they ask: if you refuse, decline politely (level 1).",
    EscalationLevel.FIRM: "They already asked and you refused once: if you refuse again, be firm (level 2).",
    EscalationLevel.HARSH: "They keep pushing after repeated refusals: decline harshly (level 3) or simply ignore them.",
}


def _compact(value: Any, limit: int = 3000) -> str:
    text = json.dumps(value, ensure_ascii=False, default=str)
    return text if len(text) <= limit else text[:limit] + "..."


def build_system_prompt(state: WorkflowState) -> str:
    me = state.observation.get("get_my_stats") or {}
    name = me.get("displayName") or me.get("username") or state.scope.actor.id
    persona = str(me.get("persona") or "").strip()
    lines = [
        f"You are {name}, a resident of a shared social world.",
        "Act in character. Use the provided tools to change the world; plain text alone does nothing.",
        "Only call tools that fit the situation. When nothing is worth doing, call no tools.",
    ]
    if persona:
        lines.append(f"Persona: {persona}")
    persistence = state.observation.get("check_request_persistence")
    if isinstance(persistence, dict):
        level = escalation_level(int(persistence.get("persistenceLevel") or 0))
        lines.append(_ESCALATION_GUIDANCE[level])
    return "\n".join(lines)


def build_user_prompt(state: WorkflowState, tool_names: List[str]) -> str:
    scope = state.scope
    subject: Optional[Dict[str, Any]] = None
    if scope.subject is not None:
        subject = {"id": scope.subject.id, "kind": scope.subject.kind, "data": scope.subject.payload}
    parts = [
        f"Trigger: {scope.trigger.kind}/{scope.trigger.name}",
        f"Iteration: {state.loop.iteration} of {state.loop.max_iterations}",
    ]
    if subject is not None:
        parts.append(f"Subject: {_compact(subject, 1500)}")
    if state.executed_actions:
        parts.append(f"Already done this cycle: {', '.join(state.executed_actions)}")
    parts.append(f"Observation: {_compact(state.observation)}")
    if tool_names:
        parts.append(f"Available actions: {', '.join(sorted(tool_names))}")
    else:
        parts.append("No actions are available right now (cooling down). Reply with a short thought only.")
    return "\n\n".join(parts)


def build_messages(state: WorkflowState, tool_names: List[str]) -> List[dict]:
    return [
        {"role": "system", "content": build_system_prompt(state)},
        {"role": "user", "content": build_user_prompt(state, tool_names)},
    ]
