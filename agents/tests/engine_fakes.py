"""
Test doubles for the engine: a controllable clock and a scripted language model.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from agent_engine.runtime import LanguageModel, LLMResponse, ToolCall

T0 = 1_700_000_000.0
HEAT_COSTS = {
    "like": 10, "comment": 10, "follow": 10, "reply": 10, "send_message": 10,
    "leave_community": 10, "create_post": 15, "join_community": 15, "decline": 5, "ignore": 0,
}


class FakeClock:
    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedLLM(LanguageModel):
    """Pops one scripted item per call; an Exception item is raised instead of returned."""

    def __init__(self, responses: Optional[List[Any]] = None, default: Optional[LLMResponse] = None) -> None:
        self.responses: List[Any] = list(responses or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def call(self, model: str, messages: List[dict], tool_schemas: List[dict]) -> LLMResponse:
        self.calls.append({
            "model": model,
            "messages": messages,
            "tools": [s["function"]["name"] for s in tool_schemas],
        })
        item = self.responses.pop(0) if self.responses else (self.default or LLMResponse(content="nothing to do"))
        if isinstance(item, Exception):
            raise item
        return item


def tool_calls(*calls: tuple, tokens: int = 10) -> LLMResponse:
    """tool_calls(("like", {"postId": "P1"}), ...) -> LLMResponse."""
    return LLMResponse(
        content="",
        tool_calls=[ToolCall(name=n, args=dict(a), id=f"call_{i}") for i, (n, a) in enumerate(calls)],
        tokens_used=tokens,
    )
