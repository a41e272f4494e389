"""
Language-model interface and its OpenAI-compatible implementation.
"""
from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from agent_engine.config import (
    LLM_API_KEY, LLM_BASE_URL, LLM_MAX_TOKENS, LLM_MODEL, LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
)
from agent_engine.errors import ModelCallError


@dataclass
class ToolCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    id: str = ""


@dataclass
class LLMResponse:
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tokens_used: int = 0
    finish_reason: str = ""


class LanguageModel(ABC):
    """call(model, messages, tool_schemas) -> LLMResponse. Must be safe to retry."""

    @abstractmethod
    async def call(self, model: str, messages: List[dict], tool_schemas: List[dict]) -> LLMResponse:
        ...


def build_llm(model: Optional[str] = None) -> ChatOpenAI:
    """
    Uses OpenAI-compatible Chat Completions.
    Works with OpenAI, vLLM (OpenAI server), or Ollama (OpenAI compatibility layer).
    """
    kwargs: Dict[str, Any] = {"model": model or LLM_MODEL, "api_key": LLM_API_KEY or "local"}
    if LLM_BASE_URL:
        kwargs["base_url"] = LLM_BASE_URL
    kwargs["temperature"] = LLM_TEMPERATURE
    kwargs["timeout"] = LLM_TIMEOUT_SECONDS
    kwargs["max_tokens"] = LLM_MAX_TOKENS
    # Retries are owned by the Reason step.
    kwargs["max_retries"] = 0
    return ChatOpenAI(**kwargs)


def _to_messages(messages: List[dict]) -> List[Any]:
    out: List[Any] = []
    for m in messages:
        role = str(m.get("role") or "user")
        content = str(m.get("content") or "")
        if role == "system":
            out.append(SystemMessage(content=content))
        elif role == "assistant":
            out.append(AIMessage(content=content))
        else:
            out.append(HumanMessage(content=content))
    return out


def _text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text") or ""))
        return "".join(parts).strip()
    return str(content or "").strip()


class ChatModelClient(LanguageModel):
    def __init__(
        self,
        llm_factory: Callable[[Optional[str]], Any] = build_llm,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS,
    ) -> None:
        self._factory = llm_factory
        self._timeout = timeout_seconds
        self._models: Dict[str, Any] = {}

    def _llm(self, model: str) -> Any:
        if model not in self._models:
            self._models[model] = self._factory(model)
        return self._models[model]

    async def call(self, model: str, messages: List[dict], tool_schemas: List[dict]) -> LLMResponse:
        llm = self._llm(model)
        runnable = llm.bind_tools(tool_schemas) if tool_schemas else llm
        started = time.perf_counter()
        try:
            res = await asyncio.wait_for(runnable.ainvoke(_to_messages(messages)), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ModelCallError(f"model call timed out after {time.perf_counter() - started:.1f}s") from e

        calls = [
            ToolCall(name=str(tc.get("name") or ""), args=dict(tc.get("args") or {}), id=str(tc.get("id") or ""))
            for tc in (getattr(res, "tool_calls", None) or [])
        ]
        invalid = getattr(res, "invalid_tool_calls", None) or []
        if invalid and not calls:
            raise ModelCallError(f"malformed tool calls: {invalid[0].get('error') or invalid[0].get('name')}")
        usage = getattr(res, "usage_metadata", None) or {}
        meta = getattr(res, "response_metadata", None) or {}
        return LLMResponse(
            content=_text(res.content),
            tool_calls=[c for c in calls if c.name],
            tokens_used=int(usage.get("total_tokens") or 0),
            finish_reason=str(meta.get("finish_reason") or ""),
        )
