"""
Tool registry and dispatcher.

One name -> ToolDefinition table. Registration is last-write-wins; re-registering a
different definition under an existing name is remembered and reported by verify().
"""
from __future__ import annotations

import inspect
import logging
import re
import time
from typing import Any, Dict, Iterable, List, Optional

from agent_engine.errors import EntityNotFoundError, InsufficientResourcesError, RegistryError, ToolValidationError
from agent_engine.models import ToolCategory, ToolDefinition, ToolExecutionContext, ToolResult
from agent_engine.tracing import InvocationContext, Tracer

_log = logging.getLogger(__name__)

JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}

_PLACEHOLDER_RE = re.compile(r"^\s*(?:[{<\[].*[}>\]]|[A-Z][A-Z0-9]*_ID|\$\w+)\s*$")
_PLACEHOLDER_WORDS = {
    "current_post", "this_post", "the_post", "post_id", "postid",
    "current_user", "requester", "sender", "the_user", "user_id", "userid",
    "community_id", "communityid", "current_community",
    "battle_id", "battleid", "current_battle",
    "proposal_id", "proposalid", "current_proposal",
}

# parameter name -> metadata keys consulted, in order
_PARAM_SOURCES: Dict[str, List[str]] = {
    "postId": ["postId"],
    "userId": ["requesterId", "authorId"],
    "targetUserId": ["requesterId", "authorId"],
    "recipientId": ["requesterId", "authorId"],
    "communityId": ["communityId"],
    "battleId": ["battleId"],
    "proposalId": ["proposalId"],
    "groupConversationId": ["groupConversationId"],
}


def is_placeholder(value: Any) -> bool:
    if value is None:
        return True
    if not isinstance(value, str):
        return False
    v = value.strip()
    return not v or bool(_PLACEHOLDER_RE.match(v)) or v.lower() in _PLACEHOLDER_WORDS


def normalize_tool_input(definition: ToolDefinition, tool_input: Dict[str, Any], ctx: ToolExecutionContext) -> Dict[str, Any]:
    """Fill id parameters the model left empty or copied as a template placeholder."""
    args = dict(tool_input or {})
    meta = ctx.metadata or {}
    for param in definition.properties:
        sources = _PARAM_SOURCES.get(param)
        if not sources or not is_placeholder(args.get(param)):
            continue
        for key in sources:
            value = meta.get(key)
            if value:
                args[param] = value
                break
        else:
            if param in args and is_placeholder(args[param]):
                args.pop(param)
    return args


def validate_tool_input(definition: ToolDefinition, args: Dict[str, Any]) -> None:
    missing = [p for p in definition.required if args.get(p) is None or args.get(p) == ""]
    if missing:
        raise ToolValidationError(f"{definition.name}: missing required parameter(s): {', '.join(missing)}")
    for name, spec in definition.properties.items():
        if name not in args or args[name] is None:
            continue
        expected = JSON_TYPES.get(str(spec.get("type") or ""))
        value = args[name]
        if expected is None:
            continue
        if isinstance(value, bool) and bool not in expected:
            raise ToolValidationError(f"{definition.name}: parameter {name} must be {spec.get('type')}")
        if not isinstance(value, expected):
            raise ToolValidationError(f"{definition.name}: parameter {name} must be {spec.get('type')}")
        allowed = spec.get("enum")
        if allowed and value not in allowed:
            raise ToolValidationError(f"{definition.name}: parameter {name} must be one of {allowed}")


class ToolRegistry:
    def __init__(self, tracer: Optional[Tracer] = None) -> None:
        self._tools: Dict[str, ToolDefinition] = {}
        self._duplicates: List[str] = []
        self._tracer = tracer

    def register_tool(self, definition: ToolDefinition) -> None:
        current = self._tools.get(definition.name)
        if current is not None and current is not definition:
            _log.warning("tool %s registered twice; keeping the latest definition", definition.name)
            self._duplicates.append(definition.name)
        self._tools[definition.name] = definition

    def register(self, definitions: Iterable[ToolDefinition]) -> None:
        for d in definitions:
            self.register_tool(d)

    def resolve(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return sorted(self._tools)

    def by_category(self, category: ToolCategory) -> List[ToolDefinition]:
        return [d for d in self._tools.values() if d.category == category]

    def get_tools_as_llm_functions(
        self,
        category: Optional[ToolCategory] = None,
        names: Optional[Iterable[str]] = None,
    ) -> List[dict]:
        """OpenAI function-calling schemas, suitable for ChatOpenAI.bind_tools."""
        wanted = set(names) if names is not None else None
        out: List[dict] = []
        for d in self._tools.values():
            if category is not None and d.category != category:
                continue
            if wanted is not None and d.name not in wanted:
                continue
            out.append({
                "type": "function",
                "function": {
                    "name": d.name,
                    "description": d.description,
                    "parameters": {
                        "type": "object",
                        "properties": d.properties,
                        "required": d.required,
                    },
                },
            })
        return out

    def verify(self) -> None:
        """Raise RegistryError unless every tool has a unique name, a sane schema and its own async handler."""
        problems: List[str] = []
        for name in sorted(set(self._duplicates)):
            problems.append(f"{name}: registered more than once")
        handlers: Dict[int, str] = {}
        for key, d in self._tools.items():
            if key != d.name:
                problems.append(f"{key}: registered under a different name than {d.name}")
            if d.category not in ("data", "action"):
                problems.append(f"{d.name}: unknown category {d.category!r}")
            if d.parameters.get("type", "object") != "object":
                problems.append(f"{d.name}: parameters must be an object schema")
            props = d.properties
            for pname, spec in props.items():
                if str(spec.get("type") or "") not in JSON_TYPES:
                    problems.append(f"{d.name}.{pname}: unsupported type {spec.get('type')!r}")
            for req in d.required:
                if req not in props:
                    problems.append(f"{d.name}: required parameter {req} is not declared")
            if not inspect.iscoroutinefunction(d.handler):
                problems.append(f"{d.name}: handler must be an async function")
            owner = handlers.get(id(d.handler))
            if owner is not None:
                problems.append(f"{d.name}: shares its handler with {owner}")
            handlers[id(d.handler)] = d.name
        if problems:
            raise RegistryError("tool registry verification failed: " + "; ".join(problems))
        _log.info("tool registry verified tools=%s", len(self._tools))

    def prepare(self, definition: ToolDefinition, tool_input: Dict[str, Any], ctx: ToolExecutionContext) -> Dict[str, Any]:
        args = normalize_tool_input(definition, tool_input, ctx)
        validate_tool_input(definition, args)
        return args

    async def execute(
        self,
        name: str,
        tool_input: Dict[str, Any],
        ctx: ToolExecutionContext,
        invocation: Optional[InvocationContext] = None,
    ) -> ToolResult:
        started = time.perf_counter()
        definition = self.resolve(name)
        args = dict(tool_input or {})
        if definition is None:
            result = ToolResult(name=name, ok=False, error=f"unknown tool {name}", error_kind="not_found", args=args)
        else:
            try:
                args = self.prepare(definition, args, ctx)
                value = await definition.handler(args, ctx)
                result = ToolResult(name=name, ok=True, result=value, args=args)
            except ToolValidationError as e:
                result = ToolResult(name=name, ok=False, error=str(e), error_kind="validation", args=args)
            except EntityNotFoundError as e:
                result = ToolResult(name=name, ok=False, error=str(e), error_kind="not_found", args=args)
            except InsufficientResourcesError as e:
                result = ToolResult(name=name, ok=False, error=str(e), error_kind="insufficient", args=args)
            except Exception as e:
                _log.warning("tool %s failed agent=%s", name, ctx.agent_id, exc_info=True)
                result = ToolResult(name=name, ok=False, error=f"{type(e).__name__}: {e}", error_kind="failed", args=args)
        result.duration_ms = (time.perf_counter() - started) * 1000.0
        if self._tracer is not None and invocation is not None:
            self._tracer.trace_tool_execution(
                invocation,
                tool_name=name,
                tool_input=args,
                result=result.result,
                error=result.error or None,
                duration_ms=result.duration_ms,
            )
        return result
