"""
Universal workflow: Observe -> Reason -> Act -> Loop, compiled as a LangGraph.

The graph state carries the WorkflowState (mutated in place by every node) and the
InvocationContext holding this invocation's open trace runs. Nodes never raise:
an exception escaping a node is recorded as a fatal error and the loop stops,
leaving whatever was already executed in the returned state.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypedDict

from langgraph.graph import END, START, StateGraph

from agent_engine.config import LLM_MODEL, MODEL_CALL_RETRIES, WORKFLOW_MAX_ITERATIONS, WORKFLOW_MAX_TOOL_CALLS
from agent_engine.errors import ToolValidationError
from agent_engine.heat import HeatLimiter
from agent_engine.models import ActionOutcome, Scope, ToolExecutionContext, WorkflowState
from agent_engine.prompts import build_messages
from agent_engine.runtime import LanguageModel, LLMResponse
from agent_engine.tools.registry import ToolRegistry
from agent_engine.tracing import InvocationContext, Tracer

_log = logging.getLogger(__name__)

GRAPH_STEPS = ("observe", "reason", "act", "loop")
_TARGET_KEYS = ("postId", "userId", "battleId", "proposalId", "communityId", "groupConversationId", "conversationId")


class CycleState(TypedDict):
    workflow: WorkflowState
    invocation: InvocationContext


NodeFn = Callable[[WorkflowState, InvocationContext], Awaitable[None]]


def create_initial_state(scope: Scope, max_iterations: Optional[int] = None) -> WorkflowState:
    state = WorkflowState(scope=scope)
    state.loop.max_iterations = max(1, int(max_iterations if max_iterations is not None else WORKFLOW_MAX_ITERATIONS))
    return state


def tool_metadata(scope: Scope) -> Dict[str, Any]:
    """Routing hints for tool handlers, derived from the scope only."""
    meta: Dict[str, Any] = {"triggerName": scope.trigger.name, "triggerKind": scope.trigger.kind}
    subject = scope.subject
    if subject is not None:
        payload = subject.payload or {}
        meta["subjectId"] = subject.id
        meta["subjectType"] = subject.kind
        if subject.kind == "post":
            meta["postId"] = subject.id
        elif payload.get("postId"):
            meta["postId"] = payload["postId"]
        for key in ("communityId", "requestKind", "authorId", "battleId", "proposalId", "groupConversationId"):
            if payload.get(key):
                meta[key] = payload[key]
    requester = scope.requester_id
    if requester:
        meta["requesterId"] = requester
    return meta


def _changed(result: Any) -> bool:
    return not (isinstance(result, dict) and result.get("changed") is False)


class WorkflowEngine:
    def __init__(
        self,
        *,
        registry: ToolRegistry,
        heat: HeatLimiter,
        tracer: Tracer,
        llm: LanguageModel,
        model: str = LLM_MODEL,
        max_tool_calls: int = WORKFLOW_MAX_TOOL_CALLS,
        model_retries: int = MODEL_CALL_RETRIES,
    ) -> None:
        self.registry = registry
        self.heat = heat
        self.tracer = tracer
        self.llm = llm
        self.model = model
        self.max_tool_calls = max(1, max_tool_calls)
        self.model_retries = max(0, model_retries)
        self._graph = self.build_graph()

    # --- graph ---

    def build_graph(self) -> Any:
        g: StateGraph = StateGraph(CycleState)
        g.add_node("observe", self._node("observe", self.observe))
        g.add_node("reason", self._node("reason", self.reason))
        g.add_node("act", self._node("act", self.act))
        g.add_node("loop", self._node("loop", self.loop))

        g.add_edge(START, "observe")
        g.add_edge("observe", "reason")
        g.add_conditional_edges("reason", self._after_reason, {"act": "act", "loop": "loop"})
        g.add_edge("act", "loop")
        g.add_conditional_edges("loop", self._after_loop, {"observe": "observe", "end": END})
        return g.compile()

    def _node(self, name: str, fn: NodeFn) -> Callable[[CycleState], Awaitable[CycleState]]:
        async def run(cycle: CycleState) -> CycleState:
            state, inv = cycle["workflow"], cycle["invocation"]
            state.step = name  # type: ignore[assignment]
            if state.fatal_error and name != "loop":
                return {"workflow": state, "invocation": inv}
            run_id = self.tracer.start_node_trace(inv, name, state)
            error: Optional[str] = None
            try:
                await fn(state, inv)
            except Exception as e:
                _log.exception("node %s crashed actor=%s", name, state.scope.actor.id)
                error = f"{type(e).__name__}: {e}"
                state.fail(name, error)
                if name == "loop":
                    state.step = "complete"
            self.tracer.end_node_trace(inv, run_id, self._node_outputs(name, state), error)
            return {"workflow": state, "invocation": inv}

        run.__name__ = f"node_{name}"
        return run

    @staticmethod
    def _node_outputs(name: str, state: WorkflowState) -> dict:
        if name == "observe":
            return {"observed": sorted(state.observation), "errors": len(state.errors)}
        if name == "reason":
            r = state.reasoning or {}
            return {"tool_calls": [c.get("name") for c in r.get("tool_calls", [])], "tokens": state.tokens_used}
        if name == "act":
            return {"outcomes": [(o.tool, o.status) for o in state.outcomes if o.iteration == state.loop.iteration]}
        return {"next": state.step, "iteration": state.loop.iteration, "stop_reason": state.loop.stop_reason}

    @staticmethod
    def _after_reason(cycle: CycleState) -> str:
        return "loop" if cycle["workflow"].fatal_error else "act"

    @staticmethod
    def _after_loop(cycle: CycleState) -> str:
        return "observe" if cycle["workflow"].step == "observe" else "end"

    # --- helpers ---

    def _tool_context(self, state: WorkflowState) -> ToolExecutionContext:
        scope = state.scope
        return ToolExecutionContext(
            agent_id=scope.actor.id,
            conversation_id=scope.conversation_id,
            metadata=tool_metadata(scope),
        )

    def _observation_plan(self, scope: Scope) -> List[Tuple[str, Dict[str, Any]]]:
        plan: List[Tuple[str, Dict[str, Any]]] = [("get_my_stats", {})]
        subject = scope.subject
        if subject is not None and subject.kind == "post":
            plan.append(("get_post_details", {"postId": subject.id}))
        community_id = (subject.payload.get("communityId") if subject is not None else None) or scope.data_scope.get("communityId")
        if community_id:
            plan.append(("get_community_details", {"communityId": community_id}))
        if subject is not None and subject.kind == "battle":
            plan.append(("get_battle_details", {"battleId": subject.id}))
            plan.append(("get_my_inventory", {}))
            plan.append(("get_market_items", {}))
        if subject is not None and subject.kind == "proposal" and community_id:
            plan.append(("get_active_proposals", {"communityId": community_id}))
        if subject is not None and subject.kind == "group":
            plan.append(("get_group_chat_history", {"groupConversationId": subject.id}))
        if scope.conversation_id:
            plan.append(("get_conversation_history", {"limit": int(scope.data_scope.get("historyLimit", 20))}))
        requester = scope.requester_id
        if requester:
            request_kind = (subject.payload.get("requestKind") if subject is not None else None) or "general"
            plan.append(("get_user_profile", {"userId": requester}))
            plan.append(("check_relationship", {"userId": requester}))
            plan.append(("check_request_persistence", {"userId": requester, "requestKind": request_kind}))
            plan.append(("get_user_community", {"userId": requester}))
            plan.append(("search_memories", {"aboutUserId": requester, "limit": 5}))
        if scope.trigger.kind == "schedule":
            args: Dict[str, Any] = {"limit": int(scope.data_scope.get("postsLimit", 10))}
            if scope.data_scope.get("communityId"):
                args["communityId"] = scope.data_scope["communityId"]
            plan.append(("get_recent_posts", args))
            plan.append(("get_active_battles", {"communityId": community_id} if community_id else {}))
        return plan

    def _callable_tools(self, state: WorkflowState) -> List[str]:
        actor = state.scope.actor.id
        return [
            d.name for d in self.registry.by_category("action")
            if self.heat.check_heat(actor, d.name).allowed
        ]

    # --- nodes ---

    async def observe(self, state: WorkflowState, inv: InvocationContext) -> None:
        state.observation = {}
        for tool_name, args in self._observation_plan(state.scope):
            definition = self.registry.resolve(tool_name)
            if definition is None or definition.category != "data":
                _log.debug("observe skipping %s (not a registered data tool)", tool_name)
                continue
            res = await self.registry.execute(tool_name, args, self._tool_context(state), inv)
            if res.ok:
                state.observation[tool_name] = res.result
            else:
                state.add_error("observe", f"{tool_name}: {res.error}")

    async def reason(self, state: WorkflowState, inv: InvocationContext) -> None:
        tool_names = self._callable_tools(state)
        schemas = self.registry.get_tools_as_llm_functions(category="action", names=tool_names)
        messages = build_messages(state, tool_names)

        response: Optional[LLMResponse] = None
        last_error = ""
        attempts = self.model_retries + 1
        for attempt in range(1, attempts + 1):
            started = time.perf_counter()
            try:
                response = await self.llm.call(self.model, messages, schemas)
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                self.tracer.trace_llm_call(
                    inv, model=self.model, messages=messages, error=last_error,
                    duration_ms=(time.perf_counter() - started) * 1000.0,
                )
                _log.warning("model call failed attempt=%s/%s actor=%s: %s", attempt, attempts, state.scope.actor.id, last_error)
                continue
            self.tracer.trace_llm_call(
                inv, model=self.model, messages=messages, response=response,
                duration_ms=(time.perf_counter() - started) * 1000.0,
            )
            break

        if response is None:
            state.reasoning = None
            state.fail("reason", f"model call failed after {attempts} attempt(s): {last_error}")
            return

        state.tokens_used += int(response.tokens_used or 0)
        calls = list(response.tool_calls)
        if len(calls) > self.max_tool_calls:
            _log.info("dropping %s tool calls over limit=%s actor=%s", len(calls) - self.max_tool_calls, self.max_tool_calls, state.scope.actor.id)
            calls = calls[: self.max_tool_calls]
        state.reasoning = {
            "content": response.content,
            "tool_calls": [{"name": c.name, "args": dict(c.args), "id": c.id} for c in calls],
            "finish_reason": response.finish_reason,
            "callable_tools": tool_names,
        }

    async def act(self, state: WorkflowState, inv: InvocationContext) -> None:
        calls = (state.reasoning or {}).get("tool_calls") or []
        actor = state.scope.actor.id
        iteration = state.loop.iteration
        for call in calls:
            name = str(call.get("name") or "")
            raw_args = dict(call.get("args") or {})
            definition = self.registry.resolve(name)
            if definition is None:
                state.outcomes.append(ActionOutcome(name, "not_found", iteration, raw_args, error="unknown tool"))
                state.add_error("act", f"{name}: unknown tool")
                continue
            if definition.category != "action":
                state.outcomes.append(ActionOutcome(name, "invalid", iteration, raw_args, error="not an action tool"))
                state.add_error("act", f"{name}: not an action tool")
                continue
            ctx = self._tool_context(state)
            try:
                args = self.registry.prepare(definition, raw_args, ctx)
            except ToolValidationError as e:
                state.outcomes.append(ActionOutcome(name, "invalid", iteration, raw_args, error=str(e)))
                state.add_error("act", str(e))
                continue

            check = self.heat.check_heat(actor, name)
            if not check.allowed:
                _log.info("heat blocked actor=%s action=%s heat=%.1f cooldown_min=%s", actor, name, check.current_heat, check.cooldown_minutes)
                state.outcomes.append(ActionOutcome(
                    name, "blocked", iteration, args,
                    current_heat=check.current_heat, cooldown_minutes=check.cooldown_minutes,
                ))
                continue

            res = await self.registry.execute(name, args, ctx, inv)
            if not res.ok:
                status = "invalid" if res.error_kind == "validation" else ("not_found" if res.error_kind == "not_found" else "failed")
                state.outcomes.append(ActionOutcome(name, status, iteration, res.args, error=res.error))  # type: ignore[arg-type]
                state.add_error("act", f"{name}: {res.error}")
                continue

            state.executed_actions.append(name)
            outcome = ActionOutcome(name, "executed", iteration, res.args, result=res.result, changed=_changed(res.result))
            target = next((str(res.args[k]) for k in _TARGET_KEYS if res.args.get(k)), None)
            try:
                record = self.heat.apply_heat(actor, name, target)
                outcome.current_heat = record.current_heat
            except Exception as e:
                _log.warning("heat update failed actor=%s action=%s", actor, name, exc_info=True)
                state.add_error("act", f"{name}: heat update failed: {e}")
            state.outcomes.append(outcome)

    async def loop(self, state: WorkflowState, inv: InvocationContext) -> None:
        lp = state.loop
        current = [o for o in state.outcomes if o.iteration == lp.iteration]
        changed = any(o.status == "executed" and o.changed for o in current)
        lp.history.append({
            "iteration": lp.iteration,
            "tool_calls": [c.get("name") for c in (state.reasoning or {}).get("tool_calls", [])],
            "outcomes": [(o.tool, o.status) for o in current],
        })
        if state.fatal_error:
            reason = "error"
        elif lp.iteration >= lp.max_iterations:
            reason = "max_iterations"
        elif not changed:
            reason = "no_change"
        else:
            lp.iteration += 1
            state.reasoning = None
            state.step = "observe"
            return
        lp.stop_reason = reason
        state.step = "complete"

    # --- entry points ---

    async def execute_universal_workflow(
        self,
        state: WorkflowState,
        invocation: Optional[InvocationContext] = None,
    ) -> WorkflowState:
        """Run the cycle to completion. Never raises; the returned state is the audit trail."""
        inv = invocation if invocation is not None else InvocationContext()
        started = time.perf_counter()
        state.trace_id = self.tracer.start_workflow_trace(inv, state.scope)
        limit = state.loop.max_iterations * len(GRAPH_STEPS) + 8
        try:
            result = await self._graph.ainvoke({"workflow": state, "invocation": inv}, config={"recursion_limit": limit})
            state = result.get("workflow", state)
        except Exception as e:
            _log.exception("workflow aborted actor=%s trigger=%s", state.scope.actor.id, state.scope.trigger.name)
            state.fail("workflow", f"{type(e).__name__}: {e}")
        state.step = "complete"
        state.end_time = time.time()
        self.tracer.end_workflow_trace(
            inv, state.trace_id,
            success=state.fatal_error is None,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            executed_action_count=len(state.executed_actions),
            summary=state.summary(),
        )
        _log.info(
            "workflow done actor=%s trigger=%s iterations=%s actions=%s blocked=%s errors=%s stop=%s",
            state.scope.actor.id, state.scope.trigger.name, state.loop.iteration,
            state.executed_actions, len(state.blocked_actions), len(state.errors), state.loop.stop_reason,
        )
        return state

    async def run(self, scope: Scope, max_iterations: Optional[int] = None) -> WorkflowState:
        """create_initial_state + execute_universal_workflow in a fresh invocation context."""
        return await self.execute_universal_workflow(create_initial_state(scope, max_iterations), InvocationContext())
