"""
Engine data model: scopes, workflow state, tool definitions, heat, run records and trace runs.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

# --- Type aliases ---
TriggerKind = Literal["schedule", "event"]
ActorKind = Literal["human", "agent"]
ToolCategory = Literal["data", "action"]
StepName = Literal["observe", "reason", "act", "loop", "complete"]
OutcomeStatus = Literal["executed", "blocked", "invalid", "not_found", "failed"]
RunStatus = Literal["success", "error", "skipped"]
RunTrigger = Literal["manual", "scheduler", "cron", "event", "unknown"]
TraceKind = Literal["workflow", "node", "model-call", "tool-call"]


# --- Scope (immutable, one per invocation) ---

@dataclass(frozen=True)
class Trigger:
    kind: TriggerKind
    name: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Actor:
    id: str
    kind: ActorKind = "agent"


@dataclass(frozen=True)
class Subject:
    id: str
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Scope:
    trigger: Trigger
    actor: Actor
    subject: Optional[Subject] = None
    data_scope: Dict[str, Any] = field(default_factory=dict)
    conversation_id: Optional[str] = None

    @property
    def requester_id(self) -> Optional[str]:
        """The other party whose request caused this cycle, if any."""
        if self.subject is None:
            return None
        payload = self.subject.payload or {}
        rid = payload.get("requesterId") or payload.get("senderId") or payload.get("authorId")
        if not rid and self.subject.kind == "user":
            rid = self.subject.id
        rid = str(rid or "").strip()
        if not rid or rid == self.actor.id:
            return None
        return rid


# --- Workflow state (mutable, single owner) ---

@dataclass
class LoopState:
    iteration: int = 1
    max_iterations: int = 10
    stop_reason: str = ""
    history: List[dict] = field(default_factory=list)


@dataclass
class ActionOutcome:
    tool: str
    status: OutcomeStatus
    iteration: int
    args: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str = ""
    changed: bool = False
    current_heat: Optional[float] = None
    cooldown_minutes: Optional[int] = None


@dataclass
class WorkflowState:
    scope: Scope
    step: StepName = "observe"
    observation: Dict[str, Any] = field(default_factory=dict)
    reasoning: Optional[Dict[str, Any]] = None
    executed_actions: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    loop: LoopState = field(default_factory=LoopState)
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    outcomes: List[ActionOutcome] = field(default_factory=list)
    tokens_used: int = 0
    fatal_error: Optional[str] = None
    trace_id: Optional[str] = None

    def add_error(self, step: str, message: str) -> None:
        self.errors.append(f"{step}: {message}")

    def fail(self, step: str, message: str) -> None:
        """Record an unrecoverable error; the loop will not start another iteration."""
        self.add_error(step, message)
        if self.fatal_error is None:
            self.fatal_error = f"{step}: {message}"

    @property
    def blocked_actions(self) -> List[ActionOutcome]:
        return [o for o in self.outcomes if o.status == "blocked"]

    @property
    def elapsed_ms(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return max(0.0, (end - self.start_time) * 1000.0)

    def summary(self) -> dict:
        return {
            "actor_id": self.scope.actor.id,
            "trigger": self.scope.trigger.name,
            "step": self.step,
            "iterations": self.loop.iteration,
            "stop_reason": self.loop.stop_reason,
            "executed_actions": list(self.executed_actions),
            "blocked": [o.tool for o in self.blocked_actions],
            "errors": list(self.errors),
            "tokens_used": self.tokens_used,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


# --- Tools ---

@dataclass(frozen=True)
class ToolExecutionContext:
    agent_id: str
    conversation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[Dict[str, Any], ToolExecutionContext], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    category: ToolCategory
    description: str
    parameters: Dict[str, Any]
    handler: ToolHandler

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required") or [])

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self.parameters.get("properties") or {})


@dataclass
class ToolResult:
    name: str
    ok: bool
    result: Any = None
    error: str = ""
    error_kind: str = ""  # validation | not_found | insufficient | failed
    args: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0


# --- Heat ---

@dataclass
class HeatRecord:
    actor_id: str
    current_heat: float = 0.0
    last_decay_at: float = 0.0


@dataclass(frozen=True)
class HeatCheck:
    allowed: bool
    current_heat: float
    cooldown_minutes: Optional[int]  # None: heat never decays, the block is permanent
    cost: float = 0.0


# --- Scheduler ---

@dataclass
class WorkflowRunRecord:
    run_id: str
    workflow_key: str
    status: RunStatus
    message: str
    trigger: str
    requested_by: Optional[str]
    started_at: float
    finished_at: float
    duration_ms: float
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WorkflowRunResult:
    workflow_key: str
    success: bool
    status: RunStatus
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0
    error: Optional[str] = None


# --- Tracing ---

@dataclass
class TraceRun:
    id: str
    parent_id: Optional[str]
    kind: TraceKind
    name: str
    trace_id: str
    dotted_order: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    start_time: float = 0.0
    end_time: Optional[float] = None
    error: Optional[str] = None
