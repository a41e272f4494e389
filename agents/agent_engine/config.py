"""
Engine configuration: environment variables and tuning constants.
"""
from __future__ import annotations

import logging
import os
from typing import Dict

_log = logging.getLogger(__name__)


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Language model (OpenAI-compatible chat completions) ---
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini").strip()
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "").strip()
LLM_API_KEY = os.getenv("LLM_API_KEY", "local").strip()
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
LLM_MAX_TOKENS = int(float(os.getenv("LLM_MAX_TOKENS", "600")))

# --- Workflow loop ---
WORKFLOW_MAX_ITERATIONS = int(float(os.getenv("WORKFLOW_MAX_ITERATIONS", "10")))
WORKFLOW_MAX_TOOL_CALLS = int(float(os.getenv("WORKFLOW_MAX_TOOL_CALLS", "5")))
MODEL_CALL_RETRIES = int(float(os.getenv("MODEL_CALL_RETRIES", "1")))

# --- Heat ---
HEAT_MAX = float(os.getenv("HEAT_MAX", "100"))
HEAT_DECAY_PER_MINUTE = float(os.getenv("HEAT_DECAY_PER_MINUTE", "5"))
HEAT_DEFAULT_COST = float(os.getenv("HEAT_DEFAULT_COST", "10"))
_DEFAULT_HEAT_COSTS: Dict[str, float] = {
    "like": 10,
    "follow": 10,
    "comment": 10,
    "reply": 10,
    "send_message": 10,
    "create_post": 15,
    "join_community": 15,
    "leave_community": 10,
    "decline": 5,
    "ignore": 0,
    "send_group_message": 10,
    "join_battle": 20,
    "buy_item": 5,
    "consume_item": 0,
    "do_work": 5,
    "vote_on_proposal": 5,
    "create_proposal": 20,
}
HEAT_COSTS: Dict[str, float] = {
    kind: float(os.getenv(f"HEAT_COST_{kind.upper()}", str(cost)))
    for kind, cost in _DEFAULT_HEAT_COSTS.items()
}

# --- Escalation ---
ESCALATION_WINDOW_HOURS = float(os.getenv("ESCALATION_WINDOW_HOURS", "24"))

# --- Tracing (LangSmith) ---
LANGSMITH_API_KEY = os.getenv("LANGSMITH_API_KEY", "").strip()
LANGSMITH_ENDPOINT = os.getenv("LANGSMITH_ENDPOINT", "").strip()
LANGSMITH_PROJECT = os.getenv("LANGSMITH_PROJECT", "agent-world").strip() or "agent-world"
LANGSMITH_MAX_STRING_CHARS = int(float(os.getenv("LANGSMITH_MAX_STRING_CHARS", "2000")))
TRACE_MAX = int(float(os.getenv("TRACE_MAX", "500")))

# --- Scheduler ---
SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "0")
AGENT_CYCLE_INTERVAL_SECONDS = float(os.getenv("AGENT_CYCLE_INTERVAL_SECONDS", "30"))
RELATIONSHIP_SYNC_INTERVAL_SECONDS = float(os.getenv("RELATIONSHIP_SYNC_INTERVAL_SECONDS", "900"))
MEMORY_CLEANUP_INTERVAL_SECONDS = float(os.getenv("MEMORY_CLEANUP_INTERVAL_SECONDS", "3600"))
TOKEN_RESET_INTERVAL_SECONDS = float(os.getenv("TOKEN_RESET_INTERVAL_SECONDS", "86400"))
AGENT_CYCLE_BATCH_SIZE = int(float(os.getenv("AGENT_CYCLE_BATCH_SIZE", "5")))
RUN_HISTORY_MAX = int(float(os.getenv("RUN_HISTORY_MAX", "200")))

# --- Budget and maintenance ---
DAILY_TOKEN_LIMIT = int(float(os.getenv("DAILY_TOKEN_LIMIT", "200000")))
MEMORY_RETENTION_DAYS = float(os.getenv("MEMORY_RETENTION_DAYS", "30"))
RELATIONSHIP_DECAY_PER_SYNC = float(os.getenv("RELATIONSHIP_DECAY_PER_SYNC", "1"))


def validate_config() -> None:
    """Log warnings for missing or suspicious engine settings. Called once at startup."""
    if not LLM_BASE_URL and LLM_API_KEY in ("", "local"):
        _log.warning(
            "LLM_API_KEY is not set and LLM_BASE_URL is empty; model calls to the "
            "default endpoint will fail and every Reason step will be recorded as an error."
        )
    if not LANGSMITH_API_KEY:
        _log.info("LANGSMITH_API_KEY not set; LangSmith tracing disabled.")
    if WORKFLOW_MAX_ITERATIONS < 1:
        _log.warning("WORKFLOW_MAX_ITERATIONS=%s; cycles will stop after one iteration.", WORKFLOW_MAX_ITERATIONS)
    if HEAT_DECAY_PER_MINUTE <= 0:
        _log.warning("HEAT_DECAY_PER_MINUTE=%s; heat never cools down once applied.", HEAT_DECAY_PER_MINUTE)
    if DAILY_TOKEN_LIMIT <= 0:
        _log.warning("DAILY_TOKEN_LIMIT=%s; scheduled agent cycles will always be skipped.", DAILY_TOKEN_LIMIT)
