"""
Agent memories: what an agent saw and what it did, kept as plain rows in the WorldStore.

Incoming events are stored as "observation" memories, executed actions as
"interaction" memories. Search is keyword based and ranked by importance, then
recency. Writes are best-effort: a failed write is logged and never fails a cycle.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from agent_engine.models import WorkflowState
from agent_engine.store import WorldStore
from agent_engine.utils import clip

_log = logging.getLogger(__name__)

ACTION_IMPORTANCE: Dict[str, float] = {
    "decline": 0.7,
    "ignore": 0.6,
    "join_battle": 0.8,
    "create_proposal": 0.8,
    "vote_on_proposal": 0.7,
    "join_community": 0.7,
    "leave_community": 0.7,
    "follow": 0.6,
}


class MemoryManager:
    def __init__(self, store: WorldStore, *, max_chars: int = 500) -> None:
        self._store = store
        self._max_chars = max_chars

    def remember(
        self,
        agent_id: str,
        content: str,
        memory_type: str = "observation",
        *,
        importance: float = 0.5,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[dict]:
        text = clip(str(content or "").strip(), self._max_chars)
        if not text:
            return None
        try:
            return self._store.add_memory(agent_id, text, memory_type=memory_type, importance=importance, metadata=metadata)
        except Exception:
            _log.warning("memory write failed agent=%s type=%s", agent_id, memory_type, exc_info=True)
            return None

    def record_event(self, agent_id: str, event: str, content: str, about_user_id: Optional[str] = None, **metadata: Any) -> Optional[dict]:
        meta = {"event": event, **{k: v for k, v in metadata.items() if v is not None}}
        if about_user_id:
            meta["aboutUserId"] = about_user_id
        return self.remember(agent_id, content, "observation", importance=0.4, metadata=meta)

    def record_cycle(self, state: WorkflowState) -> int:
        """One interaction memory per executed action of a finished cycle."""
        agent_id = state.scope.actor.id
        about = state.scope.requester_id
        written = 0
        for o in state.outcomes:
            if o.status != "executed":
                continue
            args = ", ".join(f"{k}={v}" for k, v in sorted(o.args.items()) if k not in ("content", "message"))
            said = o.args.get("content") or o.args.get("message")
            text = f"I did {o.tool}" + (f" ({args})" if args else "") + (f": {said}" if said else "")
            meta: Dict[str, Any] = {"tool": o.tool, "trigger": state.scope.trigger.name, "traceId": state.trace_id}
            if about:
                meta["aboutUserId"] = about
            if self.remember(agent_id, text, "interaction", importance=ACTION_IMPORTANCE.get(o.tool, 0.5), metadata=meta):
                written += 1
        return written

    def search(self, agent_id: str, query: str = "", *, about_user_id: Optional[str] = None, limit: int = 5) -> List[dict]:
        words = [w for w in str(query or "").lower().split() if w]
        rows = []
        for m in self._store.list_memories(agent_id):
            if about_user_id and (m.get("metadata") or {}).get("aboutUserId") != about_user_id:
                continue
            content = str(m.get("content") or "").lower()
            if words and not all(w in content for w in words):
                continue
            rows.append(m)
        rows.sort(key=lambda m: (float(m.get("importance", 0.0)), float(m.get("created_at", 0.0))), reverse=True)
        hits = rows[: max(0, limit)]
        for m in hits:
            m["access_count"] = int(m.get("access_count", 0)) + 1
        return hits
