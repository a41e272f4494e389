"""
Escalation tracker: how persistently a requester keeps repeating a request this
agent has already refused.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, List, Optional

from agent_engine.config import ESCALATION_WINDOW_HOURS
from agent_engine.store import WorldStore

REFUSAL_ACTIONS = ("decline", "ignore")

REQUEST_KEYWORDS: Dict[str, List[str]] = {
    "join_community": ["join", "community", "member", "recruit"],
    "follow": ["follow", "sub", "subscribe"],
    "money": ["money", "gold", "coins", "donate", "loan", "pay", "send me"],
    "battle": ["battle", "fight", "attack", "war"],
    "vote": ["vote", "proposal", "support my"],
}


class EscalationLevel(IntEnum):
    POLITE = 1
    FIRM = 2
    HARSH = 3


def escalation_level(persistence_level: int) -> EscalationLevel:
    if persistence_level <= 0:
        return EscalationLevel.POLITE
    if persistence_level == 1:
        return EscalationLevel.FIRM
    return EscalationLevel.HARSH


@dataclass(frozen=True)
class PersistenceReport:
    requester_id: str
    request_kind: str
    window_hours: float
    total_recent_messages: int
    similar_requests_count: int
    decline_count: int
    persistence_level: int

    @property
    def level(self) -> EscalationLevel:
        return escalation_level(self.persistence_level)

    @property
    def suggests_ignore(self) -> bool:
        return self.persistence_level >= 2

    def to_dict(self) -> dict:
        return {
            "requesterId": self.requester_id,
            "requestKind": self.request_kind,
            "windowHours": self.window_hours,
            "totalRecentMessages": self.total_recent_messages,
            "similarRequestsCount": self.similar_requests_count,
            "declineCount": self.decline_count,
            "persistenceLevel": self.persistence_level,
            "escalationLevel": int(self.level),
            "suggestIgnore": self.suggests_ignore,
        }


def _keywords(request_kind: str) -> List[str]:
    kind = (request_kind or "general").strip().lower()
    if kind in REQUEST_KEYWORDS:
        return REQUEST_KEYWORDS[kind]
    if kind == "general":
        return []
    return [w for w in kind.replace("-", "_").split("_") if len(w) >= 3]


class EscalationTracker:
    def __init__(
        self,
        store: WorldStore,
        *,
        default_window_hours: float = ESCALATION_WINDOW_HOURS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._default_window = float(default_window_hours)
        self._clock = clock

    def count_similar_requests(
        self,
        actor_id: str,
        requester_id: str,
        request_kind: str = "general",
        window_hours: Optional[float] = None,
    ) -> PersistenceReport:
        """
        Count what `requester_id` sent `actor_id` and how often `actor_id` refused them.

        An event counts when `now - window <= created_at <= now`.
        `decline_count` counts every refusal row, declines and ignores alike.
        """
        hours = self._default_window if window_hours is None else float(window_hours)
        now = self._clock()
        lower = now - hours * 3600.0

        def in_window(row: dict) -> bool:
            ts = float(row.get("created_at", 0.0))
            return lower <= ts <= now

        recent = [m for m in self._store.messages_between(requester_id, actor_id) if in_window(m)]
        words = _keywords(request_kind)
        if words:
            similar = [m for m in recent if any(w in str(m.get("content") or "").lower() for w in words)]
        else:
            similar = recent

        refusals = [
            a for a in self._store.list_agent_actions(actor_id, target_id=requester_id, action_types=REFUSAL_ACTIONS)
            if in_window(a)
        ]

        return PersistenceReport(
            requester_id=requester_id,
            request_kind=request_kind or "general",
            window_hours=hours,
            total_recent_messages=len(recent),
            similar_requests_count=len(similar),
            decline_count=len(refusals),
            persistence_level=len(refusals),
        )
