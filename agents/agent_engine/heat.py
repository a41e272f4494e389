"""
Per-actor heat: a decaying counter that throttles world-affecting actions.

Decay is applied lazily whenever heat is read; there is no background timer.
`check_heat` never writes. `apply_heat` is called only after an action succeeded.

Two concurrent cycles for the same actor may both pass `check_heat` before either
applies heat. That overshoot is bounded by one action cost and is accepted; the
stored value is still clamped to [0, max_heat].
"""
from __future__ import annotations

import logging
import math
import time
from typing import Callable, Dict, Optional

from agent_engine.config import HEAT_COSTS, HEAT_DECAY_PER_MINUTE, HEAT_DEFAULT_COST, HEAT_MAX
from agent_engine.models import HeatCheck, HeatRecord
from agent_engine.store import WorldStore

_log = logging.getLogger(__name__)


class HeatLimiter:
    def __init__(
        self,
        store: WorldStore,
        *,
        costs: Optional[Dict[str, float]] = None,
        default_cost: float = HEAT_DEFAULT_COST,
        max_heat: float = HEAT_MAX,
        decay_per_minute: float = HEAT_DECAY_PER_MINUTE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._costs = dict(HEAT_COSTS if costs is None else costs)
        self._default_cost = float(default_cost)
        self.max_heat = float(max_heat)
        self._decay = float(decay_per_minute)
        self._clock = clock

    def cost_for(self, action_kind: Optional[str]) -> float:
        if not action_kind:
            return 0.0
        return float(self._costs.get(action_kind, self._default_cost))

    def _decayed(self, record: HeatRecord, now: float) -> float:
        elapsed_min = max(0.0, now - record.last_decay_at) / 60.0
        heat = record.current_heat - self._decay * elapsed_min
        return min(self.max_heat, max(0.0, heat))

    def current_heat(self, actor_id: str) -> float:
        record = self._store.get_heat(actor_id)
        if record is None:
            return 0.0
        return self._decayed(record, self._clock())

    def check_heat(self, actor_id: str, action_kind: Optional[str] = None) -> HeatCheck:
        """
        Pure read. Without an action kind, only a fully heated actor is blocked.

        A blocked check reports `cooldown_minutes=None` when heat does not decay.
        """
        heat = self.current_heat(actor_id)
        cost = self.cost_for(action_kind)
        if action_kind:
            allowed = heat + cost <= self.max_heat
        else:
            allowed = heat < self.max_heat
        cooldown: Optional[int] = 0
        if not allowed:
            if self._decay > 0:
                cooldown = int(math.ceil(max(heat + cost - self.max_heat, 0.0) / self._decay)) or 1
            else:
                cooldown = None
        return HeatCheck(allowed=allowed, current_heat=round(heat, 3), cooldown_minutes=cooldown, cost=cost)

    def apply_heat(self, actor_id: str, action_kind: str, target_id: Optional[str] = None) -> HeatRecord:
        now = self._clock()
        record = self._store.get_heat(actor_id) or HeatRecord(actor_id=actor_id, current_heat=0.0, last_decay_at=now)
        cost = self.cost_for(action_kind)
        heat = min(self.max_heat, self._decayed(record, now) + cost)
        updated = HeatRecord(actor_id=actor_id, current_heat=heat, last_decay_at=now)
        self._store.put_heat(updated)
        _log.debug("heat applied actor=%s action=%s target=%s cost=%s heat=%.1f", actor_id, action_kind, target_id, cost, heat)
        return updated

    def reset(self, actor_id: Optional[str] = None) -> int:
        return self._store.clear_heat(actor_id)
