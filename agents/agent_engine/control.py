"""
Simulation control: global pause flag and daily token budget.

Reads fail open: if the control record cannot be read the simulation counts as
active and within budget, so a broken store never silently freezes every agent.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from agent_engine.config import DAILY_TOKEN_LIMIT
from agent_engine.store import WorldStore

_log = logging.getLogger(__name__)


class SimulationControl:
    def __init__(
        self,
        store: WorldStore,
        *,
        daily_token_limit: int = DAILY_TOKEN_LIMIT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock
        if "daily_token_limit" not in store.get_control():
            store.put_control({
                "is_active": True,
                "paused_until": None,
                "pause_reason": "",
                "tokens_used_today": 0,
                "daily_token_limit": int(daily_token_limit),
            })

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            return self._store.get_control()
        except Exception:
            _log.warning("simulation control read failed; assuming active", exc_info=True)
            return None

    def is_simulation_active(self) -> bool:
        rec = self._read()
        if rec is None:
            return True
        if rec.get("is_active", True):
            return True
        until = rec.get("paused_until")
        if until is not None and self._clock() >= float(until):
            try:
                self.resume()
            except Exception:
                _log.warning("clearing expired pause failed; treating simulation as active", exc_info=True)
            return True
        return False

    def has_token_budget(self) -> bool:
        rec = self._read()
        if rec is None:
            return True
        return int(rec.get("tokens_used_today", 0)) < int(rec.get("daily_token_limit", DAILY_TOKEN_LIMIT))

    def pause(self, minutes: Optional[float] = None, reason: str = "") -> dict:
        until = self._clock() + float(minutes) * 60.0 if minutes else None
        self._store.put_control({"is_active": False, "paused_until": until, "pause_reason": reason})
        _log.info("simulation paused until=%s reason=%s", until, reason)
        return self.snapshot()

    def resume(self) -> dict:
        self._store.put_control({"is_active": True, "paused_until": None, "pause_reason": ""})
        _log.info("simulation resumed")
        return self.snapshot()

    def log_token_usage(self, tokens: int) -> None:
        if tokens <= 0:
            return
        try:
            rec = self._store.get_control()
            self._store.put_control({"tokens_used_today": int(rec.get("tokens_used_today", 0)) + int(tokens)})
        except Exception:
            _log.warning("token usage update failed tokens=%s", tokens, exc_info=True)

    def reset_daily_tokens(self) -> int:
        rec = self._store.get_control()
        used = int(rec.get("tokens_used_today", 0))
        self._store.put_control({"tokens_used_today": 0})
        return used

    def set_daily_limit(self, limit: int) -> dict:
        self._store.put_control({"daily_token_limit": max(0, int(limit))})
        return self.snapshot()

    def snapshot(self) -> dict:
        rec = self._read() or {}
        return {
            "is_active": bool(rec.get("is_active", True)),
            "paused_until": rec.get("paused_until"),
            "pause_reason": rec.get("pause_reason", ""),
            "tokens_used_today": int(rec.get("tokens_used_today", 0)),
            "daily_token_limit": int(rec.get("daily_token_limit", DAILY_TOKEN_LIMIT)),
        }
