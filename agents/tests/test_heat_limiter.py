"""Tests for per-actor heat: costs, lazy decay and cooldowns."""
from __future__ import annotations

from agent_engine.heat import HeatLimiter
from agent_engine.models import HeatRecord
from agent_engine.store import WorldStore
from engine_fakes import HEAT_COSTS, FakeClock


def _limiter(clock: FakeClock) -> HeatLimiter:
    return HeatLimiter(WorldStore(clock=clock), costs=HEAT_COSTS, max_heat=100, decay_per_minute=5, clock=clock)


def test_fresh_actor_is_cold():
    heat = _limiter(FakeClock())
    check = heat.check_heat("a1", "like")
    assert check.allowed is True
    assert check.current_heat == 0
    assert check.cooldown_minutes == 0
    assert check.cost == 10


def test_check_heat_does_not_write():
    clock = FakeClock()
    heat = _limiter(clock)
    heat.check_heat("a1", "create_post")
    assert heat.current_heat("a1") == 0


def test_apply_heat_adds_cost_and_decays():
    clock = FakeClock()
    heat = _limiter(clock)
    heat.apply_heat("a1", "create_post")
    assert heat.current_heat("a1") == 15
    clock.advance(60)
    assert heat.current_heat("a1") == 10
    clock.advance(600)
    assert heat.current_heat("a1") == 0


def test_blocks_when_cost_would_exceed_max():
    clock = FakeClock()
    heat = _limiter(clock)
    heat._store.put_heat(HeatRecord("a1", 95.0, clock()))
    check = heat.check_heat("a1", "like")
    assert check.allowed is False
    assert check.current_heat == 95
    # 5 over the ceiling at 5 per minute
    assert check.cooldown_minutes == 1
    assert heat.check_heat("a1", "decline").allowed is True
    assert heat.check_heat("a1", "ignore").allowed is True


def test_check_without_action_only_blocks_at_max():
    clock = FakeClock()
    heat = _limiter(clock)
    heat._store.put_heat(HeatRecord("a1", 99.0, clock()))
    assert heat.check_heat("a1").allowed is True
    heat._store.put_heat(HeatRecord("a1", 100.0, clock()))
    assert heat.check_heat("a1").allowed is False


def test_unknown_action_uses_default_cost():
    heat = HeatLimiter(WorldStore(), costs={}, default_cost=7, clock=FakeClock())
    assert heat.cost_for("wave") == 7
    assert heat.cost_for(None) == 0


def test_heat_stays_within_bounds_and_decays_monotonically():
    clock = FakeClock()
    heat = _limiter(clock)
    for _ in range(30):
        heat.apply_heat("a1", "create_post")
        assert 0 <= heat.current_heat("a1") <= 100
    assert heat.current_heat("a1") == 100
    last = heat.current_heat("a1")
    for _ in range(25):
        clock.advance(60)
        now = heat.current_heat("a1")
        assert 0 <= now <= last
        last = now
    assert last == 0


def test_reset_clears_records():
    clock = FakeClock()
    heat = _limiter(clock)
    heat.apply_heat("a1", "like")
    heat.apply_heat("a2", "like")
    assert heat.reset("a1") == 1
    assert heat.current_heat("a1") == 0
    assert heat.reset() == 1


def test_no_decay_reports_no_cooldown():
    clock = FakeClock()
    heat = HeatLimiter(WorldStore(clock=clock), costs=HEAT_COSTS, max_heat=20, decay_per_minute=0, clock=clock)
    heat.apply_heat("a1", "create_post")
    check = heat.check_heat("a1", "like")
    assert check.allowed is False
    assert check.cooldown_minutes is None
    clock.advance(3600)
    assert heat.check_heat("a1", "like").allowed is False
