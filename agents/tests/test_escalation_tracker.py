"""Tests for request persistence counting and escalation levels."""
from __future__ import annotations

from agent_engine.escalation import EscalationLevel, EscalationTracker, escalation_level

HOUR = 3600.0


def _chat(store, clock, *texts, age_hours=1.0):
    conv, _ = store.get_or_create_conversation("agent-a", "user-h")
    for t in texts:
        store.add_message(conv["id"], "user-h", t, created_at=clock() - age_hours * HOUR)
    return conv


def test_escalation_levels():
    assert escalation_level(0) is EscalationLevel.POLITE
    assert escalation_level(1) is EscalationLevel.FIRM
    assert escalation_level(2) is EscalationLevel.HARSH
    assert escalation_level(7) is EscalationLevel.HARSH


def test_first_request_is_polite(store, clock):
    _chat(store, clock, "please join my community")
    report = EscalationTracker(store, clock=clock).count_similar_requests("agent-a", "user-h", "join_community")
    assert report.total_recent_messages == 1
    assert report.similar_requests_count == 1
    assert report.persistence_level == 0
    assert report.level is EscalationLevel.POLITE
    assert report.suggests_ignore is False


def test_repeated_refusals_escalate_to_harsh(store, clock):
    _chat(store, clock, "join my community", "come on, join!", "JOIN NOW")
    store.record_agent_action("agent-a", "decline", "user-h", created_at=clock() - 2 * HOUR)
    store.record_agent_action("agent-a", "ignore", "user-h", created_at=clock() - HOUR)
    report = EscalationTracker(store, clock=clock).count_similar_requests("agent-a", "user-h", "join_community")
    assert report.similar_requests_count == 3
    assert report.decline_count == 2
    assert report.persistence_level == 2
    assert report.level is EscalationLevel.HARSH
    assert report.to_dict()["suggestIgnore"] is True


def test_events_outside_window_are_not_counted(store, clock):
    _chat(store, clock, "join my community", age_hours=30)
    store.record_agent_action("agent-a", "decline", "user-h", created_at=clock() - 30 * HOUR)
    report = EscalationTracker(store, clock=clock).count_similar_requests("agent-a", "user-h", "join_community", window_hours=24)
    assert report.total_recent_messages == 0
    assert report.persistence_level == 0


def test_keyword_filter_separates_request_kinds(store, clock):
    _chat(store, clock, "can you send me some gold?", "nice weather today")
    tracker = EscalationTracker(store, clock=clock)
    money = tracker.count_similar_requests("agent-a", "user-h", "money")
    general = tracker.count_similar_requests("agent-a", "user-h")
    assert money.similar_requests_count == 1
    assert general.similar_requests_count == 2


def test_refusals_of_other_users_do_not_count(store, clock):
    store.record_agent_action("agent-a", "decline", "agent-b", created_at=clock() - HOUR)
    report = EscalationTracker(store, clock=clock).count_similar_requests("agent-a", "user-h")
    assert report.persistence_level == 0


def test_refusals_recorded_now_count(store, clock):
    store.record_agent_action("agent-a", "decline", "user-h")
    store.record_agent_action("agent-a", "decline", "user-h")
    report = EscalationTracker(store, clock=clock).count_similar_requests("agent-a", "user-h")
    assert report.persistence_level == 2
    assert report.decline_count == 2
    assert report.level is EscalationLevel.HARSH


def test_window_lower_bound_is_inclusive(store, clock):
    store.record_agent_action("agent-a", "ignore", "user-h", created_at=clock() - 24 * HOUR)
    store.record_agent_action("agent-a", "ignore", "user-h", created_at=clock() - 24 * HOUR - 1)
    report = EscalationTracker(store, clock=clock).count_similar_requests("agent-a", "user-h", window_hours=24)
    assert report.persistence_level == 1
    assert report.decline_count == 1
