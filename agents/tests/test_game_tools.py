"""Tests for battle, economy, governance and group chat tools."""
from __future__ import annotations

import asyncio

import pytest

from agent_engine.models import ToolExecutionContext


def _run(runtime, name, args, agent_id="agent-a"):
    return asyncio.run(runtime.registry.execute(name, args, ToolExecutionContext(agent_id)))


@pytest.fixture
def war(store):
    store.upsert_community("c2", "Miners")
    store.join_community("agent-a", "c1")
    store.join_community("agent-b", "c2")
    return store.add_battle("c1", "c2", battle_id="B1")


def test_join_battle_spends_energy_on_own_side(runtime, store, war):
    res = _run(runtime, "join_battle", {"battleId": "B1", "energyAmount": 30})
    assert res.ok
    assert res.result["side"] == "attacker"
    assert store.get_user("agent-a")["energy"] == 70.0
    assert store.get_battle("B1")["attacker_damage"] == 30.0

    res = _run(runtime, "join_battle", {"battleId": "B1", "energyAmount": 5}, agent_id="agent-b")
    assert res.result["side"] == "defender"
    assert store.get_battle("B1")["defender_damage"] == 5.0


def test_join_battle_requires_energy_and_membership(runtime, store, war):
    res = _run(runtime, "join_battle", {"battleId": "B1", "energyAmount": 150})
    assert res.ok is False
    assert res.error_kind == "insufficient"
    assert store.get_user("agent-a")["energy"] == 100.0
    assert store.list_battle_participants("B1") == []

    store.upsert_user("agent-c", "cy", is_agent=True)
    outsider = _run(runtime, "join_battle", {"battleId": "B1", "energyAmount": 10}, agent_id="agent-c")
    assert outsider.error_kind == "validation"


def test_join_finished_battle_is_invalid(runtime, store, war):
    store.get_battle("B1")["status"] = "finished"
    res = _run(runtime, "join_battle", {"battleId": "B1", "energyAmount": 10})
    assert res.error_kind == "validation"


def test_work_buy_and_eat(runtime, store):
    store.upsert_market_item("bread", 15, effects={"energy": 25})
    worked = _run(runtime, "do_work", {"jobType": "mining"})
    assert worked.ok and worked.result["earned"] == 50
    assert store.get_user("agent-a")["energy"] == 80.0

    bought = _run(runtime, "buy_item", {"itemName": "bread", "quantity": 2})
    assert bought.ok and bought.result["held"] == 2
    assert store.get_user("agent-a")["gold"] == 20.0

    eaten = _run(runtime, "consume_item", {"itemName": "bread", "quantity": 1})
    assert eaten.ok
    # capped at 100
    assert store.get_user("agent-a")["energy"] == 100.0
    assert store.inventory_quantity("agent-a", "bread") == 1


def test_buy_without_gold_and_eat_without_items(runtime, store):
    store.upsert_market_item("bread", 15, effects={"energy": 25})
    assert _run(runtime, "buy_item", {"itemName": "bread", "quantity": 1}).error_kind == "insufficient"
    assert _run(runtime, "consume_item", {"itemName": "bread", "quantity": 1}).error_kind == "insufficient"
    assert _run(runtime, "buy_item", {"itemName": "cake", "quantity": 1}).error_kind == "not_found"
    assert _run(runtime, "do_work", {"jobType": "juggling"}).error_kind == "validation"


def test_vote_updates_and_repeats_are_no_ops(runtime, store):
    store.add_proposal("c1", "user-h", "Water rota", "Everyone waters on Sundays.", proposal_id="L1")
    first = _run(runtime, "vote_on_proposal", {"proposalId": "L1", "vote": "yes"})
    again = _run(runtime, "vote_on_proposal", {"proposalId": "L1", "vote": "yes"})
    changed = _run(runtime, "vote_on_proposal", {"proposalId": "L1", "vote": "no"})
    assert first.result["tally"]["yes"] == 1
    assert again.result["changed"] is False
    assert changed.result["updated"] is True
    assert store.vote_tally("L1") == {"yes": 0, "no": 1, "abstain": 0}
    assert store.get_relationship("agent-a", "user-h")["score"] == 0.0
    assert _run(runtime, "vote_on_proposal", {"proposalId": "L1", "vote": "maybe"}).error_kind == "validation"


def test_create_proposal_needs_membership_and_notifies(runtime, store):
    args = {"title": "Quiet hours", "description": "No digging after dark.", "communityId": "c1"}
    assert _run(runtime, "create_proposal", args).error_kind == "validation"

    store.join_community("agent-a", "c1")
    store.join_community("user-h", "c1")
    res = _run(runtime, "create_proposal", args)
    assert res.ok
    assert store.get_proposal(res.result["proposalId"])["author_id"] == "agent-a"
    assert [n["kind"] for n in store.list_notifications("user-h")] == ["proposal"]
    assert store.list_notifications("agent-a") == []


def test_group_message_requires_participation(runtime, store):
    store.create_group_conversation("Garden club", ["agent-a", "user-h"], group_id="G1")
    ok = _run(runtime, "send_group_message", {"groupConversationId": "G1", "content": "Seeds are in!"})
    denied = _run(runtime, "send_group_message", {"groupConversationId": "G1", "content": "me too"}, agent_id="agent-b")
    assert ok.ok
    assert denied.error_kind == "validation"
    assert [(m["user_id"], m["role"]) for m in store.list_group_messages("G1")] == [("agent-a", "ai")]


def test_game_data_tools(runtime, store, war):
    store.upsert_market_item("bread", 15, effects={"energy": 25})
    store.adjust_inventory("agent-a", "bread", 3)
    store.add_proposal("c1", "user-h", "Water rota", "Sundays.", proposal_id="L1")
    store.cast_vote("L1", "agent-a", "no")

    battles = _run(runtime, "get_active_battles", {"communityId": "c2"}).result
    assert [b["id"] for b in battles] == ["B1"]
    details = _run(runtime, "get_battle_details", {"battleId": "B1"}).result
    assert details["mySide"] == "attacker" and details["joinedByMe"] is False
    inventory = _run(runtime, "get_my_inventory", {}).result
    assert inventory["items"] == [{"name": "bread", "quantity": 3}]
    assert [i["name"] for i in _run(runtime, "get_market_items", {}).result] == ["bread"]
    proposals = _run(runtime, "get_active_proposals", {"communityId": "c1"}).result
    assert proposals[0]["myVote"] == "no"
    assert proposals[0]["tally"]["no"] == 1
    assert _run(runtime, "get_active_battles", {"communityId": "c9"}).error_kind == "not_found"


def test_group_history_and_memory_search(runtime, store):
    store.create_group_conversation("Garden club", ["agent-a", "user-h"], group_id="G1")
    store.add_group_message("G1", "user-h", "who has spare seeds?")
    history = _run(runtime, "get_group_chat_history", {"groupConversationId": "G1"}).result
    assert [m["content"] for m in history["messages"]] == ["who has spare seeds?"]

    runtime.memory.remember("agent-a", "Hana asked about seeds", metadata={"aboutUserId": "user-h"})
    runtime.memory.remember("agent-a", "Bob likes mining", metadata={"aboutUserId": "agent-b"})
    hits = _run(runtime, "search_memories", {"aboutUserId": "user-h"}).result
    assert [h["content"] for h in hits] == ["Hana asked about seeds"]
    assert _run(runtime, "search_memories", {"query": "MINING"}).result[0]["content"] == "Bob likes mining"
