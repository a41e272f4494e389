"""
World store: in-memory rows for the simulated world.

Every mutation is a single-row upsert or insert keyed by id; nothing here spans
multiple rows transactionally. Workflow run records are additionally appended
to a JSONL file when a path is configured.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from agent_engine.models import HeatRecord, WorkflowRunRecord
from agent_engine.utils import append_jsonl, new_id, read_jsonl

_log = logging.getLogger(__name__)


def pair_key(a: str, b: str) -> Tuple[str, str]:
    """Order-independent key for a two-party relation."""
    return (a, b) if a <= b else (b, a)


class WorldStore:
    def __init__(self, runs_path: Optional[Path] = None, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self.runs_path = runs_path
        self.users: Dict[str, dict] = {}
        self.posts: Dict[str, dict] = {}
        self.comments: Dict[str, dict] = {}
        self.likes: Dict[Tuple[str, str], dict] = {}
        self.follows: Dict[Tuple[str, str], dict] = {}
        self.communities: Dict[str, dict] = {}
        self.memberships: Dict[Tuple[str, str], dict] = {}
        self.conversations: Dict[str, dict] = {}
        self._conversation_by_pair: Dict[Tuple[str, str], str] = {}
        self.messages: List[dict] = []
        self.agent_actions: List[dict] = []
        self.relationships: Dict[Tuple[str, str], dict] = {}
        self.memories: List[dict] = []
        self.group_conversations: Dict[str, dict] = {}
        self.group_messages: List[dict] = []
        self.battles: Dict[str, dict] = {}
        self.battle_participants: List[dict] = []
        self.market_items: Dict[str, dict] = {}
        self.inventory: Dict[Tuple[str, str], dict] = {}
        self.proposals: Dict[str, dict] = {}
        self.votes: Dict[Tuple[str, str], dict] = {}
        self.notifications: List[dict] = []
        self.heat: Dict[str, HeatRecord] = {}
        self.workflow_runs: List[dict] = []
        self.control: Dict[str, Any] = {}

    def now(self) -> float:
        return self._clock()

    # --- users ---

    def upsert_user(
        self,
        user_id: str,
        username: str,
        *,
        is_agent: bool = False,
        is_active: bool = True,
        display_name: str = "",
        persona: str = "",
        **extra: Any,
    ) -> dict:
        row = self.users.get(user_id) or {
            "id": user_id,
            "created_at": self.now(),
            "last_cycle_at": 0.0,
            "energy": 100.0,
            "health": 100.0,
            "gold": 0.0,
        }
        row.update({
            "username": username.strip().lstrip("@"),
            "display_name": display_name or row.get("display_name") or username,
            "is_agent": bool(is_agent),
            "is_active": bool(is_active),
            "persona": persona or row.get("persona", ""),
        })
        row.update(extra)
        self.users[user_id] = row
        return row

    def get_user(self, user_id: str) -> Optional[dict]:
        return self.users.get(user_id)

    def find_user_by_username(self, username: str) -> Optional[dict]:
        name = (username or "").strip().lstrip("@").lower()
        for u in self.users.values():
            if str(u.get("username") or "").lower() == name:
                return u
        return None

    def list_agents(self, active_only: bool = True) -> List[dict]:
        return [
            u for u in self.users.values()
            if u.get("is_agent") and (u.get("is_active") or not active_only)
        ]

    def mark_cycle(self, user_id: str, at: Optional[float] = None) -> None:
        row = self.users.get(user_id)
        if row is not None:
            row["last_cycle_at"] = self.now() if at is None else at

    # --- posts, comments, likes ---

    def add_post(
        self,
        author_id: str,
        content: str,
        *,
        post_id: Optional[str] = None,
        community_id: Optional[str] = None,
        created_at: Optional[float] = None,
    ) -> dict:
        pid = post_id or new_id("post")
        row = {
            "id": pid,
            "author_id": author_id,
            "content": content,
            "community_id": community_id,
            "created_at": self.now() if created_at is None else created_at,
        }
        self.posts[pid] = row
        return row

    def get_post(self, post_id: str) -> Optional[dict]:
        return self.posts.get(post_id)

    def delete_post(self, post_id: str) -> bool:
        return self.posts.pop(post_id, None) is not None

    def list_posts(self, limit: int = 10, community_id: Optional[str] = None) -> List[dict]:
        rows = [p for p in self.posts.values() if community_id is None or p.get("community_id") == community_id]
        rows.sort(key=lambda p: p.get("created_at", 0.0), reverse=True)
        return rows[: max(0, limit)]

    def add_comment(self, post_id: str, author_id: str, content: str) -> dict:
        row = {
            "id": new_id("comment"),
            "post_id": post_id,
            "author_id": author_id,
            "content": content,
            "created_at": self.now(),
        }
        self.comments[row["id"]] = row
        return row

    def list_comments(self, post_id: str) -> List[dict]:
        rows = [c for c in self.comments.values() if c.get("post_id") == post_id]
        rows.sort(key=lambda c: c.get("created_at", 0.0))
        return rows

    def add_like(self, post_id: str, user_id: str) -> bool:
        """Insert a like; False when the user already liked the post."""
        key = (post_id, user_id)
        if key in self.likes:
            return False
        self.likes[key] = {"post_id": post_id, "user_id": user_id, "created_at": self.now()}
        return True

    def like_count(self, post_id: str) -> int:
        return sum(1 for (pid, _uid) in self.likes if pid == post_id)

    # --- follows and communities ---

    def add_follow(self, follower_id: str, followee_id: str) -> bool:
        key = (follower_id, followee_id)
        if key in self.follows:
            return False
        self.follows[key] = {"follower_id": follower_id, "followee_id": followee_id, "created_at": self.now()}
        return True

    def is_following(self, follower_id: str, followee_id: str) -> bool:
        return (follower_id, followee_id) in self.follows

    def follower_count(self, user_id: str) -> int:
        return sum(1 for (_f, fe) in self.follows if fe == user_id)

    def following_count(self, user_id: str) -> int:
        return sum(1 for (f, _fe) in self.follows if f == user_id)

    def upsert_community(self, community_id: str, name: str, **extra: Any) -> dict:
        row = self.communities.get(community_id) or {"id": community_id, "created_at": self.now()}
        row.update({"name": name})
        row.update(extra)
        self.communities[community_id] = row
        return row

    def get_community(self, community_id: str) -> Optional[dict]:
        return self.communities.get(community_id)

    def join_community(self, user_id: str, community_id: str) -> bool:
        key = (user_id, community_id)
        if key in self.memberships:
            return False
        self.memberships[key] = {"user_id": user_id, "community_id": community_id, "joined_at": self.now()}
        return True

    def leave_community(self, user_id: str, community_id: str) -> bool:
        return self.memberships.pop((user_id, community_id), None) is not None

    def user_communities(self, user_id: str) -> List[str]:
        return [cid for (uid, cid) in self.memberships if uid == user_id]

    # --- conversations and messages ---

    def get_conversation(self, conversation_id: str) -> Optional[dict]:
        return self.conversations.get(conversation_id)

    def find_conversation(self, a: str, b: str) -> Optional[dict]:
        cid = self._conversation_by_pair.get(pair_key(a, b))
        return self.conversations.get(cid) if cid else None

    def get_or_create_conversation(self, a: str, b: str) -> Tuple[dict, bool]:
        """Return (conversation, created) for the unordered pair a/b."""
        existing = self.find_conversation(a, b)
        if existing is not None:
            return existing, False
        key = pair_key(a, b)
        row = {"id": new_id("conv"), "participants": list(key), "created_at": self.now()}
        self.conversations[row["id"]] = row
        self._conversation_by_pair[key] = row["id"]
        return row, True

    def add_message(self, conversation_id: str, sender_id: str, content: str, *, created_at: Optional[float] = None) -> dict:
        row = {
            "id": new_id("msg"),
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "created_at": self.now() if created_at is None else created_at,
        }
        self.messages.append(row)
        return row

    def list_messages(self, conversation_id: str, limit: int = 20) -> List[dict]:
        rows = [m for m in self.messages if m.get("conversation_id") == conversation_id]
        return rows[-limit:] if limit > 0 else rows

    def messages_between(self, sender_id: str, recipient_id: str) -> List[dict]:
        conv = self.find_conversation(sender_id, recipient_id)
        if conv is None:
            return []
        return [m for m in self.messages if m.get("conversation_id") == conv["id"] and m.get("sender_id") == sender_id]

    # --- agent action events (refusals) ---

    def record_agent_action(
        self,
        agent_id: str,
        action_type: str,
        target_id: Optional[str],
        metadata: Optional[dict] = None,
        *,
        created_at: Optional[float] = None,
    ) -> dict:
        row = {
            "id": new_id("act"),
            "agent_id": agent_id,
            "action_type": action_type,
            "target_id": target_id,
            "metadata": dict(metadata or {}),
            "created_at": self.now() if created_at is None else created_at,
        }
        self.agent_actions.append(row)
        return row

    def list_agent_actions(
        self,
        agent_id: str,
        *,
        target_id: Optional[str] = None,
        action_types: Optional[Iterable[str]] = None,
    ) -> List[dict]:
        kinds = set(action_types) if action_types is not None else None
        return [
            a for a in self.agent_actions
            if a.get("agent_id") == agent_id
            and (target_id is None or a.get("target_id") == target_id)
            and (kinds is None or a.get("action_type") in kinds)
        ]

    # --- relationships and memories ---

    def get_relationship(self, a: str, b: str) -> Optional[dict]:
        return self.relationships.get(pair_key(a, b))

    def adjust_relationship(self, a: str, b: str, delta: float) -> dict:
        key = pair_key(a, b)
        row = self.relationships.get(key) or {"users": list(key), "score": 0.0, "interactions": 0}
        row["score"] = max(-100.0, min(100.0, float(row["score"]) + delta))
        row["interactions"] = int(row.get("interactions", 0)) + 1
        row["updated_at"] = self.now()
        self.relationships[key] = row
        return row

    def decay_relationships(self, amount: float) -> int:
        """Move every non-zero relationship score toward 0 by `amount`."""
        changed = 0
        for row in self.relationships.values():
            score = float(row.get("score", 0.0))
            if score == 0:
                continue
            row["score"] = max(0.0, score - amount) if score > 0 else min(0.0, score + amount)
            changed += 1
        return changed

    def add_memory(
        self,
        agent_id: str,
        content: str,
        *,
        memory_type: str = "observation",
        importance: float = 0.5,
        metadata: Optional[dict] = None,
        created_at: Optional[float] = None,
    ) -> dict:
        row = {
            "id": new_id("mem"),
            "agent_id": agent_id,
            "content": content,
            "memory_type": memory_type,
            "importance": max(0.0, min(1.0, float(importance))),
            "metadata": dict(metadata or {}),
            "access_count": 0,
            "created_at": self.now() if created_at is None else created_at,
        }
        self.memories.append(row)
        return row

    def list_memories(self, agent_id: str) -> List[dict]:
        return [m for m in self.memories if m.get("agent_id") == agent_id]

    def delete_memories_before(self, cutoff: float) -> int:
        before = len(self.memories)
        self.memories = [m for m in self.memories if float(m.get("created_at", 0.0)) >= cutoff]
        return before - len(self.memories)

    # --- group chats ---

    def create_group_conversation(self, name: str, participant_ids: Iterable[str], *, community_id: Optional[str] = None, group_id: Optional[str] = None) -> dict:
        gid = group_id or new_id("group")
        row = {
            "id": gid,
            "name": name,
            "community_id": community_id,
            "participants": list(dict.fromkeys(participant_ids)),
            "created_at": self.now(),
        }
        self.group_conversations[gid] = row
        return row

    def get_group_conversation(self, group_id: str) -> Optional[dict]:
        return self.group_conversations.get(group_id)

    def add_group_message(self, group_id: str, user_id: str, content: str, *, role: str = "user") -> dict:
        row = {
            "id": new_id("gmsg"),
            "group_id": group_id,
            "user_id": user_id,
            "content": content,
            "role": role,
            "created_at": self.now(),
        }
        self.group_messages.append(row)
        return row

    def list_group_messages(self, group_id: str, limit: int = 10) -> List[dict]:
        rows = [m for m in self.group_messages if m.get("group_id") == group_id]
        return rows[-limit:] if limit > 0 else rows

    # --- battles ---

    def add_battle(self, attacker_community_id: str, defender_community_id: str, *, battle_id: Optional[str] = None, status: str = "active") -> dict:
        bid = battle_id or new_id("battle")
        row = {
            "id": bid,
            "attacker_community_id": attacker_community_id,
            "defender_community_id": defender_community_id,
            "status": status,
            "attacker_damage": 0.0,
            "defender_damage": 0.0,
            "created_at": self.now(),
        }
        self.battles[bid] = row
        return row

    def get_battle(self, battle_id: str) -> Optional[dict]:
        return self.battles.get(battle_id)

    def list_battles(self, community_id: Optional[str] = None, status: Optional[str] = "active") -> List[dict]:
        rows = [
            b for b in self.battles.values()
            if (status is None or b.get("status") == status)
            and (community_id is None or community_id in (b.get("attacker_community_id"), b.get("defender_community_id")))
        ]
        rows.sort(key=lambda b: b.get("created_at", 0.0), reverse=True)
        return rows

    def add_battle_participation(self, battle_id: str, user_id: str, side: str, damage: float) -> dict:
        row = {
            "id": new_id("bpart"),
            "battle_id": battle_id,
            "user_id": user_id,
            "side": side,
            "damage": float(damage),
            "created_at": self.now(),
        }
        self.battle_participants.append(row)
        battle = self.battles.get(battle_id)
        if battle is not None:
            key = "attacker_damage" if side == "attacker" else "defender_damage"
            battle[key] = float(battle.get(key, 0.0)) + float(damage)
        return row

    def list_battle_participants(self, battle_id: str) -> List[dict]:
        return [p for p in self.battle_participants if p.get("battle_id") == battle_id]

    # --- market and inventory ---

    def upsert_market_item(self, name: str, price: float, *, effects: Optional[dict] = None, available: bool = True) -> dict:
        row = {"name": name, "price": float(price), "effects": dict(effects or {}), "available": bool(available)}
        self.market_items[name] = row
        return row

    def get_market_item(self, name: str) -> Optional[dict]:
        return self.market_items.get(name)

    def list_market_items(self, available_only: bool = True) -> List[dict]:
        return [i for i in self.market_items.values() if i.get("available") or not available_only]

    def inventory_quantity(self, user_id: str, item_name: str) -> int:
        row = self.inventory.get((user_id, item_name))
        return int(row["quantity"]) if row else 0

    def adjust_inventory(self, user_id: str, item_name: str, delta: int) -> int:
        """Add `delta` units (negative removes); a row reaching zero is deleted."""
        key = (user_id, item_name)
        quantity = self.inventory_quantity(user_id, item_name) + int(delta)
        if quantity <= 0:
            self.inventory.pop(key, None)
            return 0
        self.inventory[key] = {"user_id": user_id, "item_name": item_name, "quantity": quantity}
        return quantity

    def list_inventory(self, user_id: str) -> List[dict]:
        return [dict(row) for (uid, _name), row in self.inventory.items() if uid == user_id]

    def update_user_stats(self, user_id: str, **values: Any) -> Optional[dict]:
        row = self.users.get(user_id)
        if row is not None:
            row.update(values)
        return row

    # --- governance ---

    def add_proposal(
        self,
        community_id: str,
        author_id: str,
        title: str,
        description: str,
        *,
        proposal_id: Optional[str] = None,
        status: str = "active",
    ) -> dict:
        pid = proposal_id or new_id("prop")
        row = {
            "id": pid,
            "community_id": community_id,
            "author_id": author_id,
            "title": title,
            "description": description,
            "status": status,
            "created_at": self.now(),
        }
        self.proposals[pid] = row
        return row

    def get_proposal(self, proposal_id: str) -> Optional[dict]:
        return self.proposals.get(proposal_id)

    def list_proposals(self, community_id: str, status: Optional[str] = "active") -> List[dict]:
        rows = [
            p for p in self.proposals.values()
            if p.get("community_id") == community_id and (status is None or p.get("status") == status)
        ]
        rows.sort(key=lambda p: p.get("created_at", 0.0), reverse=True)
        return rows

    def cast_vote(self, proposal_id: str, user_id: str, vote: str) -> bool:
        """Insert or replace a vote; True when the user had not voted yet."""
        key = (proposal_id, user_id)
        created = key not in self.votes
        self.votes[key] = {"proposal_id": proposal_id, "user_id": user_id, "vote": vote, "created_at": self.now()}
        return created

    def get_vote(self, proposal_id: str, user_id: str) -> Optional[dict]:
        return self.votes.get((proposal_id, user_id))

    def vote_tally(self, proposal_id: str) -> Dict[str, int]:
        tally = {"yes": 0, "no": 0, "abstain": 0}
        for (pid, _uid), row in self.votes.items():
            if pid == proposal_id:
                tally[row["vote"]] = tally.get(row["vote"], 0) + 1
        return tally

    def community_members(self, community_id: str) -> List[str]:
        return [uid for (uid, cid) in self.memberships if cid == community_id]

    # --- notifications ---

    def add_notification(self, recipient_id: str, kind: str, title: str, body: str = "", metadata: Optional[dict] = None) -> dict:
        row = {
            "id": new_id("notif"),
            "recipient_id": recipient_id,
            "kind": kind,
            "title": title,
            "body": body,
            "metadata": dict(metadata or {}),
            "read": False,
            "created_at": self.now(),
        }
        self.notifications.append(row)
        return row

    def list_notifications(self, recipient_id: str) -> List[dict]:
        return [n for n in self.notifications if n.get("recipient_id") == recipient_id]

    # --- heat ---

    def get_heat(self, actor_id: str) -> Optional[HeatRecord]:
        return self.heat.get(actor_id)

    def put_heat(self, record: HeatRecord) -> None:
        self.heat[record.actor_id] = record

    def clear_heat(self, actor_id: Optional[str] = None) -> int:
        if actor_id is not None:
            return 1 if self.heat.pop(actor_id, None) is not None else 0
        n = len(self.heat)
        self.heat.clear()
        return n

    # --- simulation control ---

    def get_control(self) -> Dict[str, Any]:
        return dict(self.control)

    def put_control(self, values: Dict[str, Any]) -> None:
        self.control.update(values)

    # --- workflow runs (append-only) ---

    def append_workflow_run(self, record: WorkflowRunRecord) -> None:
        row = asdict(record)
        self.workflow_runs.append(row)
        if self.runs_path is not None:
            append_jsonl(self.runs_path, row)

    def list_workflow_runs(self, limit: int = 50, workflow_key: Optional[str] = None) -> List[dict]:
        rows = self.workflow_runs
        if not rows and self.runs_path is not None:
            rows = read_jsonl(self.runs_path)
        if workflow_key:
            rows = [r for r in rows if r.get("workflow_key") == workflow_key]
        return list(reversed(rows[-limit:])) if limit > 0 else list(reversed(rows))
