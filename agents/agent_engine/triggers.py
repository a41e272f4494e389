"""
Event triggers: build a Scope for a world event and run the engine.

Chat, comment and mention handlers run their cycle in a fresh InvocationContext,
await it and return a TriggerResult summary; they never raise. Posts, law
proposals and battles fan out: each affected agent gets its own cycle through the
TaskSupervisor and the handler returns without awaiting them. A group chat message
fans out the same way to the participants @mentioned in it. Every cycle leaves
memories of what the agent saw and did.
"""
from __future__ import annotations

import inspect
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from agent_engine.memory import MemoryManager
from agent_engine.models import Actor, Scope, Subject, Trigger, WorkflowState
from agent_engine.store import WorldStore
from agent_engine.supervisor import TaskSupervisor
from agent_engine.tracing import InvocationContext
from agent_engine.utils import extract_mentions
from agent_engine.workflow import WorkflowEngine, create_initial_state

_log = logging.getLogger(__name__)


@dataclass
class TriggerResult:
    success: bool
    executed_actions: List[str] = field(default_factory=list)
    iterations: int = 0
    elapsed_ms: float = 0.0
    errors: List[str] = field(default_factory=list)
    trace_id: Optional[str] = None
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    mentions_spawned: List[str] = field(default_factory=list)
    agents_spawned: List[str] = field(default_factory=list)

    @classmethod
    def from_state(cls, state: WorkflowState, **extra) -> "TriggerResult":
        return cls(
            success=not state.errors,
            executed_actions=list(state.executed_actions),
            iterations=state.loop.iteration,
            elapsed_ms=round(state.elapsed_ms, 1),
            errors=list(state.errors),
            trace_id=state.trace_id,
            **extra,
        )

    def to_dict(self) -> dict:
        return asdict(self)


class EventTriggers:
    def __init__(
        self,
        engine: WorkflowEngine,
        store: WorldStore,
        supervisor: TaskSupervisor,
        memory: MemoryManager,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._engine = engine
        self._store = store
        self._supervisor = supervisor
        self._memory = memory
        self._clock = clock

    async def _run(self, scope: Scope) -> WorkflowState:
        state = create_initial_state(scope)
        state = await self._engine.execute_universal_workflow(state, InvocationContext())
        self._memory.record_cycle(state)
        return state

    def _unknown_agent(self, agent_id: str) -> Optional[TriggerResult]:
        agent = self._store.get_user(agent_id)
        if agent is None or not agent.get("is_agent"):
            return TriggerResult(success=False, errors=[f"trigger: agent {agent_id} not found"])
        return None

    def _name(self, user_id: str) -> str:
        user = self._store.get_user(user_id) or {}
        return str(user.get("username") or user_id)

    async def handle_event(self, event_type: str, context: Dict[str, Any]) -> TriggerResult:
        """Route a named event to its handler; `context` holds the handler's keyword arguments."""
        handlers: Dict[str, Callable[..., Awaitable[TriggerResult]]] = {
            "chat": self.handle_chat_message,
            "comment": self.handle_comment_event,
            "mention": self.handle_mention_event,
            "post": self.handle_post_event,
            "law_proposal": self.handle_law_proposal_event,
            "battle": self.handle_battle_event,
            "group_message": self.handle_group_message,
        }
        handler = handlers.get(event_type)
        if handler is None:
            return TriggerResult(success=False, errors=[f"trigger: unknown event type {event_type}"])
        try:
            inspect.signature(handler).bind(**context)
        except TypeError as e:
            return TriggerResult(success=False, errors=[f"trigger: bad {event_type} payload: {e}"])
        return await handler(**context)

    # --- awaited single-agent events ---

    async def handle_chat_message(self, agent_id: str, sender_id: str, content: str) -> TriggerResult:
        """Store a private message from `sender_id` to the agent and let the agent respond."""
        failed = self._unknown_agent(agent_id)
        if failed is not None:
            return failed
        if self._store.get_user(sender_id) is None:
            return TriggerResult(success=False, errors=[f"trigger: sender {sender_id} not found"])
        conv, _created = self._store.get_or_create_conversation(agent_id, sender_id)
        msg = self._store.add_message(conv["id"], sender_id, content)
        spawned = self.spawn_mention_workflows(content, sender_id, exclude=[agent_id], conversation_id=conv["id"], message_id=msg["id"])
        return await self.handle_chat_event(
            agent_id, sender_id, content,
            conversation_id=conv["id"], message_id=msg["id"], mentions_spawned=spawned,
        )

    async def handle_chat_event(
        self,
        agent_id: str,
        sender_id: str,
        content: str,
        *,
        conversation_id: str,
        message_id: Optional[str] = None,
        mentions_spawned: Optional[List[str]] = None,
    ) -> TriggerResult:
        self._memory.record_event(
            agent_id, "chat", f"{self._name(sender_id)} told me: {content}",
            about_user_id=sender_id, conversationId=conversation_id,
        )
        scope = Scope(
            trigger=Trigger("event", "chat", self._clock()),
            actor=Actor(agent_id, "agent"),
            subject=Subject(sender_id, "user", {"content": content, "senderId": sender_id, "messageId": message_id}),
            conversation_id=conversation_id,
        )
        state = await self._run(scope)
        return TriggerResult.from_state(
            state, conversation_id=conversation_id, message_id=message_id, mentions_spawned=list(mentions_spawned or []),
        )

    async def handle_comment_event(self, agent_id: str, post_id: str, commenter_id: str, content: str, comment_id: Optional[str] = None) -> TriggerResult:
        """A user commented on one of the agent's posts."""
        failed = self._unknown_agent(agent_id)
        if failed is not None:
            return failed
        self._memory.record_event(
            agent_id, "comment", f"{self._name(commenter_id)} commented on my post {post_id}: {content}",
            about_user_id=commenter_id, postId=post_id,
        )
        scope = Scope(
            trigger=Trigger("event", "comment", self._clock()),
            actor=Actor(agent_id, "agent"),
            subject=Subject(post_id, "post", {"content": content, "requesterId": commenter_id, "commentId": comment_id}),
        )
        return TriggerResult.from_state(await self._run(scope))

    async def handle_mention_event(
        self,
        agent_id: str,
        mentioner_id: str,
        content: str,
        *,
        post_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> TriggerResult:
        """The agent was @mentioned in a post, comment or someone else's conversation."""
        failed = self._unknown_agent(agent_id)
        if failed is not None:
            return failed
        self._memory.record_event(
            agent_id, "mention", f"{self._name(mentioner_id)} mentioned me: {content}",
            about_user_id=mentioner_id, postId=post_id,
        )
        payload = {"content": content, "requesterId": mentioner_id, "mentionedIn": conversation_id or post_id, "messageId": message_id}
        if post_id:
            subject = Subject(post_id, "post", payload)
        else:
            subject = Subject(mentioner_id, "user", payload)
        scope = Scope(
            trigger=Trigger("event", "mention", self._clock()),
            actor=Actor(agent_id, "agent"),
            subject=subject,
        )
        return TriggerResult.from_state(await self._run(scope))

    # --- fan-out events ---

    async def handle_post_event(self, post_id: str) -> TriggerResult:
        """A new post: agents @mentioned in it get a mention cycle each."""
        post = self._store.get_post(post_id)
        if post is None:
            return TriggerResult(success=False, errors=[f"trigger: post {post_id} not found"])
        author_id = str(post.get("author_id") or "")
        spawned = self.spawn_mention_workflows(str(post.get("content") or ""), author_id, post_id=post_id)
        return TriggerResult(success=True, mentions_spawned=spawned, agents_spawned=list(spawned))

    async def handle_law_proposal_event(self, proposal_id: str) -> TriggerResult:
        """A law was proposed: every other active agent in the community considers it."""
        proposal = self._store.get_proposal(proposal_id)
        if proposal is None:
            return TriggerResult(success=False, errors=[f"trigger: proposal {proposal_id} not found"])
        community_id = str(proposal["community_id"])
        proposer_id = str(proposal.get("author_id") or "")
        payload = {
            "proposalId": proposal["id"],
            "communityId": community_id,
            "authorId": proposer_id,
            "title": proposal.get("title"),
            "content": proposal.get("description"),
            "requestKind": "vote",
        }
        members = [(m, {}) for m in self._store.community_members(community_id)]
        spawned = self._spawn_cycles(members, "law_proposal", Subject(proposal["id"], "proposal", payload), exclude=[proposer_id])
        return TriggerResult(success=True, agents_spawned=spawned)

    async def handle_battle_event(self, battle_id: str) -> TriggerResult:
        """A battle started: active agents on both sides decide whether to fight."""
        battle = self._store.get_battle(battle_id)
        if battle is None:
            return TriggerResult(success=False, errors=[f"trigger: battle {battle_id} not found"])
        sides = [str(battle["attacker_community_id"]), str(battle["defender_community_id"])]
        payload = {
            "battleId": battle["id"],
            "attackerCommunityId": sides[0],
            "defenderCommunityId": sides[1],
        }
        members = [(m, {"communityId": cid}) for cid in sides for m in self._store.community_members(cid)]
        spawned = self._spawn_cycles(members, "battle", Subject(battle["id"], "battle", payload))
        return TriggerResult(success=True, agents_spawned=spawned)

    async def handle_group_message(self, group_id: str, sender_id: str, content: str) -> TriggerResult:
        """Store a group chat message; agents @mentioned in it who take part in the group respond."""
        group = self._store.get_group_conversation(group_id)
        if group is None:
            return TriggerResult(success=False, errors=[f"trigger: group {group_id} not found"])
        participants = list(group.get("participants") or [])
        if sender_id not in participants:
            return TriggerResult(success=False, errors=[f"trigger: {sender_id} is not in group {group_id}"])
        msg = self._store.add_group_message(group_id, sender_id, content)
        mentioned = set()
        for username in extract_mentions(content):
            user = self._store.find_user_by_username(username)
            if user is not None:
                mentioned.add(user["id"])
        payload = {"content": content, "requesterId": sender_id, "groupConversationId": group_id, "messageId": msg["id"]}
        members = [(m, {}) for m in participants if m in mentioned]
        spawned = self._spawn_cycles(members, "group_chat", Subject(group_id, "group", payload), exclude=[sender_id])
        return TriggerResult(success=True, message_id=msg["id"], mentions_spawned=spawned, agents_spawned=list(spawned))

    def _spawn_cycles(
        self,
        members: List[Tuple[str, Dict[str, Any]]],
        event: str,
        subject: Subject,
        exclude: Optional[List[str]] = None,
    ) -> List[str]:
        """One supervised cycle per active agent in `members`; each pair carries extra subject payload."""
        skip = set(exclude or [])
        spawned: List[str] = []
        for member_id, extra in members:
            user = self._store.get_user(member_id)
            if user is None or not user.get("is_agent") or not user.get("is_active") or member_id in skip or member_id in spawned:
                continue
            scope = Scope(
                trigger=Trigger("event", event, self._clock()),
                actor=Actor(member_id, "agent"),
                subject=Subject(subject.id, subject.kind, dict(subject.payload, **extra)),
            )
            self._supervisor.spawn(self._event_task(scope), name=f"{event}:{member_id}")
            spawned.append(member_id)
        if spawned:
            _log.info("spawned %s %s workflow(s) subject=%s", len(spawned), event, subject.id)
        return spawned

    async def _event_task(self, scope: Scope) -> TriggerResult:
        subject = scope.subject
        if subject is not None:
            payload = subject.payload
            if subject.kind == "battle":
                headline = f"{payload.get('attackerCommunityId')} attacked {payload.get('defenderCommunityId')}"
            else:
                headline = str(payload.get("title") or payload.get("content") or "")
            ids = {k: v for k, v in payload.items() if k.endswith("Id") and k not in ("authorId", "requesterId")}
            self._memory.record_event(
                scope.actor.id, scope.trigger.name, f"{scope.trigger.name.replace('_', ' ')} {subject.id}: {headline}",
                about_user_id=payload.get("requesterId") or payload.get("authorId"), **ids,
            )
        result = TriggerResult.from_state(await self._run(scope))
        if result.errors:
            _log.warning("%s workflow agent=%s finished with errors=%s", scope.trigger.name, scope.actor.id, result.errors)
        return result

    def spawn_mention_workflows(
        self,
        text: str,
        author_id: str,
        *,
        exclude: Optional[List[str]] = None,
        post_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> List[str]:
        """Fire one mention cycle per @mentioned agent; returns the agent ids spawned for."""
        skip = set(exclude or []) | {author_id}
        spawned: List[str] = []
        for username in extract_mentions(text):
            user = self._store.find_user_by_username(username)
            if user is None or not user.get("is_agent") or user["id"] in skip or user["id"] in spawned:
                continue
            self._supervisor.spawn(
                self._mention_task(user["id"], author_id, text, post_id, conversation_id, message_id),
                name=f"mention:{username}",
            )
            spawned.append(user["id"])
        if spawned:
            _log.info("spawned %s mention workflow(s) author=%s", len(spawned), author_id)
        return spawned

    async def _mention_task(
        self,
        agent_id: str,
        author_id: str,
        text: str,
        post_id: Optional[str],
        conversation_id: Optional[str],
        message_id: Optional[str],
    ) -> TriggerResult:
        result = await self.handle_mention_event(
            agent_id, author_id, text,
            post_id=post_id, conversation_id=conversation_id, message_id=message_id,
        )
        if result.errors:
            _log.warning("mention workflow agent=%s finished with errors=%s", agent_id, result.errors)
        return result
