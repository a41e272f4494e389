"""
World-changing tools used by the Act step.

Handlers return a dict; `"changed": False` marks a successful no-op (already
liked, already following) so the loop does not count it as progress.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from agent_engine.errors import EntityNotFoundError, InsufficientResourcesError, ToolValidationError
from agent_engine.escalation import EscalationTracker, escalation_level
from agent_engine.models import ToolDefinition, ToolExecutionContext
from agent_engine.notifications import Notifier
from agent_engine.store import WorldStore

_log = logging.getLogger(__name__)

MAX_TEXT = 2000
STAT_CAP = 100.0

# job -> (gold earned, energy spent)
WORK_JOBS: Dict[str, Tuple[float, float]] = {
    "mining": (50.0, 20.0),
    "farming": (30.0, 10.0),
    "trading": (40.0, 15.0),
}


def _text(args: Dict[str, Any], key: str = "content") -> str:
    text = str(args.get(key) or "").strip()
    if not text:
        raise ToolValidationError(f"{key} must not be empty")
    return text[:MAX_TEXT]


def _schema(properties: Dict[str, Any], required: List[str]) -> dict:
    return {"type": "object", "properties": properties, "required": required}


def build_action_tools(store: WorldStore, notifier: Notifier, escalation: EscalationTracker) -> List[ToolDefinition]:
    def require_post(post_id: str) -> dict:
        post = store.get_post(post_id)
        if post is None:
            raise EntityNotFoundError(f"post {post_id} not found")
        return post

    def require_user(user_id: str) -> dict:
        user = store.get_user(user_id)
        if user is None:
            raise EntityNotFoundError(f"user {user_id} not found")
        return user

    def requester_of(args: Dict[str, Any], ctx: ToolExecutionContext) -> Optional[str]:
        rid = ctx.metadata.get("requesterId") or args.get("userId")
        rid = str(rid or "").strip()
        return rid if rid and rid != ctx.agent_id else None

    def comment_on(post: dict, ctx: ToolExecutionContext, text: str) -> dict:
        comment = store.add_comment(post["id"], ctx.agent_id, text)
        notifier.notify_comment(post, comment, ctx.agent_id)
        if post.get("author_id") and post["author_id"] != ctx.agent_id:
            store.adjust_relationship(ctx.agent_id, str(post["author_id"]), 1.0)
        return comment

    def respond(ctx: ToolExecutionContext, requester_id: Optional[str], text: str) -> dict:
        """Send a visible response on the surface the request arrived on."""
        meta = ctx.metadata
        if meta.get("subjectType") == "post" and meta.get("subjectId"):
            post = require_post(str(meta["subjectId"]))
            comment = comment_on(post, ctx, text)
            return {"surface": "post_comment", "postId": post["id"], "commentId": comment["id"]}
        if ctx.conversation_id:
            conv = store.get_conversation(ctx.conversation_id)
            if conv is None:
                raise EntityNotFoundError(f"conversation {ctx.conversation_id} not found")
            msg = store.add_message(conv["id"], ctx.agent_id, text)
            return {"surface": "conversation", "conversationId": conv["id"], "messageId": msg["id"]}
        if requester_id:
            require_user(requester_id)
            conv, _created = store.get_or_create_conversation(ctx.agent_id, requester_id)
            msg = store.add_message(conv["id"], ctx.agent_id, text)
            notifier.notify(requester_id, "message", "New message", text[:140], {"conversationId": conv["id"]})
            return {"surface": "conversation", "conversationId": conv["id"], "messageId": msg["id"]}
        raise ToolValidationError("no post, conversation or requester to respond to")

    async def like(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        post = require_post(str(args["postId"]))
        if not store.add_like(post["id"], ctx.agent_id):
            return {"postId": post["id"], "liked": True, "changed": False, "message": "already liked"}
        if post.get("author_id") and post["author_id"] != ctx.agent_id:
            store.adjust_relationship(ctx.agent_id, str(post["author_id"]), 0.5)
        return {"postId": post["id"], "liked": True, "likes": store.like_count(post["id"])}

    async def comment(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        post = require_post(str(args["postId"]))
        row = comment_on(post, ctx, _text(args))
        return {"postId": post["id"], "commentId": row["id"]}

    async def create_post(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        community_id = args.get("communityId")
        if community_id and store.get_community(str(community_id)) is None:
            raise EntityNotFoundError(f"community {community_id} not found")
        post = store.add_post(ctx.agent_id, _text(args), community_id=community_id)
        return {"postId": post["id"]}

    async def follow(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        user = require_user(str(args["userId"]))
        if user["id"] == ctx.agent_id:
            raise ToolValidationError("cannot follow yourself")
        if not store.add_follow(ctx.agent_id, user["id"]):
            return {"userId": user["id"], "following": True, "changed": False}
        store.adjust_relationship(ctx.agent_id, user["id"], 2.0)
        notifier.notify(user["id"], "follow", "You have a new follower", metadata={"followerId": ctx.agent_id})
        return {"userId": user["id"], "following": True}

    async def join_community(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        community = store.get_community(str(args["communityId"]))
        if community is None:
            raise EntityNotFoundError(f"community {args['communityId']} not found")
        joined = store.join_community(ctx.agent_id, community["id"])
        return {"communityId": community["id"], "member": True, "changed": joined}

    async def leave_community(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        community_id = str(args["communityId"])
        if store.get_community(community_id) is None:
            raise EntityNotFoundError(f"community {community_id} not found")
        left = store.leave_community(ctx.agent_id, community_id)
        return {"communityId": community_id, "member": False, "changed": left}

    async def reply(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        # Always the conversation bound to this cycle; any id the model supplies is ignored.
        if not ctx.conversation_id:
            raise ToolValidationError("reply needs a conversation bound to the current event")
        conv = store.get_conversation(ctx.conversation_id)
        if conv is None:
            raise EntityNotFoundError(f"conversation {ctx.conversation_id} not found")
        if ctx.agent_id not in conv.get("participants", []):
            raise ToolValidationError(f"agent {ctx.agent_id} is not part of conversation {conv['id']}")
        msg = store.add_message(conv["id"], ctx.agent_id, _text(args))
        for other in conv["participants"]:
            if other != ctx.agent_id:
                notifier.notify(other, "message", "New reply", msg["content"][:140], {"conversationId": conv["id"]})
        return {"conversationId": conv["id"], "messageId": msg["id"]}

    async def send_message(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        recipient = require_user(str(args["userId"]))
        if recipient["id"] == ctx.agent_id:
            raise ToolValidationError("cannot message yourself")
        conv, created = store.get_or_create_conversation(ctx.agent_id, recipient["id"])
        msg = store.add_message(conv["id"], ctx.agent_id, _text(args))
        notifier.notify(recipient["id"], "message", "New message", msg["content"][:140], {"conversationId": conv["id"]})
        return {"conversationId": conv["id"], "messageId": msg["id"], "newConversation": created}

    async def decline(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        requester = requester_of(args, ctx)
        kind = str(args.get("requestKind") or ctx.metadata.get("requestKind") or "general")
        level = args.get("level")
        if level is None:
            level = int(escalation_level(
                escalation.count_similar_requests(ctx.agent_id, requester, kind).persistence_level
            )) if requester else 1
        level = max(1, min(3, int(level)))
        delivered = respond(ctx, requester, _text(args, "message"))
        store.record_agent_action(ctx.agent_id, "decline", requester, {"level": level, "requestKind": kind, **delivered})
        if requester:
            store.adjust_relationship(ctx.agent_id, requester, -1.0 * level)
        return {"declined": True, "level": level, **delivered}

    async def ignore(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        requester = requester_of(args, ctx)
        kind = str(args.get("requestKind") or ctx.metadata.get("requestKind") or "general")
        delivered: Dict[str, Any] = {}
        if args.get("sendResponse"):
            delivered = respond(ctx, requester, _text(args, "message"))
        store.record_agent_action(
            ctx.agent_id, "ignore", requester,
            {"requestKind": kind, "reason": str(args.get("reason") or "")[:200], **delivered},
        )
        return {"ignored": True, "responded": bool(delivered), **delivered}

    def require_community(community_id: str) -> dict:
        community = store.get_community(community_id)
        if community is None:
            raise EntityNotFoundError(f"community {community_id} not found")
        return community

    def stat(user: dict, key: str) -> float:
        return float(user.get(key, 0.0) or 0.0)

    async def send_group_message(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        group = store.get_group_conversation(str(args["groupConversationId"]))
        if group is None:
            raise EntityNotFoundError(f"group conversation {args['groupConversationId']} not found")
        if ctx.agent_id not in group.get("participants", []):
            raise ToolValidationError(f"agent {ctx.agent_id} is not a member of group {group['id']}")
        msg = store.add_group_message(group["id"], ctx.agent_id, _text(args), role="ai")
        return {"groupConversationId": group["id"], "messageId": msg["id"]}

    async def join_battle(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        battle = store.get_battle(str(args["battleId"]))
        if battle is None:
            raise EntityNotFoundError(f"battle {args['battleId']} not found")
        if battle.get("status") != "active":
            raise ToolValidationError(f"battle {battle['id']} is {battle.get('status')}")
        mine = store.user_communities(ctx.agent_id)
        if battle["attacker_community_id"] in mine:
            side = "attacker"
        elif battle["defender_community_id"] in mine:
            side = "defender"
        else:
            raise ToolValidationError("you are not a member of either side of this battle")
        amount = float(args["energyAmount"])
        if amount <= 0:
            raise ToolValidationError("energyAmount must be positive")
        me = require_user(ctx.agent_id)
        if stat(me, "energy") < amount:
            raise InsufficientResourcesError(f"insufficient energy: have {stat(me, 'energy'):g}, need {amount:g}")
        store.update_user_stats(ctx.agent_id, energy=stat(me, "energy") - amount)
        row = store.add_battle_participation(battle["id"], ctx.agent_id, side, amount)
        return {"battleId": battle["id"], "side": side, "participationId": row["id"], "energyContributed": amount}

    async def buy_item(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        name = str(args["itemName"])
        item = store.get_market_item(name)
        if item is None or not item.get("available"):
            raise EntityNotFoundError(f"item {name} not found in market")
        quantity = int(args["quantity"])
        if quantity < 1:
            raise ToolValidationError("quantity must be at least 1")
        cost = float(item["price"]) * quantity
        me = require_user(ctx.agent_id)
        if stat(me, "gold") < cost:
            raise InsufficientResourcesError(f"insufficient gold: have {stat(me, 'gold'):g}, need {cost:g}")
        store.update_user_stats(ctx.agent_id, gold=stat(me, "gold") - cost)
        held = store.adjust_inventory(ctx.agent_id, name, quantity)
        return {"itemName": name, "quantity": quantity, "cost": cost, "held": held}

    async def consume_item(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        name = str(args["itemName"])
        quantity = int(args["quantity"])
        if quantity < 1:
            raise ToolValidationError("quantity must be at least 1")
        held = store.inventory_quantity(ctx.agent_id, name)
        if held < quantity:
            raise InsufficientResourcesError(f"insufficient {name} in inventory: have {held}, need {quantity}")
        item = store.get_market_item(name)
        if item is None:
            raise EntityNotFoundError(f"item {name} not found")
        me = require_user(ctx.agent_id)
        effects = dict(item.get("effects") or {})
        updates = {
            key: min(STAT_CAP, stat(me, key) + float(effects[key]) * quantity)
            for key in ("energy", "health") if effects.get(key)
        }
        if updates:
            store.update_user_stats(ctx.agent_id, **updates)
        left = store.adjust_inventory(ctx.agent_id, name, -quantity)
        return {"itemName": name, "quantity": quantity, "effects": effects, "left": left, **updates}

    async def do_work(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        job_type = str(args["jobType"])
        pay, energy_cost = WORK_JOBS[job_type]
        me = require_user(ctx.agent_id)
        if stat(me, "energy") < energy_cost:
            raise InsufficientResourcesError(f"insufficient energy: have {stat(me, 'energy'):g}, need {energy_cost:g}")
        store.update_user_stats(ctx.agent_id, energy=stat(me, "energy") - energy_cost, gold=stat(me, "gold") + pay)
        return {"jobType": job_type, "earned": pay, "energySpent": energy_cost}

    async def vote_on_proposal(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        proposal = store.get_proposal(str(args["proposalId"]))
        if proposal is None:
            raise EntityNotFoundError(f"proposal {args['proposalId']} not found")
        if proposal.get("status") != "active":
            raise ToolValidationError(f"proposal {proposal['id']} is {proposal.get('status')}")
        vote = str(args["vote"])
        previous = store.get_vote(proposal["id"], ctx.agent_id)
        if previous is not None and previous["vote"] == vote:
            return {"proposalId": proposal["id"], "vote": vote, "changed": False, "message": "already voted"}
        store.cast_vote(proposal["id"], ctx.agent_id, vote)
        if proposal.get("author_id") and proposal["author_id"] != ctx.agent_id and vote != "abstain":
            store.adjust_relationship(ctx.agent_id, str(proposal["author_id"]), 1.0 if vote == "yes" else -1.0)
        return {"proposalId": proposal["id"], "vote": vote, "updated": previous is not None, "tally": store.vote_tally(proposal["id"])}

    async def create_proposal(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        community = require_community(str(args["communityId"]))
        if ctx.agent_id not in store.community_members(community["id"]):
            raise ToolValidationError(f"only members of {community['id']} can propose laws there")
        proposal = store.add_proposal(community["id"], ctx.agent_id, _text(args, "title")[:200], _text(args, "description"))
        for member in store.community_members(community["id"]):
            if member != ctx.agent_id:
                notifier.notify(member, "proposal", "New proposal", proposal["title"], {"proposalId": proposal["id"]})
        return {"proposalId": proposal["id"], "communityId": community["id"]}

    post_param = {"postId": {"type": "string", "description": "Post id"}}
    content_param = {"content": {"type": "string", "description": "Text to publish"}}
    community_param = {"communityId": {"type": "string", "description": "Community id"}}
    item_props = {
        "itemName": {"type": "string", "description": "Market item name"},
        "quantity": {"type": "integer", "description": "How many"},
    }
    refusal_props = {
        "message": {"type": "string", "description": "What you say to the requester"},
        "requestKind": {"type": "string", "description": "Kind of request being refused"},
        "userId": {"type": "string", "description": "Requester id when not implied by the event"},
    }
    return [
        ToolDefinition("like", "action", "Like a post.", _schema(dict(post_param), ["postId"]), like),
        ToolDefinition(
            "comment", "action", "Comment on a post.",
            _schema({**post_param, **content_param}, ["postId", "content"]), comment,
        ),
        ToolDefinition(
            "create_post", "action", "Publish a new post to the feed or a community.",
            _schema({**content_param, **community_param}, ["content"]), create_post,
        ),
        ToolDefinition(
            "follow", "action", "Follow another user.",
            _schema({"userId": {"type": "string", "description": "User to follow"}}, ["userId"]), follow,
        ),
        ToolDefinition("join_community", "action", "Join a community.", _schema(dict(community_param), ["communityId"]), join_community),
        ToolDefinition("leave_community", "action", "Leave a community.", _schema(dict(community_param), ["communityId"]), leave_community),
        ToolDefinition(
            "reply", "action", "Reply in the current private conversation.",
            _schema(dict(content_param), ["content"]), reply,
        ),
        ToolDefinition(
            "send_message", "action", "Send a private message, opening a conversation if needed.",
            _schema({"userId": {"type": "string", "description": "Recipient id"}, **content_param}, ["userId", "content"]),
            send_message,
        ),
        ToolDefinition(
            "decline", "action",
            "Refuse a request with a visible answer. Level 1 polite, 2 firm, 3 harsh; defaults from the requester's history.",
            _schema({**refusal_props, "level": {"type": "integer", "description": "1 polite, 2 firm, 3 harsh"}}, ["message"]),
            decline,
        ),
        ToolDefinition(
            "ignore", "action", "Ignore a request. Optionally answer anyway.",
            _schema({
                **refusal_props,
                "reason": {"type": "string", "description": "Private note on why"},
                "sendResponse": {"type": "boolean", "description": "Also send `message` to the requester"},
            }, []),
            ignore,
        ),
        ToolDefinition(
            "send_group_message", "action", "Post a message to a group chat you belong to.",
            _schema({"groupConversationId": {"type": "string", "description": "Group conversation id"}, **content_param},
                    ["groupConversationId", "content"]),
            send_group_message,
        ),
        ToolDefinition(
            "join_battle", "action", "Fight for your community's side in a battle, spending energy as damage.",
            _schema({
                "battleId": {"type": "string", "description": "Battle id"},
                "energyAmount": {"type": "number", "description": "Energy to spend"},
            }, ["battleId", "energyAmount"]),
            join_battle,
        ),
        ToolDefinition(
            "buy_item", "action", "Buy an item from the market with gold.",
            _schema({**item_props}, ["itemName", "quantity"]), buy_item,
        ),
        ToolDefinition(
            "consume_item", "action", "Use items from your inventory, e.g. eat food to restore energy.",
            _schema({**item_props}, ["itemName", "quantity"]), consume_item,
        ),
        ToolDefinition(
            "do_work", "action", "Work a job: mining, farming or trading earn gold and cost energy.",
            _schema({"jobType": {"type": "string", "enum": sorted(WORK_JOBS), "description": "Job to do"}}, ["jobType"]),
            do_work,
        ),
        ToolDefinition(
            "vote_on_proposal", "action", "Vote yes, no or abstain on a governance proposal.",
            _schema({
                "proposalId": {"type": "string", "description": "Proposal id"},
                "vote": {"type": "string", "enum": ["yes", "no", "abstain"], "description": "Your vote"},
            }, ["proposalId", "vote"]),
            vote_on_proposal,
        ),
        ToolDefinition(
            "create_proposal", "action", "Propose a law in a community you belong to.",
            _schema({
                "title": {"type": "string", "description": "Short title"},
                "description": {"type": "string", "description": "What the law does"},
                **community_param,
            }, ["title", "description", "communityId"]),
            create_proposal,
        ),
    ]
