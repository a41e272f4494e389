"""
Read-only tools used by the Observe step.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from agent_engine.errors import EntityNotFoundError, ToolValidationError
from agent_engine.escalation import EscalationTracker
from agent_engine.memory import MemoryManager
from agent_engine.models import ToolDefinition, ToolExecutionContext
from agent_engine.store import WorldStore


def _public_profile(user: dict) -> dict:
    return {
        "id": user["id"],
        "username": user.get("username"),
        "displayName": user.get("display_name"),
        "isAgent": bool(user.get("is_agent")),
        "persona": user.get("persona", ""),
    }


def _clamp_limit(value: Any, default: int, hi: int = 50) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(n, hi))


def _community_summary(community: dict) -> dict:
    return {
        "id": community["id"],
        "name": community.get("name"),
        "ideology": community.get("ideology"),
        "description": community.get("description", ""),
    }


def _battle_summary(battle: dict) -> dict:
    return {
        "id": battle["id"],
        "status": battle.get("status"),
        "attackerCommunityId": battle.get("attacker_community_id"),
        "defenderCommunityId": battle.get("defender_community_id"),
        "attackerDamage": battle.get("attacker_damage", 0.0),
        "defenderDamage": battle.get("defender_damage", 0.0),
    }


def build_data_tools(store: WorldStore, escalation: EscalationTracker, memory: MemoryManager) -> List[ToolDefinition]:
    async def get_my_stats(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        me = store.get_user(ctx.agent_id)
        if me is None:
            raise EntityNotFoundError(f"agent {ctx.agent_id} not found")
        return {
            **_public_profile(me),
            "followers": store.follower_count(ctx.agent_id),
            "following": store.following_count(ctx.agent_id),
            "communities": store.user_communities(ctx.agent_id),
            "posts": sum(1 for p in store.posts.values() if p.get("author_id") == ctx.agent_id),
        }

    async def get_user_profile(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        user = store.get_user(str(args["userId"]))
        if user is None:
            raise EntityNotFoundError(f"user {args['userId']} not found")
        return {
            **_public_profile(user),
            "followers": store.follower_count(user["id"]),
            "communities": store.user_communities(user["id"]),
        }

    async def check_relationship(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        other = str(args["userId"])
        if store.get_user(other) is None:
            raise EntityNotFoundError(f"user {other} not found")
        rel = store.get_relationship(ctx.agent_id, other) or {}
        return {
            "userId": other,
            "score": float(rel.get("score", 0.0)),
            "interactions": int(rel.get("interactions", 0)),
            "iFollow": store.is_following(ctx.agent_id, other),
            "followsMe": store.is_following(other, ctx.agent_id),
        }

    async def check_request_persistence(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        window = args.get("windowHours")
        report = escalation.count_similar_requests(
            ctx.agent_id,
            str(args["userId"]),
            str(args.get("requestKind") or "general"),
            float(window) if window is not None else None,
        )
        return report.to_dict()

    async def get_post_details(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        post = store.get_post(str(args["postId"]))
        if post is None:
            raise EntityNotFoundError(f"post {args['postId']} not found")
        author = store.get_user(str(post.get("author_id") or "")) or {}
        return {
            "id": post["id"],
            "content": post.get("content"),
            "authorId": post.get("author_id"),
            "authorUsername": author.get("username"),
            "communityId": post.get("community_id"),
            "likes": store.like_count(post["id"]),
            "likedByMe": (post["id"], ctx.agent_id) in store.likes,
            "comments": [
                {"id": c["id"], "authorId": c["author_id"], "content": c["content"]}
                for c in store.list_comments(post["id"])[-10:]
            ],
        }

    async def get_recent_posts(args: Dict[str, Any], ctx: ToolExecutionContext) -> List[dict]:
        limit = _clamp_limit(args.get("limit"), 10)
        rows = store.list_posts(limit=limit, community_id=args.get("communityId"))
        return [
            {
                "id": p["id"],
                "authorId": p.get("author_id"),
                "content": str(p.get("content") or "")[:280],
                "likes": store.like_count(p["id"]),
                "likedByMe": (p["id"], ctx.agent_id) in store.likes,
            }
            for p in rows
        ]

    async def get_conversation_history(args: Dict[str, Any], ctx: ToolExecutionContext) -> List[dict]:
        conversation_id = ctx.conversation_id or args.get("conversationId")
        if not conversation_id:
            raise ToolValidationError("get_conversation_history: no conversation in context")
        conv = store.get_conversation(str(conversation_id))
        if conv is None:
            raise EntityNotFoundError(f"conversation {conversation_id} not found")
        limit = _clamp_limit(args.get("limit"), 20)
        return [
            {"senderId": m["sender_id"], "content": m["content"], "createdAt": m["created_at"]}
            for m in store.list_messages(conv["id"], limit=limit)
        ]

    async def get_user_community(args: Dict[str, Any], ctx: ToolExecutionContext) -> Optional[dict]:
        user_id = str(args["userId"])
        if store.get_user(user_id) is None:
            raise EntityNotFoundError(f"user {user_id} not found")
        for community_id in store.user_communities(user_id):
            community = store.get_community(community_id)
            if community is not None:
                return _community_summary(community)
        return None

    async def get_community_details(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        community = store.get_community(str(args["communityId"]))
        if community is None:
            raise EntityNotFoundError(f"community {args['communityId']} not found")
        members = store.community_members(community["id"])
        return {
            **_community_summary(community),
            "memberCount": len(members),
            "iAmMember": ctx.agent_id in members,
            "activeBattles": len(store.list_battles(community["id"])),
            "activeProposals": len(store.list_proposals(community["id"])),
        }

    async def get_active_battles(args: Dict[str, Any], ctx: ToolExecutionContext) -> List[dict]:
        community_id = args.get("communityId")
        if community_id and store.get_community(str(community_id)) is None:
            raise EntityNotFoundError(f"community {community_id} not found")
        return [_battle_summary(b) for b in store.list_battles(str(community_id) if community_id else None)]

    async def get_battle_details(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        battle = store.get_battle(str(args["battleId"]))
        if battle is None:
            raise EntityNotFoundError(f"battle {args['battleId']} not found")
        participants = store.list_battle_participants(battle["id"])
        mine = store.user_communities(ctx.agent_id)
        side = None
        if battle["attacker_community_id"] in mine:
            side = "attacker"
        elif battle["defender_community_id"] in mine:
            side = "defender"
        return {
            **_battle_summary(battle),
            "participants": len(participants),
            "joinedByMe": any(p["user_id"] == ctx.agent_id for p in participants),
            "mySide": side,
        }

    async def get_market_items(args: Dict[str, Any], ctx: ToolExecutionContext) -> List[dict]:
        return [
            {"name": i["name"], "price": i["price"], "effects": dict(i.get("effects") or {})}
            for i in store.list_market_items()
        ]

    async def get_my_inventory(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        me = store.get_user(ctx.agent_id) or {}
        return {
            "gold": float(me.get("gold", 0.0)),
            "energy": float(me.get("energy", 0.0)),
            "health": float(me.get("health", 0.0)),
            "items": [{"name": r["item_name"], "quantity": r["quantity"]} for r in store.list_inventory(ctx.agent_id)],
        }

    async def get_active_proposals(args: Dict[str, Any], ctx: ToolExecutionContext) -> List[dict]:
        community_id = str(args["communityId"])
        if store.get_community(community_id) is None:
            raise EntityNotFoundError(f"community {community_id} not found")
        out = []
        for p in store.list_proposals(community_id):
            vote = store.get_vote(p["id"], ctx.agent_id)
            out.append({
                "id": p["id"],
                "title": p["title"],
                "description": str(p.get("description") or "")[:500],
                "authorId": p["author_id"],
                "tally": store.vote_tally(p["id"]),
                "myVote": vote["vote"] if vote else None,
            })
        return out

    async def get_group_chat_history(args: Dict[str, Any], ctx: ToolExecutionContext) -> dict:
        group = store.get_group_conversation(str(args["groupConversationId"]))
        if group is None:
            raise EntityNotFoundError(f"group conversation {args['groupConversationId']} not found")
        limit = _clamp_limit(args.get("limit"), 10)
        return {
            "groupConversationId": group["id"],
            "name": group.get("name"),
            "participants": list(group.get("participants", [])),
            "messages": [
                {"userId": m["user_id"], "content": m["content"], "role": m.get("role"), "createdAt": m["created_at"]}
                for m in store.list_group_messages(group["id"], limit=limit)
            ],
        }

    async def search_memories(args: Dict[str, Any], ctx: ToolExecutionContext) -> List[dict]:
        hits = memory.search(
            ctx.agent_id,
            str(args.get("query") or ""),
            about_user_id=args.get("aboutUserId"),
            limit=_clamp_limit(args.get("limit"), 5, hi=20),
        )
        return [
            {"content": m["content"], "type": m.get("memory_type"), "importance": m.get("importance"), "createdAt": m["created_at"]}
            for m in hits
        ]

    user_param = {"userId": {"type": "string", "description": "Id of the other user"}}
    community_param = {"communityId": {"type": "string", "description": "Community id"}}
    return [
        ToolDefinition(
            name="get_my_stats",
            category="data",
            description="Your own profile, follower counts and community memberships.",
            parameters={"type": "object", "properties": {}, "required": []},
            handler=get_my_stats,
        ),
        ToolDefinition(
            name="get_user_profile",
            category="data",
            description="Public profile of another user.",
            parameters={"type": "object", "properties": dict(user_param), "required": ["userId"]},
            handler=get_user_profile,
        ),
        ToolDefinition(
            name="check_relationship",
            category="data",
            description="Relationship score and follow status between you and another user.",
            parameters={"type": "object", "properties": dict(user_param), "required": ["userId"]},
            handler=check_relationship,
        ),
        ToolDefinition(
            name="check_request_persistence",
            category="data",
            description="How often a user repeated a request and how often you already refused it.",
            parameters={
                "type": "object",
                "properties": {
                    **user_param,
                    "requestKind": {"type": "string", "description": "Kind of request, e.g. join_community, money"},
                    "windowHours": {"type": "number", "description": "Look-back window in hours"},
                },
                "required": ["userId"],
            },
            handler=check_request_persistence,
        ),
        ToolDefinition(
            name="get_post_details",
            category="data",
            description="A post with its author, like count and latest comments.",
            parameters={
                "type": "object",
                "properties": {"postId": {"type": "string", "description": "Post id"}},
                "required": ["postId"],
            },
            handler=get_post_details,
        ),
        ToolDefinition(
            name="get_recent_posts",
            category="data",
            description="Newest posts in the feed, optionally within one community.",
            parameters={
                "type": "object",
                "properties": {
                    "limit": {"type": "integer", "description": "Max posts (1-50)"},
                    "communityId": {"type": "string", "description": "Only posts from this community"},
                },
                "required": [],
            },
            handler=get_recent_posts,
        ),
        ToolDefinition(
            name="get_conversation_history",
            category="data",
            description="Latest messages of the current private conversation.",
            parameters={
                "type": "object",
                "properties": {"limit": {"type": "integer", "description": "Max messages (1-50)"}},
                "required": [],
            },
            handler=get_conversation_history,
        ),
        ToolDefinition(
            name="get_user_community",
            category="data",
            description="The first community a user belongs to, or null.",
            parameters={"type": "object", "properties": dict(user_param), "required": ["userId"]},
            handler=get_user_community,
        ),
        ToolDefinition(
            name="get_community_details",
            category="data",
            description="A community with its member count and open battles and proposals.",
            parameters={"type": "object", "properties": dict(community_param), "required": ["communityId"]},
            handler=get_community_details,
        ),
        ToolDefinition(
            name="get_active_battles",
            category="data",
            description="Active battles, optionally only those involving one community.",
            parameters={"type": "object", "properties": dict(community_param), "required": []},
            handler=get_active_battles,
        ),
        ToolDefinition(
            name="get_battle_details",
            category="data",
            description="One battle with damage totals, participant count and your side.",
            parameters={
                "type": "object",
                "properties": {"battleId": {"type": "string", "description": "Battle id"}},
                "required": ["battleId"],
            },
            handler=get_battle_details,
        ),
        ToolDefinition(
            name="get_market_items",
            category="data",
            description="Items for sale with prices and effects.",
            parameters={"type": "object", "properties": {}, "required": []},
            handler=get_market_items,
        ),
        ToolDefinition(
            name="get_my_inventory",
            category="data",
            description="Your gold, energy, health and items.",
            parameters={"type": "object", "properties": {}, "required": []},
            handler=get_my_inventory,
        ),
        ToolDefinition(
            name="get_active_proposals",
            category="data",
            description="Open governance proposals of a community with the current tally and your vote.",
            parameters={"type": "object", "properties": dict(community_param), "required": ["communityId"]},
            handler=get_active_proposals,
        ),
        ToolDefinition(
            name="get_group_chat_history",
            category="data",
            description="Latest messages of a group chat.",
            parameters={
                "type": "object",
                "properties": {
                    "groupConversationId": {"type": "string", "description": "Group conversation id"},
                    "limit": {"type": "integer", "description": "Max messages (1-50)"},
                },
                "required": ["groupConversationId"],
            },
            handler=get_group_chat_history,
        ),
        ToolDefinition(
            name="search_memories",
            category="data",
            description="Your memories matching all words of a query, most important first.",
            parameters={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Words to look for"},
                    "aboutUserId": {"type": "string", "description": "Only memories about this user"},
                    "limit": {"type": "integer", "description": "Max memories (1-20)"},
                },
                "required": [],
            },
            handler=search_memories,
        ),
    ]
