"""Routes: cron and event triggers for the decision engine."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from agent_engine.scheduler import EVENT_DRIVEN_KEYS, WORKFLOW_KEYS
from sim_api import state
from sim_api.auth import ensure_acting_user, require_cron_secret, trigger_caller
from sim_api.models import (
    ChatTriggerRequest, CommentTriggerRequest, CronTriggerRequest, EventTriggerRequest,
    GroupMessageTriggerRequest, MentionTriggerRequest,
)

_log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/triggers/cron")
async def trigger_cron(request: Request, req: Optional[CronTriggerRequest] = None, workflow: Optional[str] = None):
    if not require_cron_secret(request):
        _log.warning("cron trigger rejected: bad secret client=%s", request.client.host if request.client else "")
        raise HTTPException(status_code=401, detail="unauthorized")
    key = (workflow or (req.workflow if req else "") or "agent.cycle").strip()
    if key not in WORKFLOW_KEYS or key in EVENT_DRIVEN_KEYS:
        return {"success": False, "error": f"unknown or event-driven workflow: {key}"}
    result = await state.runtime.scheduler.trigger_job(key, requested_by=req.requested_by if req else None, trigger="cron")
    data = dict(result.data)
    errors = list(data.get("errors") or [])
    if result.error:
        errors.append(result.error)
    return {
        "success": result.success,
        "workflow": key,
        "status": result.status,
        "message": result.message,
        "actions": list(data.get("actions") or []),
        "iterations": int(data.get("iterations") or 0),
        "duration_ms": round(result.duration_ms, 1),
        "errors": errors,
        "data": data,
    }


def _summary(result) -> dict:
    return {
        "success": result.success,
        "actions": result.executed_actions,
        "iterations": result.iterations,
        "duration_ms": result.elapsed_ms,
        "errors": result.errors,
    }


@router.post("/triggers/chat")
async def trigger_chat(req: ChatTriggerRequest, request: Request):
    ensure_acting_user(trigger_caller(request), req.sender_id)
    rt = state.runtime
    result = await rt.triggers.handle_chat_message(req.agent_id, req.sender_id, req.message)
    out = {
        **_summary(result),
        "conversation_id": result.conversation_id,
        "mentions_spawned": result.mentions_spawned,
    }
    if req.get_history and result.conversation_id:
        out["history"] = rt.store.list_messages(result.conversation_id, limit=20)
    return out


@router.post("/triggers/comment")
async def trigger_comment(req: CommentTriggerRequest, request: Request):
    ensure_acting_user(trigger_caller(request), req.commenter_id)
    result = await state.runtime.triggers.handle_comment_event(
        req.agent_id, req.post_id, req.commenter_id, req.content, comment_id=req.comment_id,
    )
    return _summary(result)


@router.post("/triggers/mention")
async def trigger_mention(req: MentionTriggerRequest, request: Request):
    ensure_acting_user(trigger_caller(request), req.mentioner_id)
    result = await state.runtime.triggers.handle_mention_event(
        req.agent_id, req.mentioner_id, req.content,
        post_id=req.post_id, conversation_id=req.conversation_id,
    )
    return _summary(result)


@router.post("/triggers/group")
async def trigger_group_message(req: GroupMessageTriggerRequest, request: Request):
    ensure_acting_user(trigger_caller(request), req.sender_id)
    result = await state.runtime.triggers.handle_group_message(req.group_id, req.sender_id, req.content)
    return {
        "success": result.success,
        "errors": result.errors,
        "message_id": result.message_id,
        "agents_spawned": result.agents_spawned,
    }


@router.post("/triggers/event")
async def trigger_event(req: EventTriggerRequest, request: Request):
    """Post, law proposal and battle events; only the admin token or cron secret may raise them."""
    if trigger_caller(request) is not None:
        raise HTTPException(status_code=403, detail="service credentials required")
    result = await state.runtime.triggers.handle_event(req.event_type, dict(req.context))
    return {
        **_summary(result),
        "mentions_spawned": result.mentions_spawned,
        "agents_spawned": result.agents_spawned,
    }
