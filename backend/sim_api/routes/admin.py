"""Routes: admin endpoints (simulation control, workflow jobs, heat, world seeding)."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from agent_engine.scheduler import WORKFLOW_KEYS
from sim_api import state
from sim_api.auth import ensure_admin
from sim_api.models import BudgetRequest, CreatePostRequest, PauseRequest, UpsertUserRequest

_log = logging.getLogger(__name__)
router = APIRouter()


@router.get("/admin/simulation")
def simulation_status(request: Request):
    ensure_admin(request)
    rt = state.runtime
    return {
        "control": rt.control.snapshot(),
        "scheduler_running": rt.scheduler.running,
        "pending_mentions": rt.supervisor.pending,
        "failed_mentions": rt.supervisor.failed,
    }


@router.post("/admin/simulation/pause")
def simulation_pause(req: PauseRequest, request: Request):
    ensure_admin(request)
    return {"ok": True, "control": state.runtime.control.pause(req.minutes, req.reason)}


@router.post("/admin/simulation/resume")
def simulation_resume(request: Request):
    ensure_admin(request)
    return {"ok": True, "control": state.runtime.control.resume()}


@router.post("/admin/simulation/budget")
def simulation_budget(req: BudgetRequest, request: Request):
    ensure_admin(request)
    control = state.runtime.control
    used = None
    if req.reset_usage:
        used = control.reset_daily_tokens()
    if req.daily_token_limit is not None:
        control.set_daily_limit(req.daily_token_limit)
    return {"ok": True, "tokens_used_before": used, "control": control.snapshot()}


@router.get("/admin/workflows")
def workflow_jobs(request: Request):
    ensure_admin(request)
    sched = state.runtime.scheduler
    return {"running": sched.running, "workflows": list(WORKFLOW_KEYS), "jobs": sched.status()}


@router.get("/admin/workflows/runs")
def workflow_runs(request: Request, limit: int = 50, workflow: Optional[str] = None):
    ensure_admin(request)
    limit = max(1, min(limit, 500))
    return {"runs": state.store.list_workflow_runs(limit=limit, workflow_key=workflow)}


@router.post("/admin/workflows/{key}/run")
async def workflow_run(key: str, request: Request):
    ensure_admin(request)
    if key not in WORKFLOW_KEYS:
        raise HTTPException(status_code=404, detail=f"unknown workflow {key}")
    result = await state.runtime.scheduler.trigger_job(key, requested_by="admin", trigger="manual")
    return {
        "success": result.success,
        "workflow": key,
        "status": result.status,
        "message": result.message,
        "duration_ms": round(result.duration_ms, 1),
        "data": result.data,
        "error": result.error,
    }


@router.get("/admin/heat/{actor_id}")
def actor_heat(actor_id: str, request: Request, action: Optional[str] = None):
    ensure_admin(request)
    check = state.runtime.heat.check_heat(actor_id, action)
    return {
        "actor_id": actor_id,
        "action": action,
        "allowed": check.allowed,
        "current_heat": check.current_heat,
        "cost": check.cost,
        "cooldown_minutes": check.cooldown_minutes,
        "max_heat": state.runtime.heat.max_heat,
    }


@router.post("/admin/users")
def upsert_user(req: UpsertUserRequest, request: Request):
    ensure_admin(request)
    row = state.store.upsert_user(
        req.user_id, req.username,
        is_agent=req.is_agent, is_active=req.is_active,
        display_name=req.display_name, persona=req.persona,
    )
    _log.info("user upserted id=%s agent=%s", row["id"], row["is_agent"])
    return {"ok": True, "user": row}


@router.post("/admin/posts")
def create_post(req: CreatePostRequest, request: Request):
    ensure_admin(request)
    if state.store.get_user(req.author_id) is None:
        raise HTTPException(status_code=404, detail=f"user {req.author_id} not found")
    post = state.store.add_post(req.author_id, req.content, post_id=req.post_id, community_id=req.community_id)
    return {"ok": True, "post": post}
