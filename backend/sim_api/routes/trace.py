"""Routes: recent trace runs kept in memory."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter

from sim_api import state

router = APIRouter()


@router.get("/trace/recent")
def trace_recent(limit: int = 50, trace_id: Optional[str] = None):
    limit = max(1, min(limit, 300))
    if state.trace_buffer is None:
        return {"enabled": False, "runs": []}
    return {"enabled": True, "runs": state.trace_buffer.recent(limit=limit, trace_id=trace_id)}
