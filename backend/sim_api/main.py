"""
FastAPI app: trigger surface for the agent decision engine.

Route modules live in sim_api/routes; process-wide state in sim_api/state.
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent_engine.config import SCHEDULER_ENABLED
from agent_engine.config import validate_config as validate_engine_config
from sim_api import state
from sim_api.config import BACKEND_VERSION, CORS_ALLOW_ORIGINS, LOG_LEVEL, SHUTDOWN_DRAIN_SECONDS, validate_config
from sim_api.routes import register_routes

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
_log = logging.getLogger(__name__)

_started_at = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_config()
    validate_engine_config()
    rt = state.runtime
    rt.registry.verify()
    if SCHEDULER_ENABLED:
        rt.scheduler.start()
    else:
        _log.info("scheduler disabled; workflows run only via /triggers/cron or admin")
    yield
    await rt.scheduler.stop()
    pending = await rt.supervisor.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    if pending:
        _log.warning("shutdown: %s mention workflow(s) still running; cancelling", pending)
        await rt.supervisor.cancel_all()


app = FastAPI(title="Agent World Engine", version=BACKEND_VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_routes(app)


@app.get("/health")
def health():
    rt = state.runtime
    return {
        "ok": True,
        "version": BACKEND_VERSION,
        "uptime_seconds": round(time.time() - _started_at, 1),
        "tools": len(rt.registry.names()),
        "tracing": rt.tracer.enabled,
        "scheduler_running": rt.scheduler.running,
        "simulation_active": rt.control.is_simulation_active(),
    }
