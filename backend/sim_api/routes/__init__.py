"""
Register all route modules with the FastAPI app.
"""
from __future__ import annotations

from fastapi import FastAPI


def register_routes(app: FastAPI) -> None:
    from sim_api.routes import admin, trace, triggers

    app.include_router(triggers.router)
    app.include_router(admin.router)
    app.include_router(trace.router)
