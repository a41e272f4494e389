"""
Centralized backend configuration: environment variables and paths.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

_log = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("DATA_DIR", "/app/data")).resolve()
DATA_DIR.mkdir(parents=True, exist_ok=True)
WORKFLOW_RUNS_PATH = DATA_DIR / "workflow_runs.jsonl"

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "").strip()
CRON_SECRET = os.getenv("CRON_SECRET", "").strip()
USER_TOKENS_PATH = os.getenv("USER_TOKENS_PATH", "").strip()
CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
SHUTDOWN_DRAIN_SECONDS = float(os.getenv("SHUTDOWN_DRAIN_SECONDS", "10"))

BACKEND_VERSION = "1.0.0"


def validate_config() -> None:
    """Log warnings for missing/insecure configuration. Called once at startup."""
    if not ADMIN_TOKEN:
        _log.warning(
            "ADMIN_TOKEN is empty; admin endpoints are UNPROTECTED. "
            "Set ADMIN_TOKEN env var in production."
        )
    if not CRON_SECRET:
        _log.warning(
            "CRON_SECRET is empty; POST /triggers/cron accepts any caller. "
            "Set CRON_SECRET env var in production."
        )
    if not ADMIN_TOKEN and not CRON_SECRET and not USER_TOKENS_PATH:
        _log.warning("No ADMIN_TOKEN, CRON_SECRET or USER_TOKENS_PATH; event triggers accept any caller.")
    elif USER_TOKENS_PATH and not Path(USER_TOKENS_PATH).exists():
        _log.warning("USER_TOKENS_PATH is set to %s but the file does not exist; user tokens are disabled.", USER_TOKENS_PATH)
    if "*" in CORS_ALLOW_ORIGINS:
        _log.info("CORS_ALLOW_ORIGINS=* ; any origin may call the API from a browser.")
