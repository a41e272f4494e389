"""
Authentication helpers: admin bearer token, the cron shared secret and per-user
bearer tokens for event triggers.
"""
from __future__ import annotations

import hmac
import json
import logging
from pathlib import Path
from typing import Optional

from fastapi import HTTPException, Request

from sim_api.config import ADMIN_TOKEN, CRON_SECRET, USER_TOKENS_PATH

_log = logging.getLogger(__name__)

_cached_user_tokens: Optional[dict] = None
_cached_user_tokens_mtime: float = 0.0


def _bearer(request: Request) -> str:
    auth = (request.headers.get("authorization") or "").strip()
    return auth[7:].strip() if auth.lower().startswith("bearer ") else ""


def _matches(supplied: str, secret: str) -> bool:
    return bool(secret) and bool(supplied) and hmac.compare_digest(supplied.encode(), secret.encode())


def _load_user_tokens() -> dict:
    """{token: user_id} from USER_TOKENS_PATH, re-read when the file changes."""
    global _cached_user_tokens, _cached_user_tokens_mtime
    if not USER_TOKENS_PATH:
        return {}
    p = Path(USER_TOKENS_PATH)
    try:
        if not p.exists():
            return {}
        mtime = p.stat().st_mtime
        if _cached_user_tokens is not None and mtime == _cached_user_tokens_mtime:
            return _cached_user_tokens
        data = json.loads(p.read_text(encoding="utf-8", errors="replace") or "{}")
    except (OSError, ValueError):
        _log.warning("could not read user tokens from %s", p, exc_info=True)
        return {}
    if not isinstance(data, dict):
        _log.warning("user tokens file %s is not a JSON object", p)
        return {}
    _cached_user_tokens = {str(k): str(v) for k, v in data.items()}
    _cached_user_tokens_mtime = mtime
    return _cached_user_tokens


def require_admin(request: Request) -> bool:
    if not ADMIN_TOKEN:
        return True
    return hmac.compare_digest(_bearer(request).encode(), ADMIN_TOKEN.encode())


def require_cron_secret(request: Request) -> bool:
    """Accept `Authorization: Bearer <secret>` or `x-cron-secret: <secret>`."""
    if not CRON_SECRET:
        return True
    supplied = _bearer(request) or (request.headers.get("x-cron-secret") or "").strip()
    return hmac.compare_digest(supplied.encode(), CRON_SECRET.encode())


def ensure_admin(request: Request) -> None:
    if not require_admin(request):
        raise HTTPException(status_code=401, detail="unauthorized")


def user_from_auth(request: Request) -> Optional[str]:
    """
    Map Authorization: Bearer <token> to a user id.
    Returns None if no user tokens are configured, "" if auth fails, user_id if ok.
    """
    tokens = _load_user_tokens()
    if not tokens:
        return None
    token = _bearer(request)
    return tokens.get(token, "") if token else ""


def trigger_caller(request: Request) -> Optional[str]:
    """
    Authenticate an event trigger call.

    The admin token or cron secret identify a trusted service and return None: the
    request body names the acting user. A user token returns that user's id. With
    no credentials configured at all every caller is accepted as a service.
    """
    bearer = _bearer(request)
    if _matches(bearer, ADMIN_TOKEN) or _matches(bearer or (request.headers.get("x-cron-secret") or "").strip(), CRON_SECRET):
        return None
    user_id = user_from_auth(request)
    if user_id:
        return user_id
    if user_id is None and not ADMIN_TOKEN and not CRON_SECRET:
        return None
    _log.warning("trigger rejected: bad credentials path=%s", request.url.path)
    raise HTTPException(status_code=401, detail="unauthorized")


def ensure_acting_user(caller: Optional[str], user_id: str) -> None:
    """A user token may only act as its own user."""
    if caller is not None and caller != user_id:
        raise HTTPException(status_code=403, detail="token does not belong to this user")
