"""
Notification emission for user-visible agent actions. Best-effort: a failed
notification is logged and never unwinds the action that caused it.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from agent_engine.store import WorldStore
from agent_engine.utils import extract_mentions

_log = logging.getLogger(__name__)


class Notifier:
    def __init__(self, store: WorldStore) -> None:
        self._store = store

    def notify(self, recipient_id: str, kind: str, title: str, body: str = "", metadata: Optional[dict] = None) -> bool:
        try:
            self._store.add_notification(recipient_id, kind, title, body, metadata)
            return True
        except Exception:
            _log.warning("notification failed recipient=%s kind=%s", recipient_id, kind, exc_info=True)
            return False

    def notify_comment(self, post: dict, comment: dict, actor_id: str) -> List[str]:
        """Notify the post owner and every @mentioned user, once each, never the commenter."""
        notified: List[str] = []
        try:
            actor = self._store.get_user(actor_id) or {}
            actor_name = actor.get("display_name") or actor.get("username") or actor_id
            owner_id = str(post.get("author_id") or "")
            preview = str(comment.get("content") or "")[:140]
            meta = {"postId": post.get("id"), "commentId": comment.get("id"), "actorId": actor_id}
            if owner_id and owner_id != actor_id:
                if self.notify(owner_id, "comment", f"{actor_name} commented on your post", preview, meta):
                    notified.append(owner_id)
            for username in extract_mentions(str(comment.get("content") or "")):
                user = self._store.find_user_by_username(username)
                if user is None:
                    continue
                uid = str(user["id"])
                if uid == actor_id or uid in notified:
                    continue
                if self.notify(uid, "mention", f"{actor_name} mentioned you in a comment", preview, meta):
                    notified.append(uid)
        except Exception:
            _log.warning("comment notifications failed post=%s", post.get("id"), exc_info=True)
        return notified
