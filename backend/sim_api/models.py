"""
Pydantic models for API requests.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CronTriggerRequest(BaseModel):
    workflow: str = "agent.cycle"
    requested_by: Optional[str] = None


class ChatTriggerRequest(BaseModel):
    agent_id: str
    sender_id: str
    message: str = Field(min_length=1, max_length=4000)
    get_history: bool = False


class CommentTriggerRequest(BaseModel):
    agent_id: str
    post_id: str
    commenter_id: str
    content: str = Field(min_length=1, max_length=4000)
    comment_id: Optional[str] = None


class MentionTriggerRequest(BaseModel):
    agent_id: str
    mentioner_id: str
    content: str = Field(min_length=1, max_length=4000)
    post_id: Optional[str] = None
    conversation_id: Optional[str] = None


class GroupMessageTriggerRequest(BaseModel):
    group_id: str
    sender_id: str
    content: str = Field(min_length=1, max_length=4000)


class EventTriggerRequest(BaseModel):
    event_type: str
    context: Dict[str, Any] = Field(default_factory=dict)


class PauseRequest(BaseModel):
    minutes: Optional[float] = Field(default=None, gt=0)
    reason: str = ""


class BudgetRequest(BaseModel):
    daily_token_limit: Optional[int] = Field(default=None, ge=0)
    reset_usage: bool = False


class UpsertUserRequest(BaseModel):
    user_id: str
    username: str
    display_name: str = ""
    persona: str = ""
    is_agent: bool = True
    is_active: bool = True


class CreatePostRequest(BaseModel):
    author_id: str
    content: str = Field(min_length=1, max_length=4000)
    post_id: Optional[str] = None
    community_id: Optional[str] = None
