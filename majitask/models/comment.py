"""Comment models - notes attached to exactly one task."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_validator

from majitask.models.task import CamelModel, ensure_utc


class CommentType(str, Enum):
    """Comment kinds."""
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"
    SYSTEM = "system"


class Comment(CamelModel):
    """Comment on a task."""
    id: str
    task_id: str
    user_id: Optional[str] = None
    body: str = Field(..., min_length=1, max_length=2000)
    comment_type: CommentType = CommentType.COMMENT
    metadata: Optional[dict[str, Any]] = None
    is_edited: bool = False
    created_at: datetime
    updated_at: datetime
    user_name: Optional[str] = None
    user_email: Optional[str] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CommentCreate(CamelModel):
    """Payload for POST /tasks/:id/comments."""
    body: str = Field(..., min_length=1, max_length=2000)
    comment_type: CommentType = CommentType.COMMENT
