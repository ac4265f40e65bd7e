"""Bulk sync models - candidates, per-row outcomes and worker status."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_validator

from majitask.models.task import DEFAULT_CATEGORY, CamelModel, TaskStatus, ensure_utc


class SyncCandidate(CamelModel):
    """One task offered to POST /tasks/sync/bulk."""
    id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: TaskStatus
    priority: int = Field(..., ge=1, le=4)
    category: str = Field(default=DEFAULT_CATEGORY, max_length=100)
    tags: Optional[list[str]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    time_spent: int = Field(default=0, ge=0)
    estimated_duration: Optional[int] = Field(None, gt=0)
    progress: int = Field(default=0, ge=0, le=100)

    @field_validator("created_at", "updated_at", "deadline", "completed_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @field_validator("time_spent", "progress", mode="before")
    @classmethod
    def _null_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class SyncError(CamelModel):
    """A row that could not be merged."""
    task: dict[str, Any]
    error: str


class SyncResult(CamelModel):
    """Outcome of one reconciliation pass. Never persisted."""
    imported: int = 0
    updated: int = 0
    unchanged: int = 0
    conflicts: list[str] = Field(default_factory=list)
    errors: list[SyncError] = Field(default_factory=list)

    @property
    def received(self) -> int:
        return self.imported + self.updated

    @property
    def has_changes(self) -> bool:
        return self.imported > 0 or self.updated > 0


class SyncState(str, Enum):
    """Background sync worker states."""
    CHECKING = "checking"
    SYNCED = "synced"
    OFFLINE = "offline"
    ERROR = "error"


class SyncStatus(CamelModel):
    """Status event published by the sync worker."""
    state: SyncState
    sent: int = 0
    received: int = 0
    conflicts: list[str] = Field(default_factory=list)
    timestamp: datetime
    error: Optional[str] = None
