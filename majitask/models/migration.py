"""Migration payload models - externally exported task collections."""

from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from majitask.models.sync import SyncCandidate
from majitask.models.task import CamelModel, ensure_utc


class ExportedTask(SyncCandidate):
    """An exported task after timestamp normalization.

    Hierarchy and counters are accepted so exports round-trip, but they are
    not imported.
    """
    parent_id: Optional[str] = None
    subtask_ids: Optional[list[str]] = None
    view_count: int = Field(default=0, ge=0)
    edit_count: int = Field(default=0, ge=0)


class MigrationMetadata(CamelModel):
    exported_at: Optional[datetime] = None
    version: Optional[str] = None
    user_agent: Optional[str] = None
    total_tasks: Optional[int] = Field(None, ge=0)

    @field_validator("exported_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class MigrationRequest(CamelModel):
    """Body of POST /migration/localstorage and /migration/preview."""
    tasks: list[Any]
    metadata: Optional[MigrationMetadata] = None
