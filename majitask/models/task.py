"""Task models shared by the local and remote adapters."""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from majitask.utils.errors import TaskValidationError


DEFAULT_CATEGORY = "General"
SORTABLE_FIELDS = ("created_at", "updated_at", "deadline", "priority", "title")
MAX_PAGE_LIMIT = 100

T = TypeVar("T")

_NON_NULLABLE_UPDATES = ("title", "status", "priority", "category")


M = TypeVar("M", bound=BaseModel)


def validate_payload(model: type[M], data: Any) -> M:
    """Coerce a dict (or model) into ``model``, raising VALIDATION on failure."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        details = e.errors(include_url=False, include_context=False, include_input=False)
        first = details[0] if details else {}
        field = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid input"))
        raise TaskValidationError(message, details=details)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire; both accepted on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self, **kwargs: Any) -> dict:
        """JSON-ready dict using wire (camelCase) keys."""
        return self.model_dump(by_alias=True, mode="json", **kwargs)


class TaskStatus(str, Enum):
    """Task workflow states."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class Task(CamelModel):
    """Task model."""
    id: str = Field(..., description="Remote UUID or local_* identifier")
    user_id: Optional[str] = Field(None, description="Owner (server rows only)")
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: int = Field(default=2, ge=1, le=4)
    progress: int = Field(default=0, ge=0, le=100)
    category: str = Field(default=DEFAULT_CATEGORY, max_length=100)
    tags: Optional[list[str]] = None
    deadline: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    parent_id: Optional[str] = None
    subtask_ids: list[str] = Field(default_factory=list)
    time_spent: int = Field(default=0, ge=0, description="Minutes")
    estimated_duration: Optional[int] = Field(None, gt=0, description="Minutes")
    view_count: int = Field(default=0, ge=0)
    edit_count: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    @field_validator("deadline", "completed_at", "created_at", "updated_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @field_validator("subtask_ids", mode="before")
    @classmethod
    def _subtasks_default(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    def satisfies_completion_invariant(self) -> bool:
        """done <=> progress 100 <=> completed_at set."""
        return self.is_done == (self.progress == 100) == (self.completed_at is not None)


class TaskCreate(CamelModel):
    """Payload for creating a task (CreateTaskDto)."""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: int = Field(default=2, ge=1, le=4)
    category: str = Field(default=DEFAULT_CATEGORY, max_length=100)
    tags: Optional[list[str]] = None
    deadline: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(None, gt=0)
    parent_id: Optional[str] = None

    @field_validator("deadline")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class TaskUpdate(CamelModel):
    """Partial update payload (UpdateTaskDto)."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[int] = Field(None, ge=1, le=4)
    category: Optional[str] = Field(None, max_length=100)
    tags: Optional[list[str]] = None
    deadline: Optional[datetime] = None
    estimated_duration: Optional[int] = Field(None, gt=0)
    parent_id: Optional[str] = None

    @field_validator("deadline")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def changes(self) -> dict:
        """Fields the caller actually set, keyed by attribute name."""
        values = self.model_dump(exclude_unset=True)
        for key in _NON_NULLABLE_UPDATES:
            if key in values and values[key] is None:
                del values[key]
        return values


class TaskFilters(CamelModel):
    """List filters, sorting and pagination shared by both adapters."""
    status: Optional[TaskStatus] = None
    search: Optional[str] = None
    category: Optional[str] = None
    sort_by: str = Field(default="created_at")
    order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=MAX_PAGE_LIMIT)

    @field_validator("sort_by", mode="before")
    @classmethod
    def _sort_key(cls, value: Any) -> Any:
        if value is None or value == "":
            return "created_at"
        if isinstance(value, str):
            snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in value)
            if snake not in SORTABLE_FIELDS:
                raise ValueError(f"sortBy must be one of {', '.join(SORTABLE_FIELDS)}")
            return snake
        return value

    @field_validator("search", "category", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_query_params(self) -> dict:
        """Query string parameters for GET /tasks."""
        params = {
            "page": self.page,
            "limit": self.limit,
            "sortBy": self.sort_by,
            "order": self.order,
        }
        if self.status is not None:
            params["status"] = self.status.value
        if self.search:
            params["search"] = self.search
        if self.category:
            params["category"] = self.category
        return params


class PageMeta(CamelModel):
    """Pagination envelope."""
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PageMeta":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class Page(CamelModel, Generic[T]):
    """One page of results plus its pagination meta."""
    data: list[T]
    meta: PageMeta


def apply_completion_rules(values: dict, now: Optional[datetime] = None) -> dict:
    """
    Enforce done <=> progress 100 <=> completed_at set on a task dict.

    Entering done stamps completed_at (keeping one already supplied); leaving
    done clears it and resets a 100% progress back to 0.
    """
    now = now or utcnow()
    status = TaskStatus(values.get("status") or TaskStatus.TODO)
    if status == TaskStatus.DONE:
        values["progress"] = 100
        if values.get("completed_at") is None:
            values["completed_at"] = now
    else:
        values["completed_at"] = None
        if (values.get("progress") or 0) >= 100:
            values["progress"] = 0
    return values
