"""Optimistic task state - speculative mutations with per-mutation rollback."""

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from majitask.models.comment import Comment, CommentCreate, CommentType
from majitask.models.sync import SyncResult, SyncState, SyncStatus
from majitask.models.task import (
    DEFAULT_CATEGORY,
    PageMeta,
    Task,
    TaskCreate,
    TaskFilters,
    TaskStatus,
    TaskUpdate,
    apply_completion_rules,
    utcnow,
    validate_payload,
)
from majitask.services.task_repository import TaskRepository
from majitask.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

TEMP_ID_PREFIX = "temp_"

DEFAULT_FILTERS = {"sort_by": "updated_at", "order": "desc", "page": 1, "limit": 20}


def _temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


@dataclass
class _PendingUpdate:
    """One in-flight update: the state right before it and what it displayed."""
    version: int
    snapshot: Task
    optimistic: Task
    touched: frozenset = field(default_factory=frozenset)


class OptimisticTaskStore:
    """
    In-memory task state rendered by the UI.

    Each mutation is applied to the held state before the repository call is
    made, then either confirmed with the repository's result or reverted.
    Reverts are scoped to the mutation that failed: every update records the
    entity version it produced plus a snapshot taken just before it, so a
    failure never undoes a different mutation on the same task. A cancelled
    repository call is reverted like a failed one.
    """

    def __init__(self, repository: TaskRepository):
        self.repository = repository
        self.tasks: list[Task] = []
        self.meta: Optional[PageMeta] = None
        self.current_task: Optional[Task] = None
        self.comments: list[Comment] = []
        self.comments_task_id: Optional[str] = None
        self.comments_meta: Optional[PageMeta] = None
        self.filters = TaskFilters(**DEFAULT_FILTERS)
        self.last_sync_result: Optional[SyncResult] = None
        self.error: Optional[str] = None

        self.is_loading = False
        self.is_creating = False
        self.is_updating = False
        self.is_deleting = False
        self.is_syncing = False

        self._versions: dict[str, int] = defaultdict(int)
        self._pending: dict[str, list[_PendingUpdate]] = defaultdict(list)

    # State helpers

    def _index(self, task_id: str) -> Optional[int]:
        for idx, task in enumerate(self.tasks):
            if task.id == task_id:
                return idx
        return None

    def get_task(self, task_id: str) -> Optional[Task]:
        idx = self._index(task_id)
        return self.tasks[idx] if idx is not None else None

    def _put(self, task: Task, replace_id: Optional[str] = None) -> None:
        """Replace the entity held under ``replace_id`` (default ``task.id``)."""
        idx = self._index(replace_id or task.id)
        if idx is not None:
            self.tasks[idx] = task
        if self.current_task is not None and self.current_task.id in (replace_id, task.id):
            self.current_task = task

    def _fail(self, operation: str, error: BaseException) -> None:
        self.error = getattr(error, "message", None) or str(error) or type(error).__name__
        logger.info("Optimistic mutation reverted", operation=operation, error=self.error)

    # Loading

    async def fetch_tasks(self, filters: Optional[Union[TaskFilters, dict]] = None) -> list[Task]:
        if filters is not None:
            self.set_filters(**(filters.model_dump(exclude_unset=True) if isinstance(filters, TaskFilters) else filters))
        self.is_loading = True
        self.error = None
        try:
            page = await self.repository.get_all(self.filters)
        except Exception as e:
            self.error = getattr(e, "message", None) or str(e)
            raise
        finally:
            self.is_loading = False
        self.tasks = list(page.data)
        self.meta = page.meta
        return self.tasks

    async def fetch_task(self, task_id: str) -> Task:
        self.is_loading = True
        self.error = None
        try:
            task = await self.repository.get(task_id)
        except Exception as e:
            self.error = getattr(e, "message", None) or str(e)
            raise
        finally:
            self.is_loading = False
        self.current_task = task
        self._put(task)
        return task

    async def fetch_comments(self, task_id: str, page: int = 1, limit: int = 20) -> list[Comment]:
        """Load comments; pages after the first are appended."""
        try:
            result = await self.repository.get_comments(task_id, page, limit)
        except Exception as e:
            self.error = getattr(e, "message", None) or str(e)
            raise
        if page > 1 and self.comments_task_id == task_id:
            self.comments = self.comments + list(result.data)
        else:
            self.comments = list(result.data)
        self.comments_task_id = task_id
        self.comments_meta = result.meta
        return self.comments

    def set_filters(self, **changes: Any) -> TaskFilters:
        """Merge filter changes; the page goes back to 1 unless given."""
        values = self.filters.model_dump()
        values["page"] = 1
        values.update(changes)
        self.filters = validate_payload(TaskFilters, values)
        return self.filters

    def reset_filters(self) -> TaskFilters:
        self.filters = TaskFilters(**DEFAULT_FILTERS)
        return self.filters

    def set_page(self, page: int) -> TaskFilters:
        self.filters = self.filters.model_copy(update={"page": max(page, 1)})
        return self.filters

    def clear_error(self) -> None:
        self.error = None

    # Mutations

    async def create_task(self, dto: Union[TaskCreate, dict]) -> Task:
        dto = validate_payload(TaskCreate, dto)
        now = utcnow()
        values = dto.model_dump()
        values.update(id=_temp_id(), created_at=now, updated_at=now)
        placeholder = Task.model_validate(apply_completion_rules(values, now))

        self.tasks.insert(0, placeholder)
        self.is_creating = True
        self.error = None
        try:
            created = await self.repository.create(dto)
        except BaseException as e:
            self.tasks = [t for t in self.tasks if t.id != placeholder.id]
            self._fail("create", e)
            raise
        finally:
            self.is_creating = False

        if self._index(placeholder.id) is not None:
            self._put(created, replace_id=placeholder.id)
        else:
            self.tasks.insert(0, created)
        return created

    async def update_task(self, task_id: str, updates: Union[TaskUpdate, dict]) -> Task:
        updates = validate_payload(TaskUpdate, updates)
        changes = updates.changes()
        current = self.get_task(task_id)

        pending = None
        if current is not None:
            now = utcnow()
            values = current.model_dump()
            values.update(changes)
            values["updated_at"] = now
            if "status" in changes and changes["status"] != current.status:
                values["completed_at"] = None
            optimistic = Task.model_validate(apply_completion_rules(values, now))
            touched = frozenset(
                name for name in Task.model_fields
                if getattr(optimistic, name) != getattr(current, name)
            )
            self._versions[task_id] += 1
            pending = _PendingUpdate(self._versions[task_id], current, optimistic, touched)
            self._pending[task_id].append(pending)
            self._put(optimistic)

        self.is_updating = True
        self.error = None
        try:
            updated = await self.repository.update(task_id, updates)
        except BaseException as e:
            if pending is not None:
                self._revert_update(task_id, pending)
            self._fail("update", e)
            raise
        finally:
            self.is_updating = False
            if pending is not None:
                self._pending[task_id].remove(pending)

        self._confirm_update(task_id, pending, updated)
        return updated

    def _revert_update(self, task_id: str, pending: _PendingUpdate) -> None:
        held = self.get_task(task_id)
        if held is None:
            return
        if self._versions[task_id] == pending.version:
            self._put(pending.snapshot)
            return

        # A later mutation is layered on top: only undo fields it left alone
        restored = {
            name: getattr(pending.snapshot, name)
            for name in pending.touched
            if getattr(held, name) == getattr(pending.optimistic, name)
        }
        if restored:
            self._put(held.model_copy(update=restored))

        for later in self._pending[task_id]:
            if later.version <= pending.version:
                continue
            fixes = {
                name: getattr(pending.snapshot, name)
                for name in pending.touched
                if getattr(later.snapshot, name) == getattr(pending.optimistic, name)
            }
            if fixes:
                later.snapshot = later.snapshot.model_copy(update=fixes)

    def _confirm_update(self, task_id: str, pending: Optional[_PendingUpdate], updated: Task) -> None:
        held = self.get_task(task_id)
        if held is None:
            if self.current_task is not None and self.current_task.id == task_id:
                self.current_task = updated
            return
        if pending is None or self._versions[task_id] == pending.version:
            self._put(updated)
            return

        # Keep fields a later in-flight mutation has already changed
        confirmed = {
            name: getattr(updated, name)
            for name in Task.model_fields
            if getattr(held, name) == getattr(pending.optimistic, name)
        }
        self._put(held.model_copy(update=confirmed))
        for later in self._pending[task_id]:
            if later.version <= pending.version:
                continue
            later.snapshot = later.snapshot.model_copy(update={
                name: getattr(updated, name)
                for name in Task.model_fields
                if getattr(later.snapshot, name) == getattr(pending.optimistic, name)
            })

    async def delete_task(self, task_id: str) -> None:
        idx = self._index(task_id)
        removed = self.tasks.pop(idx) if idx is not None else None
        if removed is not None:
            self._versions[task_id] += 1

        self.is_deleting = True
        self.error = None
        try:
            await self.repository.remove(task_id)
        except BaseException as e:
            if removed is not None and self._index(task_id) is None:
                self.tasks.insert(min(idx, len(self.tasks)), removed)
            self._fail("delete", e)
            raise
        finally:
            self.is_deleting = False

        self._versions.pop(task_id, None)
        if self.current_task is not None and self.current_task.id == task_id:
            self.current_task = None

    async def add_comment(self, task_id: str, body: str, comment_type: CommentType = CommentType.COMMENT) -> Comment:
        payload = validate_payload(CommentCreate, {"body": body, "comment_type": comment_type})
        now = utcnow()
        placeholder = Comment(
            id=_temp_id(),
            task_id=task_id,
            body=payload.body,
            comment_type=payload.comment_type,
            created_at=now,
            updated_at=now,
        )
        shown = self.comments_task_id == task_id
        if shown:
            self.comments.insert(0, placeholder)

        self.error = None
        try:
            comment = await self.repository.add_comment(task_id, payload.body, payload.comment_type)
        except BaseException as e:
            self.comments = [c for c in self.comments if c.id != placeholder.id]
            self._fail("add_comment", e)
            raise

        if shown:
            self.comments = [comment if c.id == placeholder.id else c for c in self.comments]
        return comment

    # Sync

    async def sync(self) -> Optional[SyncResult]:
        """Run a repository sync; reload the list when anything changed."""
        self.is_syncing = True
        self.error = None
        try:
            result = await self.repository.sync()
        except Exception as e:
            self.error = getattr(e, "message", None) or str(e)
            raise
        finally:
            self.is_syncing = False
        self.last_sync_result = result
        if result is not None and result.has_changes:
            await self.fetch_tasks()
        return result

    async def on_sync_status(self, status: SyncStatus) -> None:
        """Listener for the background sync worker."""
        if status.state == SyncState.SYNCED and status.received > 0:
            await self.fetch_tasks()

    # Selectors

    def tasks_by_status(self, status: Union[TaskStatus, str]) -> list[Task]:
        status = TaskStatus(status)
        return [t for t in self.tasks if t.status == status]

    def tasks_by_category(self) -> dict[str, list[Task]]:
        grouped: dict[str, list[Task]] = {}
        for task in self.tasks:
            grouped.setdefault(task.category or DEFAULT_CATEGORY, []).append(task)
        return grouped

    def overdue_tasks(self, now: Optional[datetime] = None) -> list[Task]:
        now = now or utcnow()
        return [t for t in self.tasks if t.deadline and t.deadline < now and not t.is_done]

    def tasks_due_today(self, now: Optional[datetime] = None) -> list[Task]:
        today = (now or utcnow()).date()
        return [t for t in self.tasks if t.deadline and t.deadline.date() == today and not t.is_done]

    def high_priority_tasks(self) -> list[Task]:
        return [t for t in self.tasks if t.priority >= 3]

    def subtasks(self, parent_id: str) -> list[Task]:
        return [t for t in self.tasks if t.parent_id == parent_id]

    def stats(self, now: Optional[datetime] = None) -> dict[str, int]:
        return {
            "total": len(self.tasks),
            "completed": len(self.tasks_by_status(TaskStatus.DONE)),
            "in_progress": len(self.tasks_by_status(TaskStatus.IN_PROGRESS)),
            "todo": len(self.tasks_by_status(TaskStatus.TODO)),
            "overdue": len(self.overdue_tasks(now)),
        }
