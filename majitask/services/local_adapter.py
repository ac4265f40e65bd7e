"""Local store adapter - task and comment CRUD over the durable key/value store."""

import random
import string
import time
from datetime import datetime
from typing import Any, Optional, Union

from majitask.models.comment import Comment, CommentCreate, CommentType
from majitask.models.task import (
    Page,
    PageMeta,
    Task,
    TaskCreate,
    TaskFilters,
    TaskUpdate,
    apply_completion_rules,
    utcnow,
    validate_payload,
)
from majitask.services.local_store import LocalKeyValueStore, get_local_store
from majitask.utils.config import COMMENTS_KEY, LAST_SYNC_KEY, TASKS_KEY
from majitask.utils.errors import NotFoundError, TaskValidationError
from majitask.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

LOCAL_ID_PREFIX = "local_"
LOCAL_USER_NAME = "Local User"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_local_id() -> str:
    """Time-based identifier that can never collide with a remote UUID."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{LOCAL_ID_PREFIX}{int(time.time() * 1000)}_{suffix}"


def is_local_id(task_id: Optional[str]) -> bool:
    return bool(task_id) and task_id.startswith(LOCAL_ID_PREFIX)


def _sort_value(task: Task, field: str) -> Any:
    value = getattr(task, field)
    if isinstance(value, str):
        return value.casefold()
    return value


def sort_tasks(tasks: list[Task], sort_by: str, order: str) -> list[Task]:
    """
    Order tasks the way the remote API does.

    Missing values (e.g. no deadline) always sort last; ties fall back to id so
    that consecutive pages never overlap.
    """
    present = [t for t in tasks if getattr(t, sort_by) is not None]
    missing = [t for t in tasks if getattr(t, sort_by) is None]
    reverse = order == "desc"
    present.sort(key=lambda t: t.id, reverse=reverse)
    present.sort(key=lambda t: _sort_value(t, sort_by), reverse=reverse)
    missing.sort(key=lambda t: t.id, reverse=reverse)
    return present + missing


def filter_tasks(tasks: list[Task], filters: TaskFilters) -> list[Task]:
    """Apply status, search and category filters."""
    result = tasks
    if filters.status is not None:
        result = [t for t in result if t.status == filters.status]
    if filters.search:
        needle = filters.search.casefold()
        result = [
            t for t in result
            if needle in t.title.casefold() or needle in (t.description or "").casefold()
        ]
    if filters.category:
        result = [t for t in result if t.category == filters.category]
    return result


def paginate(items: list, page: int, limit: int) -> Page:
    offset = (page - 1) * limit
    return Page(data=items[offset:offset + limit], meta=PageMeta.build(page, limit, len(items)))


class LocalAdapter:
    """
    Task adapter backed by the local key/value store.

    Always available; never touches the network. Tasks and comments are kept
    as two JSON arrays under the ``majitask_tasks`` and ``majitask_comments``
    keys. Every operation re-reads the stored collection before writing.
    """

    kind = "local"

    def __init__(self, store: Optional[LocalKeyValueStore] = None):
        self.store = store or get_local_store()

    # Storage helpers

    def _load_tasks(self) -> list[Task]:
        tasks = []
        for raw in self.store.get_json(TASKS_KEY, []) or []:
            try:
                tasks.append(Task.model_validate(raw))
            except ValueError as e:
                logger.warning("Skipping unreadable local task", task_id=raw.get("id") if isinstance(raw, dict) else None, error=str(e))
        return tasks

    def _save_tasks(self, tasks: list[Task]) -> None:
        self.store.set_json(TASKS_KEY, [t.to_wire() for t in tasks])

    def _load_comments(self) -> list[Comment]:
        comments = []
        for raw in self.store.get_json(COMMENTS_KEY, []) or []:
            try:
                comments.append(Comment.model_validate(raw))
            except ValueError as e:
                logger.warning("Skipping unreadable local comment", error=str(e))
        return comments

    def _save_comments(self, comments: list[Comment]) -> None:
        self.store.set_json(COMMENTS_KEY, [c.to_wire() for c in comments])

    @staticmethod
    def _index_of(tasks: list[Task], task_id: str) -> int:
        for idx, task in enumerate(tasks):
            if task.id == task_id:
                return idx
        raise NotFoundError(f"Task {task_id} not found")

    # Task operations

    async def get_all(self, filters: Optional[Union[TaskFilters, dict]] = None) -> Page[Task]:
        filters = validate_payload(TaskFilters, filters)
        matched = filter_tasks(self._load_tasks(), filters)
        ordered = sort_tasks(matched, filters.sort_by, filters.order)
        return paginate(ordered, filters.page, filters.limit)

    async def get(self, task_id: str) -> Task:
        tasks = self._load_tasks()
        idx = self._index_of(tasks, task_id)
        task = tasks[idx].model_copy(update={"view_count": tasks[idx].view_count + 1})
        tasks[idx] = task
        self._save_tasks(tasks)
        return task

    async def create(self, dto: Union[TaskCreate, dict]) -> Task:
        dto = validate_payload(TaskCreate, dto)
        tasks = self._load_tasks()
        now = utcnow()

        if dto.parent_id:
            self._index_of(tasks, dto.parent_id)

        values = dto.model_dump()
        values.update(
            id=generate_local_id(),
            progress=0,
            subtask_ids=[],
            time_spent=0,
            view_count=0,
            edit_count=0,
            created_at=now,
            updated_at=now,
        )
        task = Task.model_validate(apply_completion_rules(values, now))
        tasks.append(task)

        if task.parent_id:
            pidx = self._index_of(tasks, task.parent_id)
            parent = tasks[pidx]
            tasks[pidx] = parent.model_copy(update={"subtask_ids": parent.subtask_ids + [task.id]})

        self._save_tasks(tasks)
        logger.debug("Local task created", task_id=task.id, has_parent=bool(task.parent_id))
        return task

    async def update(self, task_id: str, updates: Union[TaskUpdate, dict]) -> Task:
        changes = validate_payload(TaskUpdate, updates).changes()
        tasks = self._load_tasks()
        idx = self._index_of(tasks, task_id)
        current = tasks[idx]
        now = utcnow()

        new_parent = changes.get("parent_id", current.parent_id)
        if new_parent == task_id:
            raise TaskValidationError("parentId: a task cannot be its own parent")
        if new_parent and new_parent != current.parent_id:
            self._index_of(tasks, new_parent)

        values = current.model_dump()
        values.update(changes)
        values["updated_at"] = now
        values["edit_count"] = current.edit_count + 1
        if "status" in changes and changes["status"] != current.status:
            values["completed_at"] = None
        task = Task.model_validate(apply_completion_rules(values, now))
        tasks[idx] = task

        if task.parent_id != current.parent_id:
            self._relink_parent(tasks, task.id, current.parent_id, task.parent_id)

        self._save_tasks(tasks)
        return task

    @staticmethod
    def _relink_parent(tasks: list[Task], task_id: str, old_parent: Optional[str], new_parent: Optional[str]) -> None:
        for idx, other in enumerate(tasks):
            if other.id == old_parent and task_id in other.subtask_ids:
                tasks[idx] = other.model_copy(
                    update={"subtask_ids": [s for s in other.subtask_ids if s != task_id]}
                )
            elif other.id == new_parent and task_id not in other.subtask_ids:
                tasks[idx] = other.model_copy(update={"subtask_ids": other.subtask_ids + [task_id]})

    async def remove(self, task_id: str) -> None:
        tasks = self._load_tasks()
        removed = tasks.pop(self._index_of(tasks, task_id))

        for idx, other in enumerate(tasks):
            if other.id == removed.parent_id and task_id in other.subtask_ids:
                tasks[idx] = other.model_copy(
                    update={"subtask_ids": [s for s in other.subtask_ids if s != task_id]}
                )
            elif other.parent_id == task_id:
                tasks[idx] = other.model_copy(update={"parent_id": None})
        self._save_tasks(tasks)

        comments = self._load_comments()
        kept = [c for c in comments if c.task_id != task_id]
        if len(kept) != len(comments):
            self._save_comments(kept)
        logger.debug("Local task removed", task_id=task_id, comments_removed=len(comments) - len(kept))

    # Comments

    async def add_comment(self, task_id: str, body: str, comment_type: CommentType = CommentType.COMMENT) -> Comment:
        payload = validate_payload(CommentCreate, {"body": body, "comment_type": comment_type})
        self._index_of(self._load_tasks(), task_id)

        now = utcnow()
        comment = Comment(
            id=generate_local_id(),
            task_id=task_id,
            body=payload.body,
            comment_type=payload.comment_type,
            created_at=now,
            updated_at=now,
            user_name=LOCAL_USER_NAME,
        )
        comments = self._load_comments()
        comments.append(comment)
        self._save_comments(comments)
        return comment

    async def get_comments(self, task_id: str, page: int = 1, limit: int = 20) -> Page[Comment]:
        comments = [c for c in self._load_comments() if c.task_id == task_id]
        comments.sort(key=lambda c: c.created_at, reverse=True)
        return paginate(comments, max(page, 1), max(limit, 1))

    # Reconciliation support

    async def list_all(self, updated_after: Optional[datetime] = None) -> list[Task]:
        """Every stored task, optionally only those modified after a watermark."""
        tasks = self._load_tasks()
        if updated_after is not None:
            tasks = [t for t in tasks if t.updated_at > updated_after]
        return tasks

    def get_last_sync(self) -> Optional[datetime]:
        raw = self.store.get_item(LAST_SYNC_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None

    def set_last_sync(self, value: datetime) -> None:
        self.store.set_item(LAST_SYNC_KEY, value.isoformat())
