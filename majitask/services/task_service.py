"""Server-side task service - the storage tier behind the task API."""

from typing import Any, Optional, Union
import uuid

from majitask.models.comment import Comment, CommentCreate, CommentType
from majitask.models.sync import SyncResult
from majitask.models.task import (
    MAX_PAGE_LIMIT,
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
from majitask.services.reconciliation import plan_sync
from majitask.services.supabase_client import SupabaseTaskTable
from majitask.utils.config import SyncConfig
from majitask.utils.errors import MajiTaskError, NotFoundError, TaskValidationError
from majitask.utils.logging import get_structured_logger, log_timing

logger = get_structured_logger(__name__)


class TaskService:
    """Task CRUD, comments and bulk sync for one authenticated user at a time."""

    def __init__(self, table: Optional[Any] = None):
        self.table = table or SupabaseTaskTable()

    async def _require_task(self, user_id: str, task_id: str) -> Task:
        row = await self.table.get_task(user_id, task_id)
        if row is None:
            raise NotFoundError(f"Task {task_id} not found")
        return Task.model_validate(row)

    async def _record(self, task_id: Optional[str], user_id: str, action: str, meta: Optional[dict] = None) -> None:
        # Activity is a side record; a failed write never fails the mutation
        try:
            await self.table.record_activity(task_id, user_id, action, meta)
        except MajiTaskError as e:
            logger.warning("Failed to record task activity", task_id=task_id, action=action, error=e.message)

    async def _set_subtasks(self, user_id: str, parent_id: str, add: Optional[str] = None, drop: Optional[str] = None) -> None:
        # Re-read the parent right before writing its subtask list
        row = await self.table.get_task(user_id, parent_id)
        if row is None:
            return
        subtasks = [s for s in (row.get("subtask_ids") or []) if s != drop]
        if add and add not in subtasks:
            subtasks.append(add)
        await self.table.update_task(user_id, parent_id, {"subtask_ids": subtasks})

    async def list_tasks(self, user_id: str, filters: Optional[Union[TaskFilters, dict]] = None) -> Page[Task]:
        filters = validate_payload(TaskFilters, filters)
        rows, total = await self.table.query_tasks(user_id, filters)
        return Page[Task](
            data=[Task.model_validate(row) for row in rows],
            meta=PageMeta.build(filters.page, filters.limit, total),
        )

    async def get_task(self, user_id: str, task_id: str) -> Task:
        """Fetch one task and count the view."""
        task = await self._require_task(user_id, task_id)
        row = await self.table.update_task(user_id, task_id, {"view_count": task.view_count + 1})
        return Task.model_validate(row)

    async def create_task(self, user_id: str, dto: Union[TaskCreate, dict]) -> Task:
        dto = validate_payload(TaskCreate, dto)
        if dto.parent_id:
            await self._require_task(user_id, dto.parent_id)

        now = utcnow()
        values = dto.model_dump()
        values.update(
            id=str(uuid.uuid4()),
            user_id=user_id,
            progress=0,
            subtask_ids=[],
            time_spent=0,
            view_count=0,
            edit_count=0,
            created_at=now,
            updated_at=now,
        )
        row = Task.model_validate(apply_completion_rules(values, now)).model_dump(mode="json")
        task = Task.model_validate(await self.table.insert_task(row))

        if task.parent_id:
            await self._set_subtasks(user_id, task.parent_id, add=task.id)

        await self._record(task.id, user_id, "create", {"title": task.title})
        logger.info("Task created", task_id=task.id, has_parent=bool(task.parent_id))
        return task

    async def update_task(self, user_id: str, task_id: str, updates: Union[TaskUpdate, dict]) -> Task:
        changes = validate_payload(TaskUpdate, updates).changes()
        current = await self._require_task(user_id, task_id)

        new_parent = changes.get("parent_id", current.parent_id)
        if new_parent == task_id:
            raise TaskValidationError("parentId: a task cannot be its own parent")
        if new_parent and new_parent != current.parent_id:
            await self._require_task(user_id, new_parent)

        now = utcnow()
        values = current.model_dump()
        values.update(changes)
        values["updated_at"] = now
        values["edit_count"] = current.edit_count + 1
        if "status" in changes and changes["status"] != current.status:
            values["completed_at"] = None
        merged = Task.model_validate(apply_completion_rules(values, now)).model_dump(
            mode="json", exclude={"id", "user_id", "created_at", "subtask_ids", "view_count"}
        )
        task = Task.model_validate(await self.table.update_task(user_id, task_id, merged))

        if task.parent_id != current.parent_id:
            if current.parent_id:
                await self._set_subtasks(user_id, current.parent_id, drop=task_id)
            if task.parent_id:
                await self._set_subtasks(user_id, task.parent_id, add=task_id)

        await self._record(task_id, user_id, "update", {"fields": sorted(changes)})
        return task

    async def delete_task(self, user_id: str, task_id: str) -> None:
        current = await self._require_task(user_id, task_id)

        if current.parent_id:
            await self._set_subtasks(user_id, current.parent_id, drop=task_id)
        await self.table.clear_parent(user_id, task_id)
        await self.table.delete_comments(task_id)
        await self.table.delete_task(user_id, task_id)

        await self._record(task_id, user_id, "delete", {"title": current.title})
        logger.info("Task deleted", task_id=task_id)

    async def add_comment(
        self,
        user_id: str,
        task_id: str,
        body: str,
        comment_type: Union[CommentType, str] = CommentType.COMMENT,
        user_name: Optional[str] = None,
        user_email: Optional[str] = None,
    ) -> Comment:
        payload = validate_payload(CommentCreate, {"body": body, "comment_type": comment_type})
        await self._require_task(user_id, task_id)

        now = utcnow()
        comment = Comment(
            id=str(uuid.uuid4()),
            task_id=task_id,
            user_id=user_id,
            body=payload.body,
            comment_type=payload.comment_type,
            created_at=now,
            updated_at=now,
        )
        row = await self.table.insert_comment(
            comment.model_dump(mode="json", exclude={"user_name", "user_email"})
        )
        stored = Comment.model_validate(row)
        return stored.model_copy(update={"user_name": user_name, "user_email": user_email})

    async def list_comments(self, user_id: str, task_id: str, page: int = 1, limit: int = 20) -> Page[Comment]:
        if page < 1 or not 1 <= limit <= MAX_PAGE_LIMIT:
            raise TaskValidationError(f"page must be >= 1 and limit between 1 and {MAX_PAGE_LIMIT}")
        await self._require_task(user_id, task_id)
        rows, total = await self.table.list_comments(task_id, page, limit)
        return Page[Comment](
            data=[Comment.model_validate(row) for row in rows],
            meta=PageMeta.build(page, limit, total),
        )

    async def count_tasks(self, user_id: str) -> int:
        return await self.table.count_tasks(user_id)

    async def load_tasks(self, user_id: str) -> list[Task]:
        """Every task the user owns (fresh read)."""
        return [Task.model_validate(row) for row in await self.table.list_tasks(user_id)]

    async def sync_bulk(self, user_id: str, candidates: list[Any], source: str = "bulk_sync") -> SyncResult:
        """
        Merge a batch of candidate tasks under last-writer-wins.

        Conflicts and invalid rows are reported in the result. All accepted
        inserts and updates are written with a single upsert; if that write
        fails nothing is committed and the storage error propagates.
        """
        if not isinstance(candidates, list):
            raise TaskValidationError("tasks: must be a list")
        if len(candidates) > SyncConfig.SYNC_BATCH_LIMIT:
            raise TaskValidationError(f"tasks: at most {SyncConfig.SYNC_BATCH_LIMIT} tasks per batch")

        with log_timing("sync_bulk", logger=logger, candidates=len(candidates)):
            existing = await self.load_tasks(user_id)
            plan = plan_sync(candidates, existing, user_id=user_id)
            await self.table.upsert_tasks(plan.rows)

        result = plan.result()
        await self._record(None, user_id, source, {
            "imported": result.imported,
            "updated": result.updated,
            "unchanged": result.unchanged,
            "conflicts": len(result.conflicts),
            "errors": len(result.errors),
        })
        logger.info(
            "Bulk sync committed",
            source=source,
            imported=result.imported,
            updated=result.updated,
            unchanged=result.unchanged,
            conflicts=len(result.conflicts),
            errors=len(result.errors),
        )
        return result
