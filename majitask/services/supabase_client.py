"""Supabase client wrapper with async context manager support, plus the task table."""

import os
import re
from typing import Any, Optional

from supabase import Client, create_client
from supabase.client import ClientOptions

from majitask.models.task import TaskFilters
from majitask.utils.errors import ConflictError, SupabaseError
from majitask.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

TASKS_TABLE = "tasks"
COMMENTS_TABLE = "task_comments"
ACTIVITY_TABLE = "task_activity"

# Global client instance (singleton pattern)
_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton."""
    global _client

    if _client is None:
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

        if not url or not key:
            raise SupabaseError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
        )

        _client = create_client(url, key, options)
        logger.info("Supabase client initialized", url=url)

    return _client


async def close_supabase_client() -> None:
    """Drop the cached client."""
    global _client
    if _client:
        _client = None
        logger.info("Supabase client closed")


class SupabaseClient:
    """Async context manager for Supabase client."""

    def __init__(self):
        self.client: Optional[Client] = None

    async def __aenter__(self) -> Client:
        self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "Supabase operation error",
                error=str(exc_val),
                error_type=exc_type.__name__,
            )
        return False


def _is_duplicate(error: Exception) -> bool:
    return "duplicate key" in str(error).lower() or "23505" in str(error)


def _search_term(value: str) -> str:
    # PostgREST or() filters use commas and parentheses as separators
    return re.sub(r"[,()*%]", " ", value).strip()


class SupabaseTaskTable:
    """
    Task, comment and activity persistence on Supabase (PostgREST).

    Every query is scoped by ``user_id``. ``upsert_tasks`` sends the whole
    batch as one statement so it commits or fails as a unit.
    """

    async def query_tasks(self, user_id: str, filters: TaskFilters) -> tuple[list[dict], int]:
        """One filtered, sorted page of a user's tasks plus the total match count."""
        async with SupabaseClient() as client:
            try:
                query = client.table(TASKS_TABLE).select("*", count="exact").eq("user_id", user_id)
                if filters.status is not None:
                    query = query.eq("status", filters.status.value)
                if filters.category:
                    query = query.eq("category", filters.category)
                if filters.search:
                    term = _search_term(filters.search)
                    if term:
                        query = query.or_(f"title.ilike.*{term}*,description.ilike.*{term}*")
                desc = filters.order == "desc"
                start = (filters.page - 1) * filters.limit
                result = (
                    query.order(filters.sort_by, desc=desc, nullsfirst=False)
                    .order("id", desc=desc)
                    .range(start, start + filters.limit - 1)
                    .execute()
                )
                return result.data or [], result.count or 0
            except Exception as e:
                raise SupabaseError(f"Failed to list tasks: {e}")

    async def list_tasks(self, user_id: str) -> list[dict]:
        async with SupabaseClient() as client:
            try:
                result = client.table(TASKS_TABLE).select("*").eq("user_id", user_id).execute()
                return result.data or []
            except Exception as e:
                raise SupabaseError(f"Failed to load tasks: {e}")

    async def count_tasks(self, user_id: str) -> int:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(TASKS_TABLE)
                    .select("id", count="exact")
                    .eq("user_id", user_id)
                    .limit(1)
                    .execute()
                )
                return result.count or 0
            except Exception as e:
                raise SupabaseError(f"Failed to count tasks: {e}")

    async def get_task(self, user_id: str, task_id: str) -> Optional[dict]:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(TASKS_TABLE)
                    .select("*")
                    .eq("user_id", user_id)
                    .eq("id", task_id)
                    .limit(1)
                    .execute()
                )
                return result.data[0] if result.data else None
            except Exception as e:
                raise SupabaseError(f"Failed to get task: {e}")

    async def insert_task(self, row: dict) -> dict:
        async with SupabaseClient() as client:
            try:
                result = client.table(TASKS_TABLE).insert(row).execute()
            except Exception as e:
                if _is_duplicate(e):
                    raise ConflictError(f"Task with title '{row.get('title')}' already exists")
                raise SupabaseError(f"Failed to insert task: {e}")
            if not result.data:
                raise SupabaseError("Failed to insert task: no row returned")
            return result.data[0]

    async def update_task(self, user_id: str, task_id: str, values: dict) -> dict:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(TASKS_TABLE)
                    .update(values)
                    .eq("user_id", user_id)
                    .eq("id", task_id)
                    .execute()
                )
            except Exception as e:
                if _is_duplicate(e):
                    raise ConflictError(f"Task with title '{values.get('title')}' already exists")
                raise SupabaseError(f"Failed to update task: {e}")
            if not result.data:
                raise SupabaseError(f"Failed to update task {task_id}: no row returned")
            return result.data[0]

    async def delete_task(self, user_id: str, task_id: str) -> None:
        async with SupabaseClient() as client:
            try:
                client.table(TASKS_TABLE).delete().eq("user_id", user_id).eq("id", task_id).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to delete task: {e}")

    async def clear_parent(self, user_id: str, parent_id: str) -> None:
        """Detach every child of ``parent_id``."""
        async with SupabaseClient() as client:
            try:
                (
                    client.table(TASKS_TABLE)
                    .update({"parent_id": None})
                    .eq("user_id", user_id)
                    .eq("parent_id", parent_id)
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to detach subtasks: {e}")

    async def upsert_tasks(self, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        async with SupabaseClient() as client:
            try:
                result = client.table(TASKS_TABLE).upsert(rows, on_conflict="id").execute()
                return result.data or []
            except Exception as e:
                raise SupabaseError(f"Failed to commit sync batch: {e}")

    async def insert_comment(self, row: dict) -> dict:
        async with SupabaseClient() as client:
            try:
                result = client.table(COMMENTS_TABLE).insert(row).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to insert comment: {e}")
            if not result.data:
                raise SupabaseError("Failed to insert comment: no row returned")
            return result.data[0]

    async def list_comments(self, task_id: str, page: int, limit: int) -> tuple[list[dict], int]:
        async with SupabaseClient() as client:
            try:
                start = (page - 1) * limit
                result = (
                    client.table(COMMENTS_TABLE)
                    .select("*", count="exact")
                    .eq("task_id", task_id)
                    .order("created_at", desc=True)
                    .order("id", desc=True)
                    .range(start, start + limit - 1)
                    .execute()
                )
                return result.data or [], result.count or 0
            except Exception as e:
                raise SupabaseError(f"Failed to list comments: {e}")

    async def delete_comments(self, task_id: str) -> None:
        async with SupabaseClient() as client:
            try:
                client.table(COMMENTS_TABLE).delete().eq("task_id", task_id).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to delete comments: {e}")

    async def record_activity(self, task_id: Optional[str], user_id: str, action: str, meta: Optional[dict[str, Any]] = None) -> None:
        async with SupabaseClient() as client:
            try:
                client.table(ACTIVITY_TABLE).insert({
                    "task_id": task_id,
                    "actor_id": user_id,
                    "action": action,
                    "meta": meta or {},
                }).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to record activity: {e}")
