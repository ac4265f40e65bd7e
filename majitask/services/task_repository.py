"""Task repository - single entry point that routes calls to the remote or local adapter."""

from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol, TypeVar, Union

from majitask.models.comment import Comment, CommentType
from majitask.models.sync import SyncResult
from majitask.models.task import Page, Task, TaskCreate, TaskFilters, TaskUpdate
from majitask.services.connectivity import (
    AdapterKind,
    ConnectivityMonitor,
    select_adapter_kind,
)
from majitask.services.local_adapter import LocalAdapter
from majitask.services.remote_adapter import RemoteAdapter, TokenProvider
from majitask.utils.config import SyncConfig
from majitask.utils.errors import NotFoundError, TransportError
from majitask.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

R = TypeVar("R")


class TaskAdapter(Protocol):
    """Operations both adapters implement."""

    kind: str

    async def get_all(self, filters: Optional[Union[TaskFilters, dict]] = None) -> Page[Task]: ...
    async def get(self, task_id: str) -> Task: ...
    async def create(self, dto: Union[TaskCreate, dict]) -> Task: ...
    async def update(self, task_id: str, updates: Union[TaskUpdate, dict]) -> Task: ...
    async def remove(self, task_id: str) -> None: ...
    async def add_comment(self, task_id: str, body: str, comment_type: CommentType = CommentType.COMMENT) -> Comment: ...
    async def get_comments(self, task_id: str, page: int = 1, limit: int = 20) -> Page[Comment]: ...


class TaskRepository:
    """
    Unified task API over the remote and local adapters.

    The adapter is resolved at the start of every call from the current
    connectivity and credential state. When the remote adapter fails with a
    transport error the same operation is replayed against the local adapter;
    every other error kind (validation, rate limiting, ...) propagates as-is.
    """

    def __init__(
        self,
        remote: RemoteAdapter,
        local: LocalAdapter,
        token_provider: TokenProvider,
        monitor: Optional[ConnectivityMonitor] = None,
        sync_batch_limit: Optional[int] = None,
    ):
        self.remote = remote
        self.local = local
        self.token_provider = token_provider
        self.monitor = monitor or ConnectivityMonitor()
        self.sync_batch_limit = sync_batch_limit or SyncConfig.SYNC_BATCH_LIMIT
        self._current_kind = AdapterKind.LOCAL
        self.refresh()
        self.monitor.add_listener(lambda _online: self.refresh())

    def resolve_adapter(self) -> tuple[AdapterKind, TaskAdapter]:
        """Pick the authoritative adapter for this call."""
        kind = select_adapter_kind(self.monitor.is_online, self.token_provider())
        self._current_kind = kind
        return kind, (self.remote if kind == AdapterKind.REMOTE else self.local)

    def refresh(self) -> AdapterKind:
        """Force the adapter decision to be recomputed."""
        kind, _ = self.resolve_adapter()
        return kind

    @property
    def current_adapter_kind(self) -> AdapterKind:
        return self._current_kind

    async def _with_fallback(
        self,
        operation: str,
        call: Callable[[TaskAdapter], Awaitable[R]],
        consult_local_on_missing: bool = False,
    ) -> R:
        kind, adapter = self.resolve_adapter()
        if kind == AdapterKind.LOCAL:
            return await call(self.local)

        try:
            return await call(adapter)
        except TransportError as e:
            logger.warning(
                "Remote operation failed, falling back to local store",
                operation=operation,
                error=e.message,
            )
            return await call(self.local)
        except NotFoundError as e:
            if not consult_local_on_missing:
                raise
            try:
                result = await call(self.local)
            except NotFoundError:
                raise e
            logger.info("Task found only in local store", operation=operation)
            return result

    async def get_all(self, filters: Optional[Union[TaskFilters, dict]] = None) -> Page[Task]:
        return await self._with_fallback("get_all", lambda a: a.get_all(filters))

    async def get(self, task_id: str) -> Task:
        """Fetch one task. Increments its view count."""
        return await self._with_fallback("get", lambda a: a.get(task_id), consult_local_on_missing=True)

    async def create(self, dto: Union[TaskCreate, dict]) -> Task:
        return await self._with_fallback("create", lambda a: a.create(dto))

    async def update(self, task_id: str, updates: Union[TaskUpdate, dict]) -> Task:
        return await self._with_fallback(
            "update", lambda a: a.update(task_id, updates), consult_local_on_missing=True
        )

    async def remove(self, task_id: str) -> None:
        await self._with_fallback("remove", lambda a: a.remove(task_id), consult_local_on_missing=True)

    async def add_comment(self, task_id: str, body: str, comment_type: CommentType = CommentType.COMMENT) -> Comment:
        return await self._with_fallback(
            "add_comment",
            lambda a: a.add_comment(task_id, body, comment_type),
            consult_local_on_missing=True,
        )

    async def get_comments(self, task_id: str, page: int = 1, limit: int = 20) -> Page[Comment]:
        return await self._with_fallback("get_comments", lambda a: a.get_comments(task_id, page, limit))

    async def pending_changes(self, since: Optional[datetime] = None) -> tuple[list[Task], Optional[datetime]]:
        """
        Oldest-first batch of local tasks modified after ``since``.

        The batch holds at most ``sync_batch_limit`` tasks. The second value
        is the watermark that covers exactly this batch when tasks were held
        back, or None when everything pending fits.
        """
        tasks = sorted(await self.local.list_all(updated_after=since), key=lambda t: t.updated_at)
        if len(tasks) <= self.sync_batch_limit:
            return tasks, None

        cut = self.sync_batch_limit
        boundary = tasks[cut].updated_at
        # Never split a run of equal timestamps across the watermark
        while cut > 0 and tasks[cut - 1].updated_at == boundary:
            cut -= 1
        if cut == 0:
            cut = self.sync_batch_limit
            while cut < len(tasks) and tasks[cut].updated_at == boundary:
                cut += 1
        batch = tasks[:cut]
        logger.info("Sync batch truncated", pending=len(tasks), sent=len(batch))
        return batch, batch[-1].updated_at

    async def sync(
        self,
        since: Optional[datetime] = None,
        batch: Optional[list[Task]] = None,
    ) -> Optional[SyncResult]:
        """
        Push locally held tasks to the remote bulk-sync endpoint.

        Returns None when the remote store is not selected or unreachable.
        Sends ``batch`` when given, otherwise ``pending_changes(since)``.
        Rate-limit errors propagate.
        """
        kind, _ = self.resolve_adapter()
        if kind != AdapterKind.REMOTE:
            logger.info("Sync skipped, remote store not available")
            return None

        if batch is None:
            batch, _ = await self.pending_changes(since)
        if not batch:
            return SyncResult()

        try:
            return await self.remote.sync(batch)
        except TransportError as e:
            logger.warning("Sync unavailable", error=e.message, sent=len(batch))
            return None
