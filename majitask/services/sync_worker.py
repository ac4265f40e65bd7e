"""Background sync worker - pushes local changes to the remote store on a fixed interval."""

import asyncio
import inspect
from contextlib import suppress
from typing import Any, Callable, Optional

from majitask.models.sync import SyncState, SyncStatus
from majitask.models.task import utcnow
from majitask.services.connectivity import AdapterKind
from majitask.services.task_repository import TaskRepository
from majitask.utils.config import SyncConfig
from majitask.utils.errors import MajiTaskError
from majitask.utils.logging import correlation_context, get_structured_logger, log_timing

logger = get_structured_logger(__name__)

StatusListener = Callable[[SyncStatus], Any]


class SyncWorker:
    """
    Periodic reconciliation driven by an asyncio task.

    ``start`` is idempotent and runs one pass immediately, then one per
    interval. Passes never overlap: ``sync_now`` while a pass is running
    waits for that pass and returns its status.
    """

    def __init__(self, repository: TaskRepository, interval_seconds: Optional[float] = None):
        self.repository = repository
        self.local = repository.local
        self.interval_seconds = interval_seconds or SyncConfig.SYNC_INTERVAL_SECONDS
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._listeners: list[StatusListener] = []
        self.last_status: Optional[SyncStatus] = None
        logger.info("SyncWorker initialized", sync_interval_seconds=self.interval_seconds)

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self) -> None:
        """Start the periodic loop; a second call while running does nothing."""
        if self.is_running:
            return
        self._timer = asyncio.create_task(self._run())
        logger.info("Sync worker started", sync_interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        timer, self._timer = self._timer, None
        if timer is None:
            return
        timer.cancel()
        with suppress(asyncio.CancelledError):
            await timer
        logger.info("Sync worker stopped")

    async def restart(self, interval_seconds: Optional[float] = None) -> None:
        await self.stop()
        if interval_seconds:
            self.interval_seconds = interval_seconds
        self.start()

    async def _run(self) -> None:
        while True:
            try:
                await self.sync_now()
            except Exception as e:
                logger.error("Sync pass crashed", error=str(e), exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    async def sync_now(self) -> SyncStatus:
        """Run one pass now, or join the pass already in flight."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._perform_sync())
        return await asyncio.shield(self._inflight)

    def _status(self, state: SyncState, **fields: Any) -> SyncStatus:
        return SyncStatus(state=state, timestamp=utcnow(), **fields)

    async def _publish(self, status: SyncStatus) -> None:
        self.last_status = status
        for listener in list(self._listeners):
            try:
                outcome = listener(status)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error("Sync status listener failed", error=str(e), exc_info=True)

    async def _perform_sync(self) -> SyncStatus:
        with correlation_context():
            await self._publish(self._status(SyncState.CHECKING))

            if self.repository.refresh() != AdapterKind.REMOTE:
                status = self._status(SyncState.OFFLINE)
                await self._publish(status)
                return status

            started = utcnow()
            since = self.local.get_last_sync()
            try:
                with log_timing("sync_pass", logger=logger):
                    batch, covered_through = await self.repository.pending_changes(since)
                    sent = len(batch)
                    result = await self.repository.sync(since=since, batch=batch)
            except MajiTaskError as e:
                logger.warning("Sync pass failed", error_code=e.code, error=e.message)
                status = self._status(SyncState.ERROR, error=e.message)
                await self._publish(status)
                return status

            if result is None:
                status = self._status(SyncState.OFFLINE)
                await self._publish(status)
                return status

            # Held-back tasks stay after the watermark for the next pass
            self.local.set_last_sync(covered_through or started)
            status = self._status(
                SyncState.SYNCED,
                sent=sent,
                received=result.received,
                conflicts=result.conflicts,
            )
            logger.info(
                "Sync pass completed",
                sent=sent,
                received=result.received,
                conflicts=len(result.conflicts),
                errors=len(result.errors),
            )
            await self._publish(status)
            return status
