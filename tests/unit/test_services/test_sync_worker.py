"""Tests for the background sync worker."""

import asyncio
from datetime import timedelta
import json

import httpx
import pytest

from majitask.models.sync import SyncState
from majitask.services.local_store import LocalKeyValueStore
from majitask.services.sync_worker import SyncWorker
from majitask.utils.config import TASKS_KEY
from tests.utils.factories import BASE_TIME, create_task, create_task_dto
from tests.utils.helpers import build_repository, unreachable


def _sync_response(request: httpx.Request) -> httpx.Response:
    sent = json.loads(request.content)["tasks"]
    return httpx.Response(200, json={"data": {"imported": len(sent)}})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_offline_pass_reports_offline():
    repository = build_repository(_sync_response, online=False)
    worker = SyncWorker(repository, interval_seconds=3600)
    seen = []
    worker.add_listener(seen.append)

    status = await worker.sync_now()

    assert status.state == SyncState.OFFLINE
    assert [s.state for s in seen] == [SyncState.CHECKING, SyncState.OFFLINE]
    assert repository.local.get_last_sync() is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unreachable_remote_reports_offline():
    repository = build_repository(unreachable)
    await repository.local.create(create_task_dto())
    worker = SyncWorker(repository, interval_seconds=3600)

    status = await worker.sync_now()

    assert status.state == SyncState.OFFLINE
    assert repository.local.get_last_sync() is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_successful_pass_advances_watermark():
    """Test that a second pass only sends what changed since the first."""
    sent_batches = []

    def handler(request):
        sent_batches.append(len(json.loads(request.content)["tasks"]))
        return _sync_response(request)

    repository = build_repository(handler)
    await repository.local.create(create_task_dto())
    await repository.local.create(create_task_dto())
    worker = SyncWorker(repository, interval_seconds=3600)

    first = await worker.sync_now()
    second = await worker.sync_now()

    assert first.state == SyncState.SYNCED
    assert first.sent == 2
    assert first.received == 2
    assert second.sent == 0
    assert sent_batches == [2]
    assert repository.local.get_last_sync() is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_held_back_tasks_are_sent_on_the_next_pass():
    """Test that a pass capped by the batch limit leaves the rest for later."""
    tasks = [create_task(updated_at=BASE_TIME - timedelta(hours=h)) for h in (3, 2, 1)]
    store = LocalKeyValueStore()
    store.set_json(TASKS_KEY, [t.to_wire() for t in tasks])
    sent_batches = []

    def handler(request):
        sent_batches.append([t["id"] for t in json.loads(request.content)["tasks"]])
        return _sync_response(request)

    repository = build_repository(handler, store=store, sync_batch_limit=2)
    worker = SyncWorker(repository, interval_seconds=3600)

    first = await worker.sync_now()
    second = await worker.sync_now()
    third = await worker.sync_now()

    assert sent_batches == [[tasks[0].id, tasks[1].id], [tasks[2].id]]
    assert (first.sent, second.sent, third.sent) == (2, 1, 0)
    assert repository.local.get_last_sync() > tasks[2].updated_at


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rate_limited_pass_reports_error():
    repository = build_repository(
        lambda request: httpx.Response(429, json={"error": "Bulk limit reached"}, headers={"Retry-After": "3600"})
    )
    await repository.local.create(create_task_dto())
    worker = SyncWorker(repository, interval_seconds=3600)

    status = await worker.sync_now()

    assert status.state == SyncState.ERROR
    assert status.error == "Bulk limit reached"
    assert repository.local.get_last_sync() is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_passes_are_collapsed():
    release = asyncio.Event()
    calls = []

    async def handler(request):
        calls.append(request)
        await release.wait()
        return _sync_response(request)

    repository = build_repository(handler)
    await repository.local.create(create_task_dto())
    worker = SyncWorker(repository, interval_seconds=3600)

    first = asyncio.create_task(worker.sync_now())
    second = asyncio.create_task(worker.sync_now())
    await asyncio.sleep(0.01)
    release.set()
    results = await asyncio.gather(first, second)

    assert len(calls) == 1
    assert results[0] is results[1]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_cancels():
    repository = build_repository(_sync_response, online=False)
    worker = SyncWorker(repository, interval_seconds=3600)
    seen = []
    worker.add_listener(seen.append)

    worker.start()
    timer = worker._timer
    worker.start()
    await asyncio.sleep(0.01)

    assert worker._timer is timer
    assert worker.is_running
    assert [s.state for s in seen] == [SyncState.CHECKING, SyncState.OFFLINE]

    await worker.stop()
    assert not worker.is_running
    await worker.stop()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_restart_changes_interval():
    repository = build_repository(_sync_response, online=False)
    worker = SyncWorker(repository, interval_seconds=3600)
    worker.start()

    await worker.restart(interval_seconds=1800)

    assert worker.interval_seconds == 1800
    assert worker.is_running
    await worker.stop()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_listener_errors_are_isolated():
    repository = build_repository(_sync_response, online=False)
    worker = SyncWorker(repository, interval_seconds=3600)
    received = []

    def broken(status):
        raise RuntimeError("listener bug")

    async def collecting(status):
        received.append(status.state)

    worker.add_listener(broken)
    unsubscribe = worker.add_listener(collecting)

    await worker.sync_now()
    unsubscribe()
    await worker.sync_now()

    assert received == [SyncState.CHECKING, SyncState.OFFLINE]
    assert worker.last_status.state == SyncState.OFFLINE
