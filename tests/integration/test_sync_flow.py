"""End-to-end tests: offline edits through the API into the task table."""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from api.tasks import handle_request
from majitask.models.sync import SyncState
from majitask.services.auth import AuthenticatedUser
from majitask.services.connectivity import AdapterKind
from majitask.services.rate_limiter import get_bulk_limiter, get_standard_limiter
from majitask.services.sync_worker import SyncWorker
from majitask.services.task_service import TaskService
from majitask.utils.errors import ConflictError
from tests.utils.factories import create_task_dto
from tests.utils.fakes import InMemoryTaskTable
from tests.utils.helpers import build_repository

USER = AuthenticatedUser(id="6f1c2b1e-0a4d-4c55-9d3c-1f7d2f0b9a10", email="ada@example.com")


async def route_to_api(request: httpx.Request) -> httpx.Response:
    """Serve the remote adapter's traffic with the task endpoint itself."""
    response = await handle_request({
        "method": request.method,
        "path": request.url.raw_path.decode("ascii"),
        "headers": dict(request.headers),
        "body": request.content.decode("utf-8"),
    })
    return httpx.Response(
        response["statusCode"],
        headers=response["headers"],
        content=response["body"].encode("utf-8"),
    )


@pytest.fixture
def server():
    service = TaskService(InMemoryTaskTable())
    get_standard_limiter().reset()
    get_bulk_limiter().reset()
    with patch("api.tasks.get_task_service", return_value=service), \
            patch("api.tasks.authenticate", new=AsyncMock(return_value=USER)):
        yield service
    get_standard_limiter().reset()
    get_bulk_limiter().reset()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_offline_edits_reach_the_server_once(server):
    """Test create offline, come online, sync twice, read back remotely."""
    repository = build_repository(route_to_api, online=False)
    worker = SyncWorker(repository, interval_seconds=3600)

    first = await repository.create(create_task_dto(title="Book flights"))
    await repository.create(create_task_dto(title="Renew insurance"))
    await repository.update(first.id, {"status": "done"})
    assert repository.current_adapter_kind == AdapterKind.LOCAL

    repository.monitor.set_online(True)
    status = await worker.sync_now()

    assert status.state == SyncState.SYNCED
    assert status.sent == 2
    assert status.received == 2
    stored = {row["title"]: row for row in server.table.rows.values()}
    assert set(stored) == {"Book flights", "Renew insurance"}
    assert stored["Book flights"]["progress"] == 100
    assert stored["Book flights"]["user_id"] == USER.id

    again = await worker.sync_now()
    assert again.sent == 0

    full = await repository.sync()
    assert full.imported == 0
    assert full.updated == 0
    assert full.unchanged == 2
    assert len(server.table.upsert_calls) == 1

    page = await repository.get_all({"sortBy": "title", "order": "asc"})
    assert [t.title for t in page.data] == ["Book flights", "Renew insurance"]
    assert all(not t.id.startswith("local_") for t in page.data)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stale_offline_copy_is_reported_as_conflict(server):
    repository = build_repository(route_to_api, online=False)
    local_task = await repository.create(create_task_dto(title="Call plumber", priority=1))

    repository.monitor.set_online(True)
    await repository.sync()
    remote_task = (await repository.get_all()).data[0]
    await repository.update(remote_task.id, {"priority": 4})

    result = await repository.sync()

    assert result.conflicts == [local_task.id]
    assert (await repository.get(remote_task.id)).priority == 4


@pytest.mark.integration
@pytest.mark.asyncio
async def test_server_conflicts_are_not_masked_by_fallback(server):
    repository = build_repository(route_to_api)
    await repository.create(create_task_dto(title="Unique chore"))

    with pytest.raises(ConflictError):
        await repository.create(create_task_dto(title="Unique chore"))

    assert (await repository.local.get_all()).meta.total == 0
