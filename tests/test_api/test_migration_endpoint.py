"""Tests for the migration API endpoint."""

import pytest
from unittest.mock import AsyncMock, patch

from api.migration import handler
from majitask.services.auth import AuthenticatedUser
from majitask.services.migration import MigrationService
from majitask.services.rate_limiter import get_bulk_limiter, get_standard_limiter
from majitask.services.task_service import TaskService
from tests.utils.assertions import assert_valid_response
from tests.utils.factories import create_exported_task
from tests.utils.fakes import InMemoryTaskTable
from tests.utils.helpers import create_vercel_request

USER = AuthenticatedUser(id="6f1c2b1e-0a4d-4c55-9d3c-1f7d2f0b9a10", email="ada@example.com")


@pytest.fixture
def migration_table():
    table = InMemoryTaskTable()
    service = MigrationService(TaskService(table), max_tasks=20)
    get_standard_limiter().reset()
    get_bulk_limiter().reset()
    with patch("api.migration.get_migration_service", return_value=service), \
            patch("api.migration.authenticate", new=AsyncMock(return_value=USER)):
        yield table
    get_standard_limiter().reset()
    get_bulk_limiter().reset()


@pytest.mark.unit
def test_import_creates_tasks(migration_table):
    tasks = [create_exported_task(), create_exported_task()]

    response = handler(create_vercel_request(
        "POST", "/api/migration/localstorage",
        body={"tasks": tasks, "metadata": {"version": "1.0"}},
        headers={"content-type": "application/json", "User-Agent": "MajiTask/1.0"},
    ))

    body = assert_valid_response(response)
    assert body["success"] is True
    assert body["importedCount"] == 2
    assert body["metadata"]["userAgent"] == "MajiTask/1.0"
    assert len(migration_table.rows) == 2


@pytest.mark.unit
def test_import_with_bad_rows_is_207(migration_table):
    tasks = [create_exported_task(), create_exported_task(createdAt="someday")]

    body = assert_valid_response(handler(create_vercel_request(
        "POST", "/api/migration/localstorage", body={"tasks": tasks}
    )), 207)

    assert body["errorCount"] == 1
    assert body["rejected"][0]["index"] == 1


@pytest.mark.unit
def test_import_of_too_many_tasks_is_rejected(migration_table):
    tasks = [create_exported_task() for _ in range(21)]

    body = assert_valid_response(handler(create_vercel_request(
        "POST", "/api/migration/localstorage", body={"tasks": tasks}
    )), 400)

    assert body["success"] is False
    assert body["code"] == "VALIDATION"
    assert migration_table.rows == {}


@pytest.mark.unit
def test_preview_leaves_storage_alone(migration_table):
    tasks = [create_exported_task(status="done"), create_exported_task()]

    body = assert_valid_response(handler(create_vercel_request(
        "POST", "/api/migration/preview", body={"tasks": tasks}
    )))

    assert body["preview"]["newTasks"] == 2
    assert body["preview"]["statusDistribution"]["done"] == 1
    assert migration_table.rows == {}


@pytest.mark.unit
def test_status(migration_table):
    body = assert_valid_response(handler(create_vercel_request("GET", "/api/migration/status")))

    assert body["capabilities"]["supportsLocalStorageImport"] is True
    assert body["capabilities"]["maxTasksPerBatch"] == 20
    assert body["currentUserStats"]["existingTasks"] == 0


@pytest.mark.unit
def test_unknown_route(migration_table):
    body = assert_valid_response(handler(create_vercel_request("GET", "/api/migration/unknown")), 404)

    assert body["success"] is False


@pytest.mark.unit
def test_missing_token_is_unauthorized():
    body = assert_valid_response(handler(create_vercel_request("GET", "/api/migration/status", token=None)), 401)

    assert body["code"] == "UNAUTHORIZED"
