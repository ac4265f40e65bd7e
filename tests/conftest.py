"""Shared fixtures: in-memory storage tiers, service doubles and a frozen clock."""

import os
import pytest
from unittest.mock import AsyncMock, Mock
from freezegun import freeze_time

# Storage credentials are placeholders; no test reaches a real project
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("LOG_FORMAT", "text")

from majitask.services.local_adapter import LocalAdapter  # noqa: E402
from majitask.services.local_store import LocalKeyValueStore  # noqa: E402
from majitask.services.task_service import TaskService  # noqa: E402
from tests.utils.fakes import InMemoryTaskTable  # noqa: E402

USER_ID = "6f1c2b1e-0a4d-4c55-9d3c-1f7d2f0b9a10"


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def kv_store():
    """In-memory key/value store."""
    return LocalKeyValueStore()


@pytest.fixture
def local_adapter(kv_store):
    return LocalAdapter(kv_store)


@pytest.fixture
def task_table():
    return InMemoryTaskTable()


@pytest.fixture
def task_service(task_table):
    return TaskService(task_table)


@pytest.fixture
def mock_supabase_client():
    """Supabase client double; tests attach table and auth behaviour as needed."""
    client = Mock()
    client.table = Mock(return_value=Mock())
    return client


@pytest.fixture
def mock_repository():
    """Repository double with every operation as an AsyncMock."""
    repository = Mock()
    for name in ("get_all", "get", "create", "update", "remove", "add_comment", "get_comments", "sync"):
        setattr(repository, name, AsyncMock())
    return repository


@pytest.fixture
def freeze_time_fixture():
    """Pins the clock so default timestamps are deterministic."""
    with freeze_time("2024-12-09 12:00:00") as frozen_time:
        yield frozen_time
