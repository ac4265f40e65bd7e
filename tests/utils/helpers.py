"""Test helper functions."""

import json
from typing import Any, Callable, Dict, Optional

import httpx

from majitask.services.connectivity import ConnectivityMonitor
from majitask.services.local_adapter import LocalAdapter
from majitask.services.local_store import LocalKeyValueStore
from majitask.services.remote_adapter import RemoteAdapter
from majitask.services.task_repository import TaskRepository

API_BASE_URL = "http://majitask.test"


def create_vercel_request(
    method: str = "GET",
    path: str = "/api/tasks",
    body: Any = None,
    headers: Dict[str, str] = None,
    query: Dict[str, str] = None,
    token: Optional[str] = "test-token",
) -> Dict[str, Any]:
    """Create a Vercel request object for testing."""
    if headers is None:
        headers = {"content-type": "application/json"}
    if token:
        headers = {**headers, "Authorization": f"Bearer {token}"}

    return {
        "method": method,
        "path": path,
        "headers": headers,
        "body": json.dumps(body) if body is not None else "",
        "query": query or {},
    }


def response_json(response: Dict[str, Any]) -> Any:
    return json.loads(response["body"])


def build_remote_adapter(handler: Callable[[httpx.Request], httpx.Response], token: Optional[str] = "test-token") -> RemoteAdapter:
    """Remote adapter whose HTTP traffic goes to ``handler``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteAdapter(lambda: token, base_url=API_BASE_URL, client=client)


def build_repository(
    remote_handler: Callable[[httpx.Request], httpx.Response],
    token: Optional[str] = "test-token",
    online: bool = True,
    store: Optional[LocalKeyValueStore] = None,
    sync_batch_limit: Optional[int] = None,
) -> TaskRepository:
    """Repository wired to a mock transport and an in-memory local store."""
    holder = {"token": token}
    client = httpx.AsyncClient(transport=httpx.MockTransport(remote_handler))
    remote = RemoteAdapter(lambda: holder["token"], base_url=API_BASE_URL, client=client)
    local = LocalAdapter(store or LocalKeyValueStore())
    repository = TaskRepository(
        remote,
        local,
        token_provider=lambda: holder["token"],
        monitor=ConnectivityMonitor(online=online),
        sync_batch_limit=sync_batch_limit,
    )
    repository.token_holder = holder
    return repository


def unreachable(request: httpx.Request) -> httpx.Response:
    """Transport handler simulating a dropped connection."""
    raise httpx.ConnectError("connection refused", request=request)
