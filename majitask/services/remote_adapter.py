"""Remote store adapter - authenticated HTTP calls against the task API."""

from typing import Any, Callable, Optional, Union

import httpx

from majitask.models.comment import Comment, CommentCreate, CommentType
from majitask.models.sync import SyncResult
from majitask.models.task import (
    Page,
    PageMeta,
    Task,
    TaskCreate,
    TaskFilters,
    TaskUpdate,
    validate_payload,
)
from majitask.utils.config import SyncConfig
from majitask.utils.errors import InternalError, TransportError, error_from_response
from majitask.utils.logging import get_structured_logger, log_timing, mask_token

logger = get_structured_logger(__name__)

TokenProvider = Callable[[], Optional[str]]


class RemoteAdapter:
    """
    Task adapter for the REST API.

    Stateless per call apart from the pooled HTTP client. Responses use the
    ``{data, meta, message}`` envelope; any non-2xx response is turned into
    the matching typed error, and network failures, timeouts and 5xx
    responses all surface as TransportError.
    """

    kind = "remote"

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token_provider = token_provider
        self.base_url = (base_url or SyncConfig.API_BASE_URL).rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else SyncConfig.HTTP_TIMEOUT_SECONDS
        )

    async def __aenter__(self) -> "RemoteAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict] = None,
    ) -> dict:
        url = f"{self.base_url}/api{path}"
        headers = self._headers()
        try:
            with log_timing("remote_request", logger=logger, method=method, path=path):
                response = await self.client.request(method, url, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Remote request timed out", method=method, path=path, error=str(e))
            raise TransportError(f"Request to {path} timed out")
        except httpx.HTTPError as e:
            logger.warning("Remote request failed", method=method, path=path, error=str(e))
            raise TransportError(f"Request to {path} failed: {e}")

        try:
            payload = response.json() if response.content else {}
        except ValueError:
            payload = None

        if response.is_error:
            error = error_from_response(response.status_code, payload, dict(response.headers))
            logger.info(
                "Remote request rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                error_code=error.code,
                token=mask_token(headers.get("Authorization", "").removeprefix("Bearer ")),
            )
            raise error

        if not isinstance(payload, dict):
            raise InternalError(f"Malformed response from {path}")
        return payload

    # Task operations

    async def get_all(self, filters: Optional[Union[TaskFilters, dict]] = None) -> Page[Task]:
        filters = validate_payload(TaskFilters, filters)
        payload = await self._request("GET", "/tasks", params=filters.to_query_params())
        return Page[Task](
            data=[Task.model_validate(item) for item in payload.get("data") or []],
            meta=PageMeta.model_validate(payload.get("meta") or {}),
        )

    async def get(self, task_id: str) -> Task:
        payload = await self._request("GET", f"/tasks/{task_id}")
        return Task.model_validate(payload.get("data"))

    async def create(self, dto: Union[TaskCreate, dict]) -> Task:
        dto = validate_payload(TaskCreate, dto)
        payload = await self._request("POST", "/tasks", json=dto.to_wire(exclude_none=True))
        return Task.model_validate(payload.get("data"))

    async def update(self, task_id: str, updates: Union[TaskUpdate, dict]) -> Task:
        updates = validate_payload(TaskUpdate, updates)
        body = updates.to_wire(exclude_unset=True)
        payload = await self._request("PUT", f"/tasks/{task_id}", json=body)
        return Task.model_validate(payload.get("data"))

    async def remove(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

    # Comments

    async def add_comment(self, task_id: str, body: str, comment_type: CommentType = CommentType.COMMENT) -> Comment:
        comment = validate_payload(CommentCreate, {"body": body, "comment_type": comment_type})
        payload = await self._request("POST", f"/tasks/{task_id}/comments", json=comment.to_wire())
        return Comment.model_validate(payload.get("data"))

    async def get_comments(self, task_id: str, page: int = 1, limit: int = 20) -> Page[Comment]:
        payload = await self._request(
            "GET", f"/tasks/{task_id}/comments", params={"page": page, "limit": limit}
        )
        return Page[Comment](
            data=[Comment.model_validate(item) for item in payload.get("data") or []],
            meta=PageMeta.model_validate(payload.get("meta") or {}),
        )

    # Bulk sync and migration (remote only)

    async def sync(self, tasks: list[Task]) -> SyncResult:
        """Post a batch of candidate tasks to the bulk-sync endpoint."""
        body = {"tasks": [t.to_wire() for t in tasks]}
        payload = await self._request("POST", "/tasks/sync/bulk", json=body)
        result = SyncResult.model_validate(payload.get("data") or {})
        logger.info(
            "Bulk sync completed",
            sent=len(tasks),
            imported=result.imported,
            updated=result.updated,
            conflicts=len(result.conflicts),
            errors=len(result.errors),
        )
        return result

    async def migrate(self, tasks: list[dict], metadata: Optional[dict] = None) -> dict:
        body: dict = {"tasks": tasks}
        if metadata:
            body["metadata"] = metadata
        return await self._request("POST", "/migration/localstorage", json=body)

    async def preview_migration(self, tasks: list[dict], metadata: Optional[dict] = None) -> dict:
        body: dict = {"tasks": tasks}
        if metadata:
            body["metadata"] = metadata
        return await self._request("POST", "/migration/preview", json=body)

    async def migration_status(self) -> dict:
        return await self._request("GET", "/migration/status")
