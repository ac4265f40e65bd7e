"""Task API endpoint for Vercel (tasks CRUD, comments and bulk sync)."""

import re
from typing import Optional

from majitask.services.auth import AuthenticatedUser, authenticate
from majitask.services.rate_limiter import get_bulk_limiter, get_standard_limiter
from majitask.services.task_service import TaskService
from majitask.utils.errors import MajiTaskError, NotFoundError, TaskValidationError
from majitask.utils.http import (
    envelope,
    error_response,
    header,
    json_response,
    parse_body,
    query_params,
    request_path,
    run_async,
)
from majitask.utils.logging import correlation_context, get_structured_logger, setup_logging

setup_logging()
logger = get_structured_logger(__name__)

_TASK_PATH = re.compile(r"^/tasks/(?P<task_id>[^/]+)$")
_COMMENTS_PATH = re.compile(r"^/tasks/(?P<task_id>[^/]+)/comments$")

_service: Optional[TaskService] = None


def get_task_service() -> TaskService:
    """Get or create the task service."""
    global _service
    if _service is None:
        _service = TaskService()
    return _service


def _int_param(params: dict, name: str, default: int) -> int:
    raw = params.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise TaskValidationError(f"{name}: must be an integer")


async def _dispatch(request: dict, user: AuthenticatedUser) -> dict:
    service = get_task_service()
    method = (request.get("method") or "GET").upper()
    path = request_path(request)
    params = query_params(request)

    if path == "/tasks/sync/bulk" and method == "POST":
        get_bulk_limiter().hit(user.id)
        body = parse_body(request)
        tasks = body.get("tasks") if isinstance(body, dict) else None
        if tasks is None:
            raise TaskValidationError("tasks: field required")
        result = await service.sync_bulk(user.id, tasks)
        return envelope(result.to_wire(), message="Sync completed")

    if path == "/tasks":
        if method == "GET":
            page = await service.list_tasks(user.id, params)
            return envelope(
                [t.to_wire() for t in page.data],
                meta=page.meta.to_wire(),
                message="Tasks retrieved",
            )
        if method == "POST":
            get_standard_limiter().hit(user.id)
            task = await service.create_task(user.id, parse_body(request))
            return envelope(task.to_wire(), status_code=201, message="Task created")

    match = _COMMENTS_PATH.match(path)
    if match:
        task_id = match.group("task_id")
        if method == "GET":
            page = await service.list_comments(
                user.id, task_id, _int_param(params, "page", 1), _int_param(params, "limit", 20)
            )
            return envelope(
                [c.to_wire() for c in page.data],
                meta=page.meta.to_wire(),
                message="Comments retrieved",
            )
        if method == "POST":
            get_standard_limiter().hit(user.id)
            body = parse_body(request)
            if not isinstance(body, dict):
                raise TaskValidationError("Request body must be an object")
            comment = await service.add_comment(
                user.id,
                task_id,
                body.get("body"),
                body.get("commentType") or body.get("comment_type") or "comment",
                user_name=user.name,
                user_email=user.email,
            )
            return envelope(comment.to_wire(), status_code=201, message="Comment added")

    match = _TASK_PATH.match(path)
    if match:
        task_id = match.group("task_id")
        if method == "GET":
            task = await service.get_task(user.id, task_id)
            return envelope(task.to_wire(), message="Task retrieved")
        if method == "PUT":
            get_standard_limiter().hit(user.id)
            task = await service.update_task(user.id, task_id, parse_body(request))
            return envelope(task.to_wire(), message="Task updated")
        if method == "DELETE":
            get_standard_limiter().hit(user.id)
            await service.delete_task(user.id, task_id)
            return envelope(None, message="Task deleted")

    raise NotFoundError(f"No route for {method} {path}")


async def handle_request(request: dict) -> dict:
    with correlation_context(header(request, "x-request-id")):
        try:
            user = await authenticate(request.get("headers"))
            return await _dispatch(request, user)
        except MajiTaskError as e:
            logger.info(
                "Task request failed",
                method=request.get("method"),
                path=request_path(request),
                error_code=e.code,
                error=e.message,
            )
            return error_response(e)


def handler(request):
    """Route a task API request."""
    try:
        return run_async(handle_request(request))
    except Exception as e:
        logger.error("Unhandled task API error", error=str(e), exc_info=True)
        return json_response(500, {"error": "Internal server error", "code": "INTERNAL"})
