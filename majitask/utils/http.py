"""Helpers shared by the serverless request handlers."""

import asyncio
import json
from typing import Any, Awaitable, Optional, TypeVar
from urllib.parse import parse_qs, urlsplit

from majitask.utils.errors import (
    MajiTaskError,
    RateLimitedError,
    TaskValidationError,
    status_code_for,
)

T = TypeVar("T")

JSON_HEADERS = {"Content-Type": "application/json"}


def run_async(coro: Awaitable[T]) -> T:
    """Run a coroutine on the handler's event loop."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = None
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def json_response(status_code: int, payload: Any, headers: Optional[dict] = None) -> dict:
    return {
        "statusCode": status_code,
        "headers": {**JSON_HEADERS, **(headers or {})},
        "body": json.dumps(payload),
    }


def envelope(data: Any, status_code: int = 200, meta: Any = None, message: str = "OK") -> dict:
    """Success envelope ``{data, meta, message}``."""
    payload: dict = {"data": data, "message": message}
    if meta is not None:
        payload["meta"] = meta
    return json_response(status_code, payload)


def error_response(error: MajiTaskError) -> dict:
    """Failure envelope ``{error, code, details, message}``."""
    payload = error.to_payload()
    payload["message"] = error.message
    headers = None
    if isinstance(error, RateLimitedError) and error.retry_after is not None:
        headers = {"Retry-After": str(error.retry_after)}
    return json_response(status_code_for(error), payload, headers)


def parse_body(request: dict) -> Any:
    raw = request.get("body")
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise TaskValidationError("Request body must be valid JSON")


def request_path(request: dict) -> str:
    """Path without query string or the ``/api`` prefix."""
    path = urlsplit(request.get("path") or "/").path.rstrip("/") or "/"
    if path == "/api" or path.startswith("/api/"):
        path = path[4:] or "/"
    return path


def query_params(request: dict) -> dict:
    """Single-valued query parameters, from ``query`` or the path's query string."""
    params = dict(request.get("query") or {})
    query_string = urlsplit(request.get("path") or "").query
    for key, values in parse_qs(query_string).items():
        params.setdefault(key, values[-1])
    return {k: (v[-1] if isinstance(v, list) else v) for k, v in params.items()}


def header(request: dict, name: str) -> Optional[str]:
    for key, value in (request.get("headers") or {}).items():
        if key.lower() == name.lower():
            return value
    return None
