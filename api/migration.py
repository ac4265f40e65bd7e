"""Migration API endpoint for Vercel (import, preview and status)."""

import json
from typing import Optional

from majitask.services.auth import authenticate
from majitask.services.migration import MigrationService
from majitask.services.rate_limiter import get_bulk_limiter, get_standard_limiter
from majitask.utils.errors import MajiTaskError, NotFoundError
from majitask.utils.http import (
    error_response,
    header,
    json_response,
    parse_body,
    request_path,
    run_async,
)
from majitask.utils.logging import correlation_context, get_structured_logger, setup_logging

setup_logging()
logger = get_structured_logger(__name__)

_service: Optional[MigrationService] = None


def get_migration_service() -> MigrationService:
    """Get or create the migration service."""
    global _service
    if _service is None:
        _service = MigrationService()
    return _service


async def handle_request(request: dict) -> dict:
    method = (request.get("method") or "GET").upper()
    path = request_path(request)

    with correlation_context(header(request, "x-request-id")):
        try:
            user = await authenticate(request.get("headers"))
            service = get_migration_service()

            if path == "/migration/localstorage" and method == "POST":
                get_bulk_limiter().hit(user.id)
                report = await service.import_tasks(
                    user.id, parse_body(request), user_agent=header(request, "user-agent")
                )
                return json_response(report.status_code, report.body)

            if path == "/migration/preview" and method == "POST":
                get_standard_limiter().hit(user.id)
                return json_response(200, await service.preview(user.id, parse_body(request)))

            if path == "/migration/status" and method == "GET":
                return json_response(200, await service.status(user.id))

            raise NotFoundError(f"No route for {method} {path}")
        except MajiTaskError as e:
            logger.info("Migration request failed", path=path, error_code=e.code, error=e.message)
            response = error_response(e)
            body = json.loads(response["body"])
            body["success"] = False
            response["body"] = json.dumps(body)
            return response


def handler(request):
    """Route a migration API request."""
    try:
        return run_async(handle_request(request))
    except Exception as e:
        logger.error("Unhandled migration API error", error=str(e), exc_info=True)
        return json_response(500, {"error": "Internal server error during migration", "success": False})
