"""Migration importer - folds an exported task collection into the remote store."""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from majitask.models.migration import ExportedTask, MigrationRequest
from majitask.models.task import ensure_utc, utcnow, validate_payload
from majitask.services.reconciliation import plan_sync
from majitask.services.task_service import TaskService
from majitask.utils.config import SyncConfig
from majitask.utils.errors import TaskValidationError
from majitask.utils.logging import get_structured_logger, log_timing

logger = get_structured_logger(__name__)

# Epoch values at or above this are milliseconds (1e11 s is year 5138)
EPOCH_MS_THRESHOLD = 10 ** 11

_NUMERIC = re.compile(r"^\d+(\.\d+)?$")

# (camelCase, snake_case, defaults to now when missing)
_TIMESTAMP_FIELDS = (
    ("createdAt", "created_at", True),
    ("updatedAt", "updated_at", True),
    ("deadline", "deadline", False),
    ("completedAt", "completed_at", False),
)

SUPPORTED_FIELDS = [
    "title", "description", "status", "priority", "category", "tags",
    "createdAt", "updatedAt", "deadline", "completedAt",
    "timeSpent", "estimatedDuration", "progress",
]


def normalize_timestamp(value: Any) -> Optional[datetime]:
    """
    Convert an exported timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (no offset means UTC), epoch seconds or epoch
    milliseconds (as numbers or digit strings) and datetimes. Empty values
    give None; anything else raises ValueError.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ValueError("Invalid timestamp")
    if isinstance(value, str):
        text = value.strip()
        if _NUMERIC.match(text):
            value = float(text)
        else:
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            try:
                return ensure_utc(datetime.fromisoformat(text))
            except ValueError:
                raise ValueError(f"Invalid date format: {value!r}")
    if isinstance(value, (int, float)):
        if value <= 0:
            raise ValueError("Invalid timestamp")
        seconds = value / 1000 if value >= EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValueError(f"Timestamp out of range: {value!r}")
    raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")


def normalize_record(raw: dict, now: Optional[datetime] = None) -> dict:
    """Canonical timestamps for one exported record; other fields pass through."""
    now = now or utcnow()
    record = dict(raw)
    for camel, snake, required in _TIMESTAMP_FIELDS:
        value = record.pop(camel, None)
        if value is None:
            value = record.pop(snake, None)
        else:
            record.pop(snake, None)
        try:
            parsed = normalize_timestamp(value)
        except ValueError as e:
            raise TaskValidationError(f"{camel}: {e}", details=[{"loc": [camel], "msg": str(e)}])
        record[snake] = parsed if parsed is not None or not required else now
    return record


def validate_export(tasks: list[Any], now: Optional[datetime] = None) -> tuple[list[ExportedTask], list[dict]]:
    """Split an export into valid tasks and rejected records (with their position)."""
    now = now or utcnow()
    valid: list[ExportedTask] = []
    rejected: list[dict] = []
    for index, raw in enumerate(tasks):
        if not isinstance(raw, dict):
            rejected.append({"index": index, "id": None, "title": None, "errors": ["Task must be an object"]})
            continue
        try:
            valid.append(validate_payload(ExportedTask, normalize_record(raw, now)))
        except TaskValidationError as e:
            rejected.append({
                "index": index,
                "id": raw.get("id"),
                "title": raw.get("title"),
                "errors": e.details or [e.message],
            })
    return valid, rejected


@dataclass
class MigrationReport:
    status_code: int
    body: dict


class MigrationService:
    """Import, preview and capability reporting for exported task collections."""

    def __init__(self, task_service: Optional[TaskService] = None, max_tasks: Optional[int] = None):
        self.task_service = task_service or TaskService()
        self.max_tasks = max_tasks or SyncConfig.MIGRATION_MAX_TASKS

    def parse_request(self, body: Any) -> MigrationRequest:
        request = validate_payload(MigrationRequest, body)
        if len(request.tasks) > self.max_tasks:
            raise TaskValidationError(
                f"tasks: at most {self.max_tasks} tasks per migration batch",
                details={"received": len(request.tasks), "max": self.max_tasks},
            )
        return request

    async def import_tasks(self, user_id: str, body: Any, user_agent: Optional[str] = None) -> MigrationReport:
        request = self.parse_request(body)
        metadata = request.metadata
        logger.info(
            "Starting task migration",
            task_count=len(request.tasks),
            export_version=metadata.version if metadata else None,
        )

        if not request.tasks:
            return MigrationReport(200, {
                "success": True,
                "importedCount": 0,
                "updatedCount": 0,
                "unchangedCount": 0,
                "conflictIds": [],
                "skippedCount": 0,
                "errorCount": 0,
                "totalTasks": 0,
                "message": "No tasks to import",
            })

        valid, rejected = validate_export(request.tasks)
        with log_timing("migration_import", logger=logger, task_count=len(request.tasks)):
            result = await self.task_service.sync_bulk(
                user_id, [task.model_dump() for task in valid], source="migration"
            )

        error_count = len(result.errors) + len(rejected)
        response: dict[str, Any] = {
            "success": True,
            "importedCount": result.imported,
            "updatedCount": result.updated,
            "unchangedCount": result.unchanged,
            "conflictIds": result.conflicts,
            "skippedCount": len(result.conflicts),
            "errorCount": error_count,
            "rejected": rejected,
            "totalTasks": len(request.tasks),
            "message": (
                f"Migration completed: {result.imported} imported, {result.updated} updated, "
                f"{len(result.conflicts)} conflicts"
            ),
            "metadata": {
                "migrationTimestamp": utcnow().isoformat(),
                "userAgent": user_agent or (metadata.user_agent if metadata else None),
                "originalExportDate": metadata.exported_at.isoformat() if metadata and metadata.exported_at else None,
                "originalVersion": metadata.version if metadata else None,
            },
        }
        if result.conflicts:
            response["conflicts"] = {
                "ids": result.conflicts,
                "reason": "Server version is newer than imported version",
                "recommendation": "Review conflicted tasks manually to avoid data loss",
            }
        if result.errors:
            response["errors"] = [
                {
                    "task": {"id": err.task.get("id"), "title": err.task.get("title")},
                    "error": err.error,
                    "suggestion": "Check task data format and try again",
                }
                for err in result.errors
            ]

        logger.info(
            "Task migration completed",
            imported=result.imported,
            updated=result.updated,
            conflicts=len(result.conflicts),
            errors=error_count,
        )
        return MigrationReport(207 if error_count else 200, response)

    async def preview(self, user_id: str, body: Any) -> dict:
        """Classify an export against the user's tasks without writing anything."""
        request = self.parse_request(body)
        valid, rejected = validate_export(request.tasks)
        existing = await self.task_service.load_tasks(user_id)
        plan = plan_sync([task.model_dump() for task in valid], existing, user_id=user_id)

        categories: list[str] = []
        distribution = {"todo": 0, "in_progress": 0, "done": 0}
        created = []
        for task in valid:
            if task.category not in categories:
                categories.append(task.category)
            distribution[task.status.value] += 1
            created.append(task.created_at)

        warnings = []
        if plan.conflicts:
            warnings.append(f"{len(plan.conflicts)} tasks may have conflicts")
        if plan.updates:
            warnings.append(f"{len(plan.updates)} tasks may be updated")
        invalid = len(rejected) + len(plan.errors)
        if invalid:
            warnings.append(f"{invalid} tasks are invalid and will be skipped")
        if len(request.tasks) > 100:
            warnings.append("Large import - consider reviewing in batches")

        return {
            "success": True,
            "preview": {
                "totalTasks": len(request.tasks),
                "newTasks": len(plan.inserts),
                "potentialUpdates": len(plan.updates),
                "potentialConflicts": len(plan.conflicts),
                "unchangedTasks": len(plan.unchanged),
                "invalidTasks": invalid,
                "rejected": rejected,
                "categories": categories,
                "statusDistribution": distribution,
                "dateRange": {
                    "earliest": min(created).isoformat() if created else None,
                    "latest": max(created).isoformat() if created else None,
                },
                "estimatedDuration": f"{math.ceil(len(request.tasks) / 10)} seconds",
                "warnings": warnings,
            },
            "recommendations": [
                "Review the preview carefully before proceeding",
                "Backup your current tasks if you have many potential conflicts",
                "Import during low-activity periods for best performance",
            ],
        }

    async def status(self, user_id: str) -> dict:
        existing = await self.task_service.count_tasks(user_id)
        return {
            "success": True,
            "capabilities": {
                "supportsLocalStorageImport": True,
                "maxTasksPerBatch": self.max_tasks,
                "supportedFormats": ["localStorage-json"],
                "supportedFields": SUPPORTED_FIELDS,
            },
            "currentUserStats": {
                "existingTasks": existing,
                "canImport": True,
            },
            "recommendations": {
                "backup": "Consider exporting your current tasks before importing",
                "conflicts": "Review conflicts carefully to avoid data loss",
                "largeImports": "For imports over 100 tasks, consider doing them in batches",
            },
        }
