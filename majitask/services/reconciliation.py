"""Bulk-sync planner - last-writer-wins merge of candidate tasks into a user's task set."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from majitask.models.sync import SyncCandidate, SyncError, SyncResult
from majitask.models.task import Task, apply_completion_rules, utcnow, validate_payload
from majitask.utils.errors import TaskValidationError

# Fields a sync candidate is allowed to overwrite on an existing task
_MERGED_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "category",
    "tags",
    "deadline",
    "time_spent",
    "estimated_duration",
    "progress",
)


def _row_summary(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, BaseModel):
        return raw.model_dump(mode="json", by_alias=True)
    return {"value": repr(raw)}


@dataclass
class SyncPlan:
    """Outcome of matching one batch, before anything is written."""
    inserts: list[dict] = field(default_factory=list)
    updates: list[dict] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    errors: list[SyncError] = field(default_factory=list)

    @property
    def rows(self) -> list[dict]:
        """Every accepted row, ready for one batch upsert."""
        return self.inserts + self.updates

    def result(self) -> SyncResult:
        return SyncResult(
            imported=len(self.inserts),
            updated=len(self.updates),
            unchanged=len(self.unchanged),
            conflicts=list(self.conflicts),
            errors=list(self.errors),
        )


class _Index:
    """Existing tasks by id and by title, including rows planned in this batch."""

    def __init__(self, tasks: Iterable[Task]):
        self.by_id: dict[str, Task] = {}
        self.by_title: dict[str, Task] = {}
        for task in tasks:
            self.put(task)

    def put(self, task: Task, alias: Optional[str] = None) -> None:
        previous = self.by_id.get(task.id)
        if previous is not None and self.by_title.get(previous.title) is previous:
            del self.by_title[previous.title]
        self.by_id[task.id] = task
        if alias:
            self.by_id[alias] = task
        self.by_title.setdefault(task.title, task)

    def match(self, candidate: SyncCandidate) -> Optional[Task]:
        if candidate.id and candidate.id in self.by_id:
            return self.by_id[candidate.id]
        return self.by_title.get(candidate.title)


def _insert_row(candidate: SyncCandidate, user_id: Optional[str], declared: datetime, now: datetime) -> dict:
    # Unmatched ids may belong to another user's row; never write through them
    values = candidate.model_dump(exclude={"id"})
    values.update(
        id=str(uuid.uuid4()),
        user_id=user_id,
        created_at=candidate.created_at or now,
        updated_at=declared,
        subtask_ids=[],
        view_count=0,
        edit_count=0,
    )
    return Task.model_validate(apply_completion_rules(values, now)).model_dump(mode="json")


def _update_row(existing: Task, candidate: SyncCandidate, declared: datetime, now: datetime) -> dict:
    values = existing.model_dump()
    incoming = candidate.model_dump()
    for name in _MERGED_FIELDS:
        values[name] = incoming[name]
    values["completed_at"] = candidate.completed_at or existing.completed_at
    values["updated_at"] = declared
    return Task.model_validate(apply_completion_rules(values, now)).model_dump(mode="json")


def plan_sync(
    candidates: list[Any],
    existing: list[Task],
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SyncPlan:
    """
    Classify each candidate against the caller's existing tasks.

    A candidate matches an existing task by id, otherwise by exact title.
    No match means an insert under a fresh id. On a match the stored ``updated_at`` is
    compared with the candidate's (missing means now): stored strictly newer
    is a conflict and the stored row is left alone, equal is a no-op, and
    older means the candidate overwrites the stored fields. Rows failing
    validation are reported in ``errors`` and never stop the batch.
    """
    now = now or utcnow()
    index = _Index(existing)
    plan = SyncPlan()

    for raw in candidates:
        try:
            candidate = validate_payload(SyncCandidate, raw)
        except TaskValidationError as e:
            plan.errors.append(SyncError(task=_row_summary(raw), error=e.message))
            continue

        declared = candidate.updated_at or now
        match = index.match(candidate)

        try:
            if match is None:
                row = _insert_row(candidate, user_id, declared, now)
                plan.inserts.append(row)
                index.put(Task.model_validate(row), alias=candidate.id)
                continue

            if match.updated_at > declared:
                plan.conflicts.append(candidate.id or match.id)
                continue

            if match.updated_at == declared:
                plan.unchanged.append(match.id)
                continue

            owner = index.by_title.get(candidate.title)
            if owner is not None and owner.id != match.id:
                raise TaskValidationError(f"Task with title '{candidate.title}' already exists")

            row = _update_row(match, candidate, declared, now)
            planned = next((r for r in plan.rows if r["id"] == match.id), None)
            if planned is not None:
                planned.update(row)
            else:
                plan.updates.append(row)
            index.put(Task.model_validate(row), alias=candidate.id)
        except (TaskValidationError, ValueError) as e:
            message = e.message if isinstance(e, TaskValidationError) else str(e)
            plan.errors.append(SyncError(task=_row_summary(raw), error=message))

    return plan
