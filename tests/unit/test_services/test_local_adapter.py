"""Tests for the local store adapter."""

import pytest
from datetime import timedelta

from majitask.services.local_adapter import generate_local_id, is_local_id
from majitask.utils.config import COMMENTS_KEY, TASKS_KEY
from majitask.utils.errors import NotFoundError, TaskValidationError
from tests.utils.assertions import assert_completion_invariant
from tests.utils.factories import BASE_TIME, create_task, create_task_dto


def _seed(kv_store, tasks):
    kv_store.set_json(TASKS_KEY, [t.to_wire() for t in tasks])


@pytest.mark.unit
def test_local_ids_are_distinct_from_uuids():
    task_id = generate_local_id()

    assert is_local_id(task_id)
    assert not is_local_id("6f1c2b1e-0a4d-4c55-9d3c-1f7d2f0b9a10")
    assert generate_local_id() != task_id


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_then_get_round_trip(local_adapter):
    """Test that a created task reads back with defaults filled."""
    dto = create_task_dto(status="todo", description=None, tags=None, priority=3)

    created = await local_adapter.create(dto)
    fetched = await local_adapter.get(created.id)

    assert is_local_id(created.id)
    assert fetched.title == dto["title"]
    assert fetched.priority == 3
    assert fetched.category == dto["category"]
    assert fetched.progress == 0
    assert fetched.view_count == 1
    assert_completion_invariant(fetched)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_done_task_is_complete(local_adapter):
    created = await local_adapter.create(create_task_dto(status="done"))

    assert created.progress == 100
    assert created.completed_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_rejects_invalid_input(local_adapter):
    with pytest.raises(TaskValidationError):
        await local_adapter.create({"title": "", "priority": 2})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_counts_views(local_adapter):
    created = await local_adapter.create(create_task_dto())

    await local_adapter.get(created.id)
    second = await local_adapter.get(created.id)

    assert second.view_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_missing_raises_not_found(local_adapter):
    with pytest.raises(NotFoundError):
        await local_adapter.get("local_missing")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_toggles_completion(local_adapter):
    """Test transitions into and out of done."""
    created = await local_adapter.create(create_task_dto())

    done = await local_adapter.update(created.id, {"status": "done"})
    assert done.progress == 100
    assert done.completed_at is not None
    assert done.edit_count == 1
    assert done.updated_at >= created.updated_at

    reopened = await local_adapter.update(created.id, {"status": "in_progress"})
    assert reopened.progress == 0
    assert reopened.completed_at is None
    assert reopened.edit_count == 2
    assert_completion_invariant(reopened)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_missing_raises_not_found(local_adapter):
    with pytest.raises(NotFoundError):
        await local_adapter.update("local_missing", {"title": "x"})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_subtask_linkage_is_maintained(local_adapter):
    """Test parent/subtask links on create, move and delete."""
    parent = await local_adapter.create(create_task_dto())
    other = await local_adapter.create(create_task_dto())
    child = await local_adapter.create(create_task_dto(parentId=parent.id))

    assert (await local_adapter.get(parent.id)).subtask_ids == [child.id]

    await local_adapter.update(child.id, {"parentId": other.id})
    assert (await local_adapter.get(parent.id)).subtask_ids == []
    assert (await local_adapter.get(other.id)).subtask_ids == [child.id]

    await local_adapter.remove(other.id)
    assert (await local_adapter.get(child.id)).parent_id is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_with_unknown_parent_raises(local_adapter):
    with pytest.raises(NotFoundError):
        await local_adapter.create(create_task_dto(parentId="local_missing"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_task_cannot_be_its_own_parent(local_adapter):
    created = await local_adapter.create(create_task_dto())

    with pytest.raises(TaskValidationError):
        await local_adapter.update(created.id, {"parentId": created.id})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_remove_cascades_comments(local_adapter, kv_store):
    keep = await local_adapter.create(create_task_dto())
    doomed = await local_adapter.create(create_task_dto())
    await local_adapter.add_comment(keep.id, "stays")
    await local_adapter.add_comment(doomed.id, "goes")

    await local_adapter.remove(doomed.id)

    stored = kv_store.get_json(COMMENTS_KEY)
    assert [c["body"] for c in stored] == ["stays"]
    with pytest.raises(NotFoundError):
        await local_adapter.remove(doomed.id)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_comments_newest_first(local_adapter, freeze_time_fixture):
    task = await local_adapter.create(create_task_dto())
    await local_adapter.add_comment(task.id, "first")
    freeze_time_fixture.tick(timedelta(minutes=1))
    await local_adapter.add_comment(task.id, "second")

    page = await local_adapter.get_comments(task.id, page=1, limit=1)

    assert [c.body for c in page.data] == ["second"]
    assert page.meta.total == 2
    assert page.meta.has_next is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_comment_on_missing_task_raises(local_adapter):
    with pytest.raises(NotFoundError):
        await local_adapter.add_comment("local_missing", "hello")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_filters_and_default_sort(local_adapter, kv_store):
    """Test status/search/category filters and created_at desc ordering."""
    tasks = [
        create_task(title="Buy milk", category="Home", created_at=BASE_TIME - timedelta(days=3)),
        create_task(title="Write report", description="quarterly MILK numbers", category="Work",
                    created_at=BASE_TIME - timedelta(days=1)),
        create_task(title="Ship release", status="done", category="Work",
                    created_at=BASE_TIME - timedelta(days=2)),
    ]
    _seed(kv_store, tasks)

    everything = await local_adapter.get_all()
    assert [t.title for t in everything.data] == ["Write report", "Ship release", "Buy milk"]

    searched = await local_adapter.get_all({"search": "milk"})
    assert {t.title for t in searched.data} == {"Buy milk", "Write report"}

    work_done = await local_adapter.get_all({"category": "Work", "status": "done"})
    assert [t.title for t in work_done.data] == ["Ship release"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_sort_values_go_last(local_adapter, kv_store):
    tasks = [
        create_task(title="No deadline"),
        create_task(title="Soon", deadline=BASE_TIME + timedelta(days=1)),
        create_task(title="Later", deadline=BASE_TIME + timedelta(days=5)),
    ]
    _seed(kv_store, tasks)

    ascending = await local_adapter.get_all({"sortBy": "deadline", "order": "asc"})
    descending = await local_adapter.get_all({"sortBy": "deadline", "order": "desc"})

    assert [t.title for t in ascending.data] == ["Soon", "Later", "No deadline"]
    assert [t.title for t in descending.data] == ["Later", "Soon", "No deadline"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_pages_cover_every_task_once(local_adapter, kv_store):
    """Test that walking pages via hasNext yields each task exactly once."""
    tasks = [create_task(priority=(i % 4) + 1) for i in range(23)]
    _seed(kv_store, tasks)

    seen = []
    page_number = 1
    while True:
        page = await local_adapter.get_all({"sortBy": "priority", "limit": 5, "page": page_number})
        seen.extend(t.id for t in page.data)
        if not page.meta.has_next:
            break
        page_number += 1

    single = await local_adapter.get_all({"sortBy": "priority", "limit": 100})
    assert seen == [t.id for t in single.data]
    assert len(set(seen)) == 23
    assert page_number == 5


@pytest.mark.unit
@pytest.mark.asyncio
async def test_oversized_page_is_rejected_like_the_server(local_adapter):
    with pytest.raises(TaskValidationError) as exc_info:
        await local_adapter.get_all({"limit": 101})

    assert exc_info.value.code == "VALIDATION"
    assert exc_info.value.message.startswith("limit")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_all_respects_watermark(local_adapter, kv_store):
    old = create_task(updated_at=BASE_TIME - timedelta(hours=2))
    new = create_task(updated_at=BASE_TIME)
    _seed(kv_store, [old, new])

    changed = await local_adapter.list_all(updated_after=BASE_TIME - timedelta(hours=1))

    assert [t.id for t in changed] == [new.id]


@pytest.mark.unit
def test_last_sync_watermark_round_trip(local_adapter):
    assert local_adapter.get_last_sync() is None

    local_adapter.set_last_sync(BASE_TIME)

    assert local_adapter.get_last_sync() == BASE_TIME
