from datetime import datetime, timedelta, timezone

import pytest
from conftest import OTHER_OWNER, OWNER
from core.errors import NotFound, NotFoundInBin
from services.events import EventRepository


async def binned(repository, name="Gig", date="2025-06-01"):
    event = await repository.create(OWNER, {"name": name, "date": date, "time": "20:00"})
    await repository.soft_delete(OWNER, event.id)
    return event


# Purpose: verify delete then restore returns the event to the active list unchanged.
@pytest.mark.asyncio
async def test_soft_delete_restore_round_trip(repository, bin_manager):
    event = await binned(repository)

    assert [e.id for e in await bin_manager.list(OWNER)] == [event.id]
    assert await repository.list_active(OWNER) == []

    restored = await bin_manager.restore(OWNER, event.id)

    assert restored.deleted_at is None
    assert await bin_manager.list(OWNER) == []
    active = await repository.get(OWNER, event.id)
    assert (active.name, active.date, active.time) == (event.name, event.date, event.time)


# Purpose: verify the bin lists the most recently deleted event first.
@pytest.mark.asyncio
async def test_bin_list_orders_by_deleted_at_desc(session_factory, bin_manager):
    ticks = iter(
        datetime(2025, 6, 1, tzinfo=timezone.utc) + timedelta(minutes=i) for i in range(10)
    )
    repository = EventRepository(session_factory, clock=lambda: next(ticks))

    first = await binned(repository, name="First")
    second = await binned(repository, name="Second")

    assert [e.id for e in await bin_manager.list(OWNER)] == [second.id, first.id]


# Purpose: verify bin operations refuse active events and other owners' events.
@pytest.mark.asyncio
async def test_bin_ops_require_binned_owned_event(repository, bin_manager):
    active = await repository.create(OWNER, {"name": "Active", "date": "2025-06-01"})
    deleted = await binned(repository)

    with pytest.raises(NotFoundInBin):
        await bin_manager.restore(OWNER, active.id)
    with pytest.raises(NotFoundInBin):
        await bin_manager.purge_one(OWNER, active.id)
    with pytest.raises(NotFoundInBin):
        await bin_manager.restore(OTHER_OWNER, deleted.id)
    with pytest.raises(NotFoundInBin):
        await bin_manager.purge_one(OTHER_OWNER, deleted.id)

    assert await bin_manager.list(OTHER_OWNER) == []
    await repository.get(OWNER, active.id)


# Purpose: verify purge makes the event unreachable from both views.
@pytest.mark.asyncio
async def test_purge_one_is_permanent(repository, bin_manager):
    event = await binned(repository)

    await bin_manager.purge_one(OWNER, event.id)

    assert await bin_manager.list(OWNER) == []
    with pytest.raises(NotFound):
        await repository.get(OWNER, event.id)
    with pytest.raises(NotFoundInBin):
        await bin_manager.restore(OWNER, event.id)


# Purpose: verify emptying the bin removes only binned events of the caller.
@pytest.mark.asyncio
async def test_purge_all_leaves_active_and_other_owners(repository, bin_manager):
    await binned(repository, name="One")
    await binned(repository, name="Two")
    active = await repository.create(OWNER, {"name": "Keep", "date": "2025-06-01"})
    theirs = await repository.create(OTHER_OWNER, {"name": "Theirs", "date": "2025-06-01"})
    await repository.soft_delete(OTHER_OWNER, theirs.id)

    purged = await bin_manager.purge_all(OWNER)

    assert purged == 2
    assert await bin_manager.list(OWNER) == []
    assert [e.id for e in await repository.list_active(OWNER)] == [active.id]
    assert [e.id for e in await bin_manager.list(OTHER_OWNER)] == [theirs.id]


# Purpose: verify bulk restore reports per-id outcomes instead of a single verdict.
@pytest.mark.asyncio
async def test_restore_many_reports_partial_success(repository, bin_manager):
    one = await binned(repository, name="One")
    two = await binned(repository, name="Two")

    result = await bin_manager.restore_many(OWNER, [one.id, "missing", two.id])

    assert sorted(result.succeeded) == sorted([one.id, two.id])
    assert [f.id for f in result.failed] == ["missing"]
    assert result.failed[0].error == NotFoundInBin.default_message
    assert not result.all_succeeded
    assert len(await repository.list_active(OWNER)) == 2


# Purpose: verify bulk purge deletes every listed binned event and dedupes ids.
@pytest.mark.asyncio
async def test_purge_many(repository, bin_manager):
    one = await binned(repository, name="One")
    two = await binned(repository, name="Two")

    result = await bin_manager.purge_many(OWNER, [one.id, two.id, one.id])

    assert result.all_succeeded
    assert sorted(result.succeeded) == sorted([one.id, two.id])
    assert await bin_manager.list(OWNER) == []
